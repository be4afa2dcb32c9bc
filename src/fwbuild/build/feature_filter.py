"""Feature blacklist/whitelist matching.

A filter entry pairs a package-name pattern with a feature name. The BSP,
the app and the target each contribute entries; lists are the concatenation
of their contributions in that order.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Pattern

from ..packages import LocalPackage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FilterEntry:
    """A (package-name pattern, feature name) pair.

    The pattern is a regular expression searched in the package's fully
    qualified name.
    """

    pattern: str
    feature: str

    def compiled(self) -> Optional[Pattern[str]]:
        try:
            return re.compile(self.pattern)
        except re.error as e:
            logger.warning(f"Ignoring invalid feature filter pattern {self.pattern!r}: {e}")
            return None

    def matches(self, full_name: str, feature: str) -> bool:
        if self.feature != feature:
            return False
        regex = self.compiled()
        return regex is not None and regex.search(full_name) is not None


def entries_from_map(mapping: Dict[str, str]) -> List[FilterEntry]:
    """Convert a manifest ``pattern: feature`` mapping to filter entries."""
    return [FilterEntry(pattern, feature) for pattern, feature in mapping.items()]


def match_feature(entries: Iterable[FilterEntry], package: Optional[LocalPackage], feature: str) -> bool:
    """Check whether any entry matches the package/feature pair.

    Args:
        entries: Filter entries, scanned in order
        package: Package being checked (None matches as the empty name)
        feature: Feature name

    Returns:
        True on the first matching entry
    """
    full_name = package.full_name if package is not None else ""
    for entry in entries:
        if entry.matches(full_name, feature):
            return True
    return False


class FeatureFilter:
    """Blacklist/whitelist pair deciding which features a package sees."""

    def __init__(self) -> None:
        self.blacklist: List[FilterEntry] = []
        self.whitelist: List[FilterEntry] = []

    def clear(self) -> None:
        self.blacklist = []
        self.whitelist = []

    def add_package(self, package: Optional[LocalPackage]) -> None:
        """Append a package's blacklist/whitelist contributions."""
        if package is None:
            return
        self.blacklist.extend(entries_from_map(package.feature_blacklist()))
        self.whitelist.extend(entries_from_map(package.feature_whitelist()))

    def is_feature_valid(self, package: Optional[LocalPackage], feature: str) -> bool:
        """Decide whether a feature applies to a package.

        A feature is valid unless blacklisted; a matching whitelist entry
        carves a blacklisted feature back in. The whitelist wins regardless
        of declaration order.
        """
        if not match_feature(self.blacklist, package, feature):
            return True
        return match_feature(self.whitelist, package, feature)
