"""Local source packages and their manifest settings.

A package is a directory holding a ``pkg.json`` manifest and, usually, a
``src`` and ``include`` tree. Manifest settings are flat dotted keys:

    {
        "pkg.name": "libs/os",
        "pkg.deps": ["libs/util"],
        "pkg.deps.TEST": ["libs/testutil"],
        "pkg.cflags": "-Wall -DOS_CPU",
        "pkg.features": ["OS_PRESENT"]
    }

A key with a ``.<FEATURE>`` suffix is feature-gated: its values only apply
while that feature is active for the package.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "pkg.json"


class PackageError(Exception):
    """Base exception for package manifest errors."""

    pass


def _as_list(value: Any) -> List[str]:
    """Normalize a setting value into a list of strings.

    Strings are split on whitespace so flag strings such as
    ``"-Wall -Werror"`` become individual entries.
    """
    if value is None:
        return []
    if isinstance(value, str):
        return value.split()
    if isinstance(value, (list, tuple)):
        result: List[str] = []
        for item in value:
            result.extend(_as_list(item))
        return result
    return [str(value)]


def get_list_features(settings: Dict[str, Any], key: str, features: Iterable[str]) -> List[str]:
    """Read a list setting including every feature-gated variant.

    Args:
        settings: Manifest settings
        key: Base key, e.g. ``pkg.deps``
        features: Features active for the package

    Returns:
        Base values followed by the values of ``key.<FEATURE>`` for each
        active feature, in sorted feature order
    """
    values = _as_list(settings.get(key))
    for feature in sorted(features):
        values.extend(_as_list(settings.get(f"{key}.{feature}")))
    return values


def get_string_features(settings: Dict[str, Any], key: str, features: Iterable[str]) -> str:
    """Read a scalar setting, letting a feature-gated variant override it.

    The last active feature (in sorted order) that defines ``key.<FEATURE>``
    wins over the base value.
    """
    value = settings.get(key, "")
    for feature in sorted(features):
        gated = settings.get(f"{key}.{feature}")
        if gated is not None:
            value = gated
    return str(value) if value is not None else ""


def get_map(settings: Dict[str, Any], key: str) -> Dict[str, str]:
    """Read a mapping setting, keeping declaration order."""
    value = settings.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise PackageError(f"Setting {key} must be a mapping, got {type(value).__name__}")
    return {str(k): str(v) for k, v in value.items()}


class LocalPackage:
    """A source package on the local filesystem.

    Attributes:
        name: Package name, e.g. ``libs/os``
        base_path: Package root directory
        settings: Manifest settings
        repo: Owning repository name, if any
        cfg_path: Manifest file the package was loaded from, if any
    """

    def __init__(
        self,
        name: str,
        base_path: Path,
        settings: Optional[Dict[str, Any]] = None,
        repo: Optional[str] = None,
        cfg_path: Optional[Path] = None,
    ):
        if not name:
            raise PackageError("Package name must not be empty")
        self.name = name
        self.base_path = Path(base_path)
        self.settings: Dict[str, Any] = dict(settings or {})
        self.repo = repo
        self.cfg_path = cfg_path

    @property
    def full_name(self) -> str:
        """Fully qualified name, the package's identity within a build."""
        if self.repo:
            return f"@{self.repo}/{self.name}"
        return self.name

    @property
    def basename(self) -> str:
        return Path(self.name).name

    def cfg_filenames(self) -> List[Path]:
        """Manifest files this package's configuration was read from."""
        if self.cfg_path is None:
            return []
        return [self.cfg_path]

    def source_directories(self) -> List[str]:
        """Declared source directory overrides, relative to base_path."""
        return _as_list(self.settings.get("pkg.src_dirs"))

    def feature_blacklist(self) -> Dict[str, str]:
        """Package-name pattern -> feature entries this package blacklists."""
        return get_map(self.settings, "pkg.feature_blacklist")

    def feature_whitelist(self) -> Dict[str, str]:
        """Package-name pattern -> feature entries this package whitelists."""
        return get_map(self.settings, "pkg.feature_whitelist")

    def list_setting(self, key: str, features: Iterable[str] = ()) -> List[str]:
        return get_list_features(self.settings, key, features)

    def string_setting(self, key: str, features: Iterable[str] = ()) -> str:
        return get_string_features(self.settings, key, features)

    @classmethod
    def load(cls, path: Path, repo: Optional[str] = None) -> "LocalPackage":
        """Load a package from a manifest file or a directory holding one.

        Args:
            path: ``pkg.json`` path or package directory
            repo: Owning repository name

        Returns:
            Loaded package

        Raises:
            PackageError: If the manifest is missing, unreadable or unnamed
        """
        path = Path(path)
        manifest = path / MANIFEST_FILENAME if path.is_dir() else path
        if not manifest.exists():
            raise PackageError(f"Package manifest not found: {manifest}")

        try:
            with open(manifest, "r", encoding="utf-8") as f:
                settings = json.load(f)
        except json.JSONDecodeError as e:
            raise PackageError(f"Failed to parse {manifest}: {e}") from e
        except OSError as e:
            raise PackageError(f"Failed to read {manifest}: {e}") from e

        if not isinstance(settings, dict):
            raise PackageError(f"Manifest {manifest} must contain a JSON object")

        name = settings.get("pkg.name")
        if not name:
            raise PackageError(f"Manifest {manifest} does not define pkg.name")

        logger.debug(f"Loaded package {name} from {manifest}")
        return cls(str(name), manifest.parent, settings, repo=repo, cfg_path=manifest)

    def __repr__(self) -> str:
        return f"LocalPackage({self.full_name!r})"
