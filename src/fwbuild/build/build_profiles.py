"""Build Profile Configuration.

This module defines the fallback optimization/debug flags of each build
profile.

Design:
    A target names a profile (``target.build_profile``). A compiler package
    may declare the exact flags for a profile as ``compiler.flags.<profile>``;
    when it does not, the profile's flags below apply instead.

    The system:
    1. Filters out controlled flags from the compiler's base flags
    2. Merges in profile-specific flags
    3. This is declarative - no ad-hoc flag manipulation elsewhere
"""

from dataclasses import dataclass
from enum import Enum
from typing import List


class BuildProfile(Enum):
    """Build profile enum for type-safe profile selection."""

    DEFAULT = "default"
    DEBUG = "debug"
    OPTIMIZED = "optimized"

    def __str__(self) -> str:
        """Return the string value for directory names and display."""
        return self.value

    @classmethod
    def parse(cls, value: str) -> "BuildProfile":
        """Parse a profile name, case-insensitively.

        Raises:
            ValueError: If the name is not a known profile
        """
        try:
            return cls(value.strip().lower())
        except ValueError:
            known = ", ".join(p.value for p in cls)
            raise ValueError(f"Unknown build profile {value!r} (expected one of: {known})") from None


@dataclass(frozen=True)
class ProfileFlags:
    """Generic build profile flags.

    Attributes:
        name: Profile identifier (matches BuildProfile enum value)
        description: Human-readable profile description
        compile_flags: All compilation flags for this profile
        link_flags: All linker flags for this profile
        controlled_patterns: Flag prefixes this profile controls (stripped from compiler base flags)
    """

    name: str
    description: str
    compile_flags: tuple[str, ...]
    link_flags: tuple[str, ...]
    controlled_patterns: tuple[str, ...]


_CONTROLLED = ("-O", "-g", "-ffunction-sections", "-fdata-sections", "-Wl,--gc-sections")

PROFILES: dict[BuildProfile, ProfileFlags] = {
    BuildProfile.DEFAULT: ProfileFlags(
        name="default",
        description="Size-optimized build with debug symbols (default)",
        compile_flags=("-Os", "-g", "-ffunction-sections", "-fdata-sections"),
        link_flags=("-Wl,--gc-sections",),
        controlled_patterns=_CONTROLLED,
    ),
    BuildProfile.DEBUG: ProfileFlags(
        name="debug",
        description="Unoptimized build for debugging",
        compile_flags=("-O0", "-g3"),
        link_flags=(),
        controlled_patterns=_CONTROLLED,
    ),
    BuildProfile.OPTIMIZED: ProfileFlags(
        name="optimized",
        description="Optimized build without debug symbols",
        compile_flags=("-O2", "-ffunction-sections", "-fdata-sections"),
        link_flags=("-Wl,--gc-sections",),
        controlled_patterns=_CONTROLLED,
    ),
}


def filter_platform_flags(flags: List[str], profile_flags: ProfileFlags) -> List[str]:
    """Remove flags that the profile controls from compiler base flags.

    Args:
        flags: Compiler base flags
        profile_flags: The profile flags whose controlled patterns to filter

    Returns:
        Filtered list of flags with controlled patterns removed
    """
    return [f for f in flags if not any(f.startswith(p) for p in profile_flags.controlled_patterns)]


def merge_compile_flags(base_flags: List[str], profile_flags: ProfileFlags) -> List[str]:
    """Merge compiler base flags with profile compile flags."""
    return filter_platform_flags(base_flags, profile_flags) + list(profile_flags.compile_flags)


def merge_link_flags(base_flags: List[str], profile_flags: ProfileFlags) -> List[str]:
    """Merge compiler base link flags with profile link flags."""
    return filter_platform_flags(base_flags, profile_flags) + list(profile_flags.link_flags)


def get_profile(profile: BuildProfile) -> ProfileFlags:
    """Get profile configuration by enum."""
    return PROFILES[profile]
