"""Build Context - Aggregated build configuration.

This module defines BuildParams: the settings a Builder needs that do not
come from package manifests (output location, build profile, tool time
budgets).

Design:
    BuildParams flows from the CLI into the Builder. Manifests decide *what*
    gets built; BuildParams decides *where* and *how long* the external
    tools may take.
"""

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

from .build_profiles import BuildProfile

DEFAULT_TOOL_TIMEOUT = 300.0
DEFAULT_TEST_TIMEOUT = 600.0


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number of seconds, got {value!r}") from None


@dataclass(frozen=True)
class BuildParams:
    """Basic build parameters from the CLI.

    Attributes:
        bin_root: Root of all build output; each target gets a subdirectory
        profile: Build profile override (None uses the target's profile)
        tool_timeout: Seconds each compile/archive/link invocation may take
        test_timeout: Seconds a test executable may run
    """

    bin_root: Path
    profile: Optional[BuildProfile] = None
    tool_timeout: Optional[float] = DEFAULT_TOOL_TIMEOUT
    test_timeout: Optional[float] = DEFAULT_TEST_TIMEOUT

    @classmethod
    def create(cls, project_dir: Path, **overrides) -> "BuildParams":  # type: ignore[no-untyped-def]
        """Create BuildParams rooted at ``<project_dir>/bin``."""
        return cls(bin_root=Path(project_dir) / "bin", **overrides)

    @classmethod
    def from_env(cls, project_dir: Path) -> "BuildParams":
        """Create BuildParams, honoring environment overrides.

        Environment:
            FWBUILD_BIN_DIR: Build output root (default ``<project_dir>/bin``)
            FWBUILD_TOOL_TIMEOUT: Seconds per toolchain invocation
            FWBUILD_TEST_TIMEOUT: Seconds per test executable run
        """
        bin_env = os.environ.get("FWBUILD_BIN_DIR")
        bin_root = Path(bin_env).resolve() if bin_env else Path(project_dir) / "bin"
        return cls(
            bin_root=bin_root,
            tool_timeout=_env_float("FWBUILD_TOOL_TIMEOUT", DEFAULT_TOOL_TIMEOUT),
            test_timeout=_env_float("FWBUILD_TEST_TIMEOUT", DEFAULT_TEST_TIMEOUT),
        )

    def with_overrides(self, **changes) -> "BuildParams":  # type: ignore[no-untyped-def]
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)
