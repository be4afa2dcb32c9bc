"""Build targets and board support packages."""

import logging
from pathlib import Path
from typing import Dict, Iterable, Optional

from .package import LocalPackage, PackageError
from .project import Project

logger = logging.getLogger(__name__)


class Target:
    """A build target: an app, a BSP and a build profile.

    The target is itself a package (its manifest carries ``target.*`` keys
    alongside the usual ``pkg.*`` ones) and takes part in the build like any
    other package.
    """

    def __init__(self, package: LocalPackage, project: Project):
        self._package = package
        self.project = project

    def package(self) -> LocalPackage:
        return self._package

    @property
    def name(self) -> str:
        return self._package.name

    @property
    def full_name(self) -> str:
        return self._package.full_name

    @property
    def app_name(self) -> str:
        return str(self._package.settings.get("target.app", "") or "")

    @property
    def bsp_name(self) -> str:
        return str(self._package.settings.get("target.bsp", "") or "")

    @property
    def build_profile(self) -> str:
        return str(self._package.settings.get("target.build_profile", "default") or "default")

    def app(self) -> Optional[LocalPackage]:
        if not self.app_name:
            return None
        return self.project.resolve_dependency(self.app_name)

    def bsp(self) -> Optional[LocalPackage]:
        if not self.bsp_name:
            return None
        return self.project.resolve_dependency(self.bsp_name)

    def validate(self, app_required: bool) -> None:
        """Check that the target references packages that exist.

        Args:
            app_required: Whether the target must name an app

        Raises:
            PackageError: Describing the first problem found
        """
        if not self.bsp_name:
            raise PackageError(f"Target {self.name} does not specify a BSP package (target.bsp)")
        if self.bsp() is None:
            raise PackageError(f"Could not resolve BSP package: {self.bsp_name}")

        if app_required:
            if not self.app_name:
                raise PackageError(f"Target {self.name} does not specify an app package (target.app)")
            if self.app() is None:
                raise PackageError(f"Could not resolve app package: {self.app_name}")
        elif self.app_name and self.app() is None:
            raise PackageError(f"Could not resolve app package: {self.app_name}")


class BspPackage:
    """Board support package view over a local package.

    Attributes:
        arch: CPU architecture name, e.g. ``cortex_m4``
        compiler_name: Name of the compiler package to build with
        linker_script: Linker script path relative to the BSP directory
    """

    def __init__(self, package: LocalPackage):
        self.package = package
        self.arch = ""
        self.compiler_name = ""
        self.linker_script = ""
        self.reload(())

    @property
    def name(self) -> str:
        return self.package.name

    @property
    def full_name(self) -> str:
        return self.package.full_name

    @property
    def base_path(self) -> Path:
        return self.package.base_path

    def reload(self, features: Iterable[str]) -> None:
        """Re-read the BSP settings for the given feature set.

        Feature-gated keys such as ``bsp.linkerscript.BOOT_LOADER`` replace
        their base value when the feature is active.
        """
        features = list(features)
        self.arch = self.package.string_setting("bsp.arch", features)
        self.compiler_name = self.package.string_setting("bsp.compiler", features)
        self.linker_script = self.package.string_setting("bsp.linkerscript", features)
        logger.debug(
            f"BSP {self.name}: arch={self.arch} compiler={self.compiler_name} "
            f"linkerscript={self.linker_script or '<none>'}"
        )

    def linker_script_path(self) -> Optional[Path]:
        if not self.linker_script:
            return None
        return self.base_path / self.linker_script

    def to_dict(self) -> Dict[str, str]:
        return {
            "name": self.name,
            "arch": self.arch,
            "compiler": self.compiler_name,
            "linkerscript": self.linker_script,
        }
