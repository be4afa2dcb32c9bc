"""Per-package resolution state.

A BuildPackage wraps one LocalPackage for the duration of one build and
records what resolution has learned about it: its dependencies, the APIs it
provides and requires, and the compiler settings it contributes.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional, Set, Tuple

from ..packages import LocalPackage
from .compiler_info import CompilerInfo
from .errors import ConfigurationError

if TYPE_CHECKING:
    from .resolver import DependencyResolver

logger = logging.getLogger(__name__)


@dataclass
class ResolutionState:
    """Generation counter shared by every BuildPackage of one build.

    A package's ``deps_resolved``/``apis_satisfied`` flags hold only for the
    generation they were set in, so bumping the generation clears every
    package's flags at once.
    """

    generation: int = 0

    def invalidate(self) -> None:
        self.generation += 1


class BuildPackage:
    """Resolution status and compiler settings of one package in a build.

    Attributes:
        package: The wrapped local package
        deps: Resolved direct dependencies, keyed by full name
        apis: APIs this package provides
        req_apis: Required API name -> whether a provider is registered
    """

    def __init__(self, package: LocalPackage, state: ResolutionState):
        self.package = package
        self._state = state
        self._deps_generation: Optional[int] = None
        self._apis_generation: Optional[int] = None
        self.deps: Dict[str, "BuildPackage"] = {}
        self.apis: List[str] = []
        self.req_apis: Dict[str, bool] = {}
        self._ci: Optional[CompilerInfo] = None

    @property
    def name(self) -> str:
        return self.package.name

    @property
    def full_name(self) -> str:
        return self.package.full_name

    @property
    def base_path(self) -> Path:
        return self.package.base_path

    @property
    def source_directories(self) -> List[str]:
        return self.package.source_directories()

    def cfg_filenames(self) -> List[Path]:
        return self.package.cfg_filenames()

    @property
    def deps_resolved(self) -> bool:
        return self._deps_generation == self._state.generation

    @deps_resolved.setter
    def deps_resolved(self, value: bool) -> None:
        self._deps_generation = self._state.generation if value else None

    @property
    def apis_satisfied(self) -> bool:
        return self._apis_generation == self._state.generation

    @apis_satisfied.setter
    def apis_satisfied(self, value: bool) -> None:
        self._apis_generation = self._state.generation if value else None

    def resolve(self, resolver: "DependencyResolver") -> Tuple[bool, bool]:
        """Resolve this package against the resolver's current feature set.

        Args:
            resolver: Resolver owning the package, feature and API sets

        Returns:
            (new_deps, new_features): whether new dependency information or a
            new feature was discovered

        Raises:
            ConfigurationError: If a dependency cannot be resolved
        """
        new_deps = False
        new_features = False

        if not self.deps_resolved:
            new_features = self._load_features(resolver)
            new_deps = self._load_deps(resolver)
            self.deps_resolved = not new_features and not new_deps

        if not self.apis_satisfied:
            self.apis_satisfied = self._satisfy_apis(resolver)

        return new_deps, new_features

    def _load_features(self, resolver: "DependencyResolver") -> bool:
        found_new = False
        features = resolver.features_for(self.package)
        for feature in self.package.list_setting("pkg.features", features):
            if feature not in resolver.features:
                resolver.add_feature(feature)
                found_new = True
                logger.debug(f"Detected new feature: {feature} ({self.full_name})")
        return found_new

    def _load_deps(self, resolver: "DependencyResolver") -> bool:
        found_new = False
        features = resolver.features_for(self.package)

        for dep_name in self.package.list_setting("pkg.deps", features):
            dep_pkg = resolver.project.resolve_dependency(dep_name)
            if dep_pkg is None:
                raise ConfigurationError(
                    f"Could not resolve package dependency {dep_name}; depender: {self.full_name}"
                )
            if resolver.get(dep_pkg) is None:
                found_new = True
                logger.debug(f"New dependency {dep_pkg.full_name} (from {self.full_name})")
            self.deps[dep_pkg.full_name] = resolver.add_package(dep_pkg)

        self.apis = self.package.list_setting("pkg.apis", features)
        for api in self.apis:
            if resolver.add_api(api, self):
                found_new = True

        return found_new

    def _satisfy_apis(self, resolver: "DependencyResolver") -> bool:
        features = resolver.features_for(self.package)
        required = self.package.list_setting("pkg.req_apis", features)
        self.req_apis = {api: api in resolver.apis for api in required}
        return all(self.req_apis.values())

    def unsatisfied_apis(self) -> List[str]:
        return [api for api, satisfied in self.req_apis.items() if not satisfied]

    def public_include_dirs(self, arch: str) -> List[Path]:
        base = self.base_path
        return [
            base / "include",
            base / "include" / self.package.basename / "arch" / arch,
        ]

    def private_include_dirs(self, arch: str, features: Set[str]) -> List[Path]:
        base = self.base_path
        dirs = [base / "src", base / "src" / "arch" / arch]
        if "TEST" in features:
            dirs.append(base / "src" / "test")
        return dirs

    def transitive_deps(self) -> List["BuildPackage"]:
        """All dependencies reachable from this package, sorted by name."""
        seen: Dict[str, BuildPackage] = {}
        pending = list(self.deps.values())
        while pending:
            dep = pending.pop()
            if dep.full_name in seen or dep is self:
                continue
            seen[dep.full_name] = dep
            pending.extend(dep.deps.values())
        return sorted(seen.values(), key=lambda b: b.name)

    def compiler_info(self, resolver: "DependencyResolver", arch: str) -> CompilerInfo:
        """Compiler settings this package contributes to its own compilation.

        Computed once per build and cached; mutations of the returned object
        apply to later compilations of the package.
        """
        if self._ci is not None:
            return self._ci

        features = resolver.features_for(self.package)
        ci = CompilerInfo()
        ci.cflags = self.package.list_setting("pkg.cflags", features)
        ci.lflags = self.package.list_setting("pkg.lflags", features)
        ci.aflags = self.package.list_setting("pkg.aflags", features)
        ci.ignore_files = self.package.list_setting("pkg.ign_files", features)
        ci.ignore_dirs = self.package.list_setting("pkg.ign_dirs", features)

        # Define a cpp symbol for each feature the package sees
        for feature in sorted(features):
            ci.add_define(f"FEATURE_{feature}")

        includes = self.private_include_dirs(arch, features) + self.public_include_dirs(arch)
        providers = [resolver.apis[api] for api in self.req_apis if api in resolver.apis]
        for other in self.transitive_deps() + sorted(providers, key=lambda b: b.name):
            for inc in other.public_include_dirs(arch):
                if inc not in includes:
                    includes.append(inc)
        ci.includes = includes

        self._ci = ci
        return ci

    def __repr__(self) -> str:
        return f"BuildPackage({self.full_name!r})"
