"""Dependency, feature and API resolution.

The resolver owns the package set, the feature set and the API registry of
one build and iterates every package's resolve step until a full pass
discovers nothing new.
"""

import logging
from typing import Dict, List, Optional, Set, Tuple

from ..output import log_warning
from ..packages import LocalPackage, Project
from .build_package import BuildPackage, ResolutionState
from .feature_filter import FeatureFilter

logger = logging.getLogger(__name__)


class DependencyResolver:
    """Fixpoint resolver over the packages of one build.

    Attributes:
        project: Registry dependencies are looked up in
        feature_filter: Blacklist/whitelist deciding per-package features
        packages: Build packages keyed by full name, in insertion order
        features: Build-wide feature set
        apis: API name -> owning build package
        passes: Number of resolution passes run so far
    """

    def __init__(self, project: Project, feature_filter: Optional[FeatureFilter] = None):
        self.project = project
        self.feature_filter = feature_filter if feature_filter is not None else FeatureFilter()
        self.state = ResolutionState()
        self.packages: Dict[str, BuildPackage] = {}
        self.features: Dict[str, bool] = {}
        self.apis: Dict[str, BuildPackage] = {}
        self.passes = 0

    def get(self, package: LocalPackage) -> Optional[BuildPackage]:
        return self.packages.get(package.full_name)

    def add_package(self, package: LocalPackage) -> BuildPackage:
        """Return the package's BuildPackage, creating it on first use."""
        if package is None:
            raise ValueError("Cannot add a None package to the build")

        bpkg = self.packages.get(package.full_name)
        if bpkg is None:
            bpkg = BuildPackage(package, self.state)
            self.packages[package.full_name] = bpkg
        return bpkg

    def add_feature(self, feature: str) -> None:
        self.features[feature] = True

    def features_for(self, package: Optional[LocalPackage]) -> Set[str]:
        """Features of the build that are valid for a package."""
        return {
            name
            for name, enabled in self.features.items()
            if enabled and self.feature_filter.is_feature_valid(package, name)
        }

    def add_api(self, api: str, bpkg: BuildPackage) -> bool:
        """Register a package as provider of an API.

        Returns:
            True if this is a new API. A second provider is rejected with a
            warning; the first registrant stays authoritative.
        """
        current = self.apis.get(api)
        if current is None:
            self.apis[api] = bpkg
            return True

        if current is not bpkg:
            log_warning(f"API conflict: {api} ({current.name} <-> {bpkg.name})")
        return False

    def resolve(self) -> None:
        """Resolve dependencies, features and APIs until nothing changes.

        A new feature can change any package's requirements, so it resets
        every package and restarts the pass. New dependencies only schedule
        another pass.

        Raises:
            BuildError: From any package's resolve step; nothing is kept
        """
        while True:
            self.passes += 1
            reprocess = False
            logger.debug(f"Resolution pass {self.passes} over {len(self.packages)} packages")

            for bpkg in list(self.packages.values()):
                new_deps, new_features = bpkg.resolve(self)

                if new_features:
                    self.state.invalidate()
                    reprocess = True
                    break
                if new_deps:
                    reprocess = True

            if not reprocess:
                break

        logger.debug(
            f"Resolution converged after {self.passes} passes: "
            f"{len(self.packages)} packages, features={sorted(self.features)}"
        )

    def unsatisfied_apis(self) -> List[Tuple[str, str]]:
        """Every (package, API) pair still lacking a provider."""
        unsatisfied: List[Tuple[str, str]] = []
        for bpkg in self.sorted_packages():
            for api in bpkg.unsatisfied_apis():
                unsatisfied.append((bpkg.full_name, api))
        return unsatisfied

    def sorted_packages(self) -> List[BuildPackage]:
        """Build packages in alphabetical order by name."""
        return sorted(self.packages.values(), key=lambda b: (b.name, b.full_name))
