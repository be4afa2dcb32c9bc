"""Project package registry.

A project is the set of local packages a build can draw from. Packages are
registered directly or discovered by walking a directory tree for
``pkg.json`` manifests.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional

from .package import MANIFEST_FILENAME, LocalPackage, PackageError

logger = logging.getLogger(__name__)

# Directories never searched for package manifests
SKIP_DIRS = {"bin", ".git", ".fwbuild", "__pycache__", "node_modules"}


class Project:
    """Registry of local packages keyed by fully qualified name."""

    def __init__(self, root: Optional[Path] = None):
        """Initialize an empty project.

        Args:
            root: Project root directory (used for the default bin directory)
        """
        self.root = Path(root) if root is not None else Path.cwd()
        self._packages: Dict[str, LocalPackage] = {}

    def add(self, package: LocalPackage) -> LocalPackage:
        """Register a package.

        Raises:
            PackageError: If another package already uses the same full name
        """
        existing = self._packages.get(package.full_name)
        if existing is not None and existing is not package:
            raise PackageError(
                f"Duplicate package {package.full_name}: {existing.base_path} and {package.base_path}"
            )
        self._packages[package.full_name] = package
        return package

    def packages(self) -> List[LocalPackage]:
        return list(self._packages.values())

    def resolve_dependency(self, name: str) -> Optional[LocalPackage]:
        """Find the package a dependency string refers to.

        ``@repo/name`` matches exactly. A bare name matches a package without
        a repository first, then the only repository package with that name.

        Args:
            name: Dependency string from a manifest

        Returns:
            The package, or None if nothing (or more than one candidate) matches
        """
        if not name:
            return None

        package = self._packages.get(name)
        if package is not None or name.startswith("@"):
            return package

        candidates = [p for p in self._packages.values() if p.name == name]
        if len(candidates) == 1:
            return candidates[0]
        if len(candidates) > 1:
            logger.debug(f"Ambiguous dependency {name}: {[p.full_name for p in candidates]}")
        return None

    def discover(self, root: Optional[Path] = None, repo: Optional[str] = None) -> List[LocalPackage]:
        """Walk a directory tree and register every package found.

        A package directory is not searched further: packages do not nest.

        Args:
            root: Directory to search (defaults to the project root)
            repo: Repository name to assign to discovered packages

        Returns:
            Packages discovered by this call, sorted by full name
        """
        search_root = Path(root) if root is not None else self.root
        found: List[LocalPackage] = []

        if not search_root.exists():
            return found

        pending = [search_root]
        while pending:
            directory = pending.pop()
            manifest = directory / MANIFEST_FILENAME
            if manifest.is_file():
                found.append(self.add(LocalPackage.load(manifest, repo=repo)))
                continue

            for child in sorted(directory.iterdir()):
                if child.is_dir() and child.name not in SKIP_DIRS and not child.name.startswith("."):
                    pending.append(child)

        logger.debug(f"Discovered {len(found)} packages under {search_root}")
        return sorted(found, key=lambda p: p.full_name)
