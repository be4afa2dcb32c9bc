"""
Build orchestration for fwbuild targets.

This module coordinates a complete target build:
- Seeding the package set with the app, BSP and target packages
- Resolving dependencies, features and APIs to a fixpoint
- Verifying every required API has a provider
- Computing the base compiler flags (target > app > bsp)
- Compiling and archiving every package in alphabetical order
- Linking the application (or a package's test executable)
- Running the test executable in test mode
"""

import logging
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Set

from ..interrupt_utils import handle_keyboard_interrupt_properly
from ..output import TimedLogger, Verbosity, log_dependency_table, log_success, status_message
from ..packages import BspPackage, LocalPackage, PackageError, Target
from ..subprocess_utils import ToolTimeoutError, run_with_timeout
from .build_context import BuildParams
from .build_package import BuildPackage
from .build_profiles import BuildProfile
from .build_utils import safe_rmtree
from .compiler_info import CompilerInfo, merge_all
from .errors import BuildError, ConfigurationError, FilesystemError, TestFailure, UnsatisfiedApiError
from .feature_filter import FeatureFilter
from .resolver import DependencyResolver
from .toolchain import GccCompiler, ICompiler, UnitKind

logger = logging.getLogger(__name__)

# Builds the toolchain driver for one compile or link step:
# (compiler package, object output directory, profile, per-call timeout)
CompilerFactory = Callable[[LocalPackage, Path, BuildProfile, Optional[float]], ICompiler]

TEST_FEATURE = "TEST"
SELFTEST_FEATURE = "SELFTEST"
SELFTEST_DEFINE = "SELFTEST"


class BuildState(Enum):
    """Lifecycle of a Builder."""

    UNINITIALIZED = "uninitialized"
    PREPPED = "prepped"
    COMPILED = "compiled"
    LINKED = "linked"
    FAILED = "failed"


class Builder:
    """
    Builds one target: resolves its packages, compiles, archives and links.

    A Builder owns the package set, feature set, API registry and base flags
    of exactly one build invocation and is not safe for concurrent use.

    Example usage:
        project = Project(Path("."))
        project.discover()
        target = Target(project.resolve_dependency("targets/blinky"), project)
        builder = Builder(target, BuildParams.from_env(Path(".")))
        elf = builder.build()
    """

    def __init__(
        self,
        target: Target,
        params: Optional[BuildParams] = None,
        compiler_factory: Optional[CompilerFactory] = None,
    ):
        """
        Initialize builder.

        Args:
            target: Target to build
            params: Output location, profile and timeouts
            compiler_factory: Toolchain driver factory (defaults to GCC)
        """
        self.target = target
        self.project = target.project
        self.params = params if params is not None else BuildParams.create(self.project.root)
        self.compiler_factory: CompilerFactory = compiler_factory or GccCompiler.from_package

        self.feature_filter = FeatureFilter()
        self.resolver = DependencyResolver(self.project, self.feature_filter)
        self.state = BuildState.UNINITIALIZED

        self.bsp: Optional[BspPackage] = None
        self.app_bpkg: Optional[BuildPackage] = None
        self.bsp_bpkg: Optional[BuildPackage] = None
        self.target_bpkg: Optional[BuildPackage] = None
        self.compiler_pkg: Optional[LocalPackage] = None
        self.compiler_info: Optional[CompilerInfo] = None
        self.profile: Optional[BuildProfile] = None

    # Package and feature sets

    @property
    def packages(self) -> Dict[str, BuildPackage]:
        return self.resolver.packages

    def add_package(self, package: LocalPackage) -> BuildPackage:
        return self.resolver.add_package(package)

    def add_feature(self, feature: str) -> None:
        self.resolver.add_feature(feature)

    def all_features(self) -> Dict[str, bool]:
        return self.resolver.features

    def features(self, package: Optional[LocalPackage]) -> Set[str]:
        return self.resolver.features_for(package)

    def is_feature_valid(self, package: Optional[LocalPackage], feature: str) -> bool:
        return self.feature_filter.is_feature_valid(package, feature)

    def sorted_build_packages(self) -> List[BuildPackage]:
        return self.resolver.sorted_packages()

    # Output paths

    def bin_dir(self) -> Path:
        return self.params.bin_root / self.target.name

    def pkg_bin_dir(self, pkg_name: str) -> Path:
        return self.bin_dir() / pkg_name

    def archive_path(self, pkg_name: str) -> Path:
        return self.pkg_bin_dir(pkg_name) / f"{Path(pkg_name).name}.a"

    def app_elf_path(self) -> Path:
        app_name = self.target.app_name
        if not app_name:
            raise ConfigurationError(f"Target {self.target.name} does not specify an app package")
        return self.pkg_bin_dir(app_name) / f"{Path(app_name).name}.elf"

    def test_exe_path(self, pkg_name: str) -> Path:
        return self.pkg_bin_dir(pkg_name) / f"test_{Path(pkg_name).name}"

    @property
    def arch(self) -> str:
        """Architecture of the target's BSP."""
        if self.bsp is None:
            raise ConfigurationError(f"Builder for {self.target.name} has not been prepared")
        return self.bsp.arch

    # Lifecycle

    @contextmanager
    def _step(self) -> Iterator[None]:
        """Mark the builder FAILED when the enclosed step raises."""
        try:
            yield
        except KeyboardInterrupt as ke:
            self.state = BuildState.FAILED
            handle_keyboard_interrupt_properly(ke)
        except BuildError:
            self.state = BuildState.FAILED
            raise
        except PackageError as e:
            self.state = BuildState.FAILED
            raise ConfigurationError(str(e), cause=e) from e
        except OSError as e:
            self.state = BuildState.FAILED
            raise FilesystemError(f"Filesystem error: {e}", cause=e) from e

    def _check_usable(self) -> None:
        if self.state is BuildState.FAILED:
            raise ConfigurationError(f"Builder for {self.target.name} already failed; create a new one")

    def _check_prepared(self) -> None:
        self._check_usable()
        if self.state is BuildState.UNINITIALIZED:
            raise ConfigurationError(f"Builder for {self.target.name} has not been prepared")

    def prepare(self) -> None:
        """
        Populate the package and feature sets and compute the base flags.

        After this returns, packages are ready to be compiled. Calling it
        again on a prepared builder does nothing.

        Raises:
            ConfigurationError: If the BSP, compiler or a dependency cannot be resolved
            UnsatisfiedApiError: If any required API lacks a provider
        """
        self._check_usable()
        if self.state is not BuildState.UNINITIALIZED:
            return

        with self._step():
            self._prepare()
            self.state = BuildState.PREPPED

    def _prepare(self) -> None:
        self.feature_filter.clear()

        # Collect the seed packages
        bsp_pkg = self.target.bsp()
        if bsp_pkg is None:
            if not self.target.bsp_name:
                raise ConfigurationError("BSP package not specified by target")
            raise ConfigurationError(f"BSP package not found: {self.target.bsp_name}")
        self.feature_filter.add_package(bsp_pkg)
        bsp = self.bsp = BspPackage(bsp_pkg)

        compiler_pkg = self._resolve_compiler(bsp)

        try:
            self.profile = self.params.profile or BuildProfile.parse(self.target.build_profile)
        except ValueError as e:
            raise ConfigurationError(str(e), cause=e) from e

        # An app package is not required (e.g., unit tests)
        app_pkg = self.target.app()
        if app_pkg is not None:
            self.app_bpkg = self.add_package(app_pkg)
            self.feature_filter.add_package(app_pkg)

        bsp_bpkg = self.bsp_bpkg = self.add_package(bsp_pkg)

        target_pkg = self.target.package()
        target_bpkg = self.target_bpkg = self.add_package(target_pkg)
        self.feature_filter.add_package(target_pkg)

        with TimedLogger("Resolving packages", verbose_only=True):
            self.resolver.resolve()

        self._log_dep_info()

        unsatisfied = self.resolver.unsatisfied_apis()
        if unsatisfied:
            raise UnsatisfiedApiError(unsatisfied)

        self.compiler_info = self._base_compiler_info(bsp, target_bpkg, bsp_bpkg, app_pkg)

        # The link step needs the feature-gated BSP settings
        bsp.reload(self.features(bsp_pkg))
        self.compiler_pkg = compiler_pkg

    def _resolve_compiler(self, bsp: BspPackage) -> LocalPackage:
        compiler_name = bsp.compiler_name
        if not compiler_name:
            raise ConfigurationError("Compiler package not specified by BSP")
        compiler_pkg = self.project.resolve_dependency(compiler_name)
        if compiler_pkg is None:
            raise ConfigurationError(f"Compiler package not found: {compiler_name}")
        return compiler_pkg

    def _base_compiler_info(
        self,
        bsp: BspPackage,
        target_bpkg: BuildPackage,
        bsp_bpkg: BuildPackage,
        app_pkg: Optional[LocalPackage],
    ) -> CompilerInfo:
        """
        Merge the flags applied to every source file.

        Merged in order target, app (if present), bsp. Library package flags
        go on top at compile time, and the compiler's own defaults sit
        underneath everything.
        """
        arch = bsp.arch

        logger.debug(f"Generating build flags for target {self.target.full_name}")
        target_ci = target_bpkg.compiler_info(self.resolver, arch)

        app_ci = None
        if self.app_bpkg is not None:
            logger.debug(f"Generating build flags for app {self.app_bpkg.full_name}")
            app_ci = self.app_bpkg.compiler_info(self.resolver, arch)

        logger.debug(f"Generating build flags for bsp {bsp_bpkg.full_name}")
        bsp_ci = bsp_bpkg.compiler_info(self.resolver, arch).copy()

        # Define cpp symbols for the BSP architecture and the BSP and app names
        bsp_ci.add_define(f"ARCH_{arch}")
        bsp_ci.add_define(f'BSP_NAME="{Path(bsp.name).name}"')
        if app_pkg is not None:
            bsp_ci.add_define(f'APP_NAME="{Path(app_pkg.name).name}"')

        return merge_all(target_ci, app_ci, bsp_ci)

    def _log_dep_info(self) -> None:
        rows = []
        for bpkg in self.sorted_build_packages():
            deps = ", ".join(sorted(dep.name for dep in bpkg.deps.values()))
            apis = ", ".join(bpkg.apis)
            req_apis = ", ".join(bpkg.req_apis)
            logger.debug(f"{bpkg.full_name}: deps=[{deps}] apis=[{apis}] req_apis=[{req_apis}]")
            rows.append((bpkg.full_name, deps, apis, req_apis))
        log_dependency_table(rows)

    # Compile / archive / link

    def new_compiler(self, bpkg: Optional[BuildPackage], dst_dir: Path) -> ICompiler:
        """Create a toolchain driver primed with the base and package flags.

        Raises:
            ConfigurationError: If the builder has not been prepared
        """
        self._check_prepared()
        if self.compiler_pkg is None or self.compiler_info is None or self.profile is None:
            raise ConfigurationError(f"Builder for {self.target.name} has not been prepared")

        c = self.compiler_factory(self.compiler_pkg, dst_dir, self.profile, self.params.tool_timeout)
        c.add_info(self.compiler_info)

        if bpkg is not None:
            c.source_root = bpkg.base_path
            logger.debug(f"Generating build flags for package {bpkg.full_name}")
            c.add_info(bpkg.compiler_info(self.resolver, self.arch))

        # Every manifest is a dependency of every object: a manifest change
        # rebuilds everything
        for bp in self.packages.values():
            c.add_deps(bp.cfg_filenames())

        return c

    def _build_dir(self, src_dir: Path, c: ICompiler, ignore_dirs: List[str]) -> None:
        """Compile a source tree, then its architecture-specific subtree."""
        if not src_dir.is_dir():
            return

        status_message(Verbosity.VERBOSE, f"Compiling src in base directory: {src_dir}")

        # The arch subtree is compiled separately below
        c.recursive_compile(src_dir, UnitKind.C, [*ignore_dirs, "arch"])

        arch = self.arch
        arch_dir = src_dir / "arch" / arch
        if arch and arch_dir.is_dir():
            status_message(
                Verbosity.VERBOSE,
                f"Compiling architecture specific src pkgs in directory: {arch_dir}",
            )
            c.recursive_compile(arch_dir, UnitKind.C, ignore_dirs)
            # Assembly sources are only compiled from the arch subtree
            c.recursive_compile(arch_dir, UnitKind.ASM, ignore_dirs)

    def source_dirs(self, bpkg: BuildPackage) -> List[Path]:
        """
        Source roots of a package.

        Raises:
            ConfigurationError: If a declared source directory does not exist
        """
        declared = bpkg.source_directories
        if declared:
            src_dirs = []
            for rel_dir in declared:
                src_dir = bpkg.base_path / rel_dir
                if not src_dir.is_dir():
                    raise ConfigurationError(f"Specified source directory {src_dir}, does not exist.")
                src_dirs.append(src_dir)
            return src_dirs

        src_dir = bpkg.base_path / "src"
        if not src_dir.is_dir():
            return []
        return [src_dir]

    def build_package(self, bpkg: BuildPackage) -> Optional[Path]:
        """
        Compile and archive one package.

        Returns:
            The archive path, or None if the package has nothing to compile
        """
        archive_path = self.archive_path(bpkg.name)
        src_dirs = self.source_dirs(bpkg)
        if not src_dirs:
            status_message(Verbosity.VERBOSE, f"Nothing to compile in {bpkg.name}")
            archive_path.unlink(missing_ok=True)
            return None

        status_message(Verbosity.DEFAULT, f"Compiling {bpkg.name}")
        c = self.new_compiler(bpkg, self.pkg_bin_dir(bpkg.name))

        # Non-test code first, then test code when the TEST feature is on.
        # Test code keeps its own arch layout: src/test/arch/<arch>
        test_enabled = self.all_features().get(TEST_FEATURE, False)
        for src_dir in src_dirs:
            self._build_dir(src_dir, c, ["test"])
            if test_enabled:
                self._build_dir(src_dir / "test", c, [])

        archive = c.compile_archive(archive_path)
        if archive is None:
            archive_path.unlink(missing_ok=True)
        return archive

    def compile_all(self) -> None:
        """Compile every package, alphabetically for a reproducible order."""
        self._check_prepared()
        with self._step():
            for bpkg in self.sorted_build_packages():
                self.build_package(bpkg)
            self.state = BuildState.COMPILED

    def link(self, elf_path: Path) -> Path:
        """Link every existing package archive into an executable.

        Raises:
            ConfigurationError: If the builder has not been prepared
            LinkError: If the linker fails
        """
        self._check_prepared()
        if self.bsp is None:
            raise ConfigurationError(f"Builder for {self.target.name} has not been prepared")
        with self._step():
            c = self.new_compiler(self.app_bpkg, elf_path.parent)

            archives = []
            for bpkg in self.sorted_build_packages():
                archive = self.archive_path(bpkg.name)
                if archive.exists():
                    archives.append(archive)

            linker_script = self.bsp.linker_script_path()
            if linker_script is not None:
                c.linker_script = linker_script

            status_message(Verbosity.DEFAULT, f"Linking {elf_path}")
            output = c.compile_elf(elf_path, archives)
            self.state = BuildState.LINKED
            return output

    def build(self) -> Path:
        """
        Build the target's application.

        Returns:
            Path of the linked application binary
        """
        self._check_usable()
        with self._step():
            self.target.validate(True)

        self.prepare()
        self.compile_all()
        elf_path = self.link(self.app_elf_path())
        log_success(f"App successfully built: {elf_path}")
        return elf_path

    def test(self, package: LocalPackage) -> Path:
        """
        Build and run a package's self-test executable.

        Returns:
            Path of the executed test binary

        Raises:
            TestFailure: If the test executable exits non-zero
        """
        self._check_usable()
        if self.state is not BuildState.UNINITIALIZED:
            raise ConfigurationError("Tests require a builder that has not been prepared yet")

        with self._step():
            self.target.validate(False)

        # Seed the builder with the package under test
        test_bpkg = self.add_package(package)

        # TEST compiles the test code, SELFTEST signals there is no app
        self.add_feature(TEST_FEATURE)
        self.add_feature(SELFTEST_FEATURE)

        self.prepare()

        # Enable the package's self-test entry point; the cached compiler
        # info carries it into the package's compilation
        test_bpkg.compiler_info(self.resolver, self.arch).add_define(SELFTEST_DEFINE)

        self.compile_all()
        test_path = self.link(self.test_exe_path(package.name))

        with self._step():
            self._run_test(package, test_path)
        log_success(f"Test passed: {package.name}")
        return test_path

    def _run_test(self, package: LocalPackage, test_path: Path) -> None:
        status_message(Verbosity.DEFAULT, f"Executing test: {test_path}")
        try:
            result = run_with_timeout([str(test_path)], self.params.test_timeout, cwd=test_path.parent)
        except ToolTimeoutError as e:
            raise TestFailure(package.name, f"{e}\n{e.output}", cause=e) from e

        if result.returncode != 0:
            raise TestFailure(package.name, result.stdout)

    def clean(self) -> None:
        """
        Remove the target's build output directory.

        Raises:
            FilesystemError: If the directory cannot be removed
        """
        path = self.bin_dir()
        status_message(Verbosity.VERBOSE, f"Cleaning directory {path}")
        try:
            safe_rmtree(path)
        except OSError as e:
            raise FilesystemError(f"Failed to remove {path}: {e}", cause=e) from e
