"""
Command-line interface for fwbuild.

This module provides the `fwbuild` CLI tool for building, testing and
cleaning firmware targets.
"""

import argparse
import logging
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from fwbuild import __version__
from fwbuild.build import Builder, BuildError, BuildParams, BuildProfile, ErrorKind
from fwbuild.output import Verbosity, init_timer, log_error, set_verbosity
from fwbuild.packages import PackageError, Project, Target


@dataclass
class CommandArgs:
    """Arguments shared by every command."""

    project_dir: Path
    target: str
    package: Optional[str] = None
    profile: Optional[str] = None
    verbose: bool = False
    quiet: bool = False

    @property
    def verbosity(self) -> Verbosity:
        if self.verbose:
            return Verbosity.VERBOSE
        if self.quiet:
            return Verbosity.QUIET
        return Verbosity.DEFAULT


def load_target(args: CommandArgs) -> Target:
    """Discover the project's packages and look up the target.

    Raises:
        PackageError: If a manifest is invalid or the target does not exist
    """
    project = Project(args.project_dir)
    project.discover()

    target_pkg = project.resolve_dependency(args.target)
    if target_pkg is None:
        raise PackageError(f"Target not found: {args.target}")
    return Target(target_pkg, project)


def create_builder(args: CommandArgs) -> Builder:
    target = load_target(args)
    params = BuildParams.from_env(args.project_dir)
    if args.profile:
        params = params.with_overrides(profile=BuildProfile.parse(args.profile))
    return Builder(target, params)


def build_command(args: CommandArgs) -> int:
    """Build a target's application.

    Examples:
        fwbuild build targets/blinky
        fwbuild build targets/blinky --profile debug
        fwbuild build targets/blinky -v
    """
    builder = create_builder(args)
    start_time = time.time()
    elf_path = builder.build()
    print(f"Firmware: {elf_path}")
    print(f"Build time: {time.time() - start_time:.2f}s")
    return 0


def test_command(args: CommandArgs) -> int:
    """Build and run a package's self-test against a target's BSP.

    Examples:
        fwbuild test targets/unittest libs/util
    """
    builder = create_builder(args)
    assert args.package is not None
    package = builder.project.resolve_dependency(args.package)
    if package is None:
        raise PackageError(f"Package not found: {args.package}")
    builder.test(package)
    return 0


def clean_command(args: CommandArgs) -> int:
    """Remove a target's build output.

    Examples:
        fwbuild clean targets/blinky
    """
    builder = create_builder(args)
    builder.clean()
    return 0


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("target", help="Target package name")
    parser.add_argument(
        "-d",
        "--project-dir",
        type=Path,
        default=Path.cwd(),
        help="Project directory (default: current directory)",
    )
    parser.add_argument(
        "--profile",
        default=None,
        choices=[p.value for p in BuildProfile],
        help="Build profile (default: the target's target.build_profile)",
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Show verbose build output")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only show warnings and errors")


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fwbuild",
        description="fwbuild - Firmware build orchestrator",
    )
    parser.add_argument("--version", action="version", version=f"fwbuild {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    build_parser = subparsers.add_parser("build", help="Build a target's application")
    _add_common_arguments(build_parser)

    test_parser = subparsers.add_parser("test", help="Build and run a package's self-test")
    _add_common_arguments(test_parser)
    test_parser.add_argument("package", help="Package to test")

    clean_parser = subparsers.add_parser("clean", help="Remove a target's build output")
    _add_common_arguments(clean_parser)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = create_parser()
    parsed_args = parser.parse_args(argv)

    # If no command specified, show help
    if not parsed_args.command:
        parser.print_help()
        return 0

    if not parsed_args.project_dir.is_dir():
        print(f"Error: Path is not a directory: {parsed_args.project_dir}")
        return 2

    args = CommandArgs(
        project_dir=parsed_args.project_dir.resolve(),
        target=parsed_args.target,
        package=getattr(parsed_args, "package", None),
        profile=parsed_args.profile,
        verbose=parsed_args.verbose,
        quiet=parsed_args.quiet,
    )

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    init_timer()
    set_verbosity(args.verbosity)

    commands = {"build": build_command, "test": test_command, "clean": clean_command}
    try:
        return commands[parsed_args.command](args)
    except BuildError as e:
        log_error(str(e))
        return 2 if e.kind is ErrorKind.CONFIGURATION else 1
    except PackageError as e:
        log_error(str(e))
        return 2
    except KeyboardInterrupt:
        print()
        print("Build interrupted")
        return 130  # Standard exit code for SIGINT


if __name__ == "__main__":
    sys.exit(main())
