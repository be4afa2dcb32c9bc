"""Toolchain driver.

This module defines the compile/archive/link interface the Builder drives,
and a GCC-style implementation configured from a compiler package.

Design:
    - Every directory is passed explicitly; the process working directory is
      never changed
    - Every tool invocation runs under a timeout that kills the process tree
    - Objects mirror the source tree below the package directory
    - An object file is rebuilt when older than its source or any registered
      extra dependency (package manifests), or when its compile command
      differs from the one recorded next to it
    - Tool failures surface as CompileError/LinkError carrying the tool output
"""

import logging
import os
import re
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional

from ..output import log_file
from ..packages import LocalPackage
from ..subprocess_utils import ToolTimeoutError, run_with_timeout
from .build_profiles import BuildProfile, get_profile, merge_compile_flags, merge_link_flags
from .compiler_info import CompilerInfo
from .errors import CompileError, LinkError

logger = logging.getLogger(__name__)


class UnitKind(Enum):
    """Kind of translation unit."""

    C = "c"
    ASM = "asm"

    @property
    def extensions(self) -> tuple[str, ...]:
        if self is UnitKind.C:
            return (".c",)
        return (".s", ".S")


class ICompiler(ABC):
    """Interface for the compile/archive/link collaborator.

    Attributes:
        linker_script: Linker script passed to the link step, if any
        source_root: Directory object paths are made relative to (the
            package directory)
    """

    linker_script: Optional[Path] = None
    source_root: Optional[Path] = None

    @abstractmethod
    def add_info(self, info: CompilerInfo) -> None:
        """Merge compiler settings on top of the current ones."""
        pass

    @abstractmethod
    def add_deps(self, paths: Iterable[Path]) -> None:
        """Register extra files every object depends on."""
        pass

    @abstractmethod
    def recursive_compile(self, src_dir: Path, kind: UnitKind, ignore_dirs: Iterable[str]) -> None:
        """Compile every source of one kind under a directory.

        Args:
            src_dir: Directory to walk
            kind: Which sources to compile
            ignore_dirs: Directory names not descended into

        Raises:
            CompileError: If any unit fails to compile
        """
        pass

    @abstractmethod
    def compile_archive(self, archive_path: Path) -> Optional[Path]:
        """Archive every object compiled so far into a static library.

        Returns:
            The archive path, or None when there was nothing to archive

        Raises:
            CompileError: If the archiver fails
        """
        pass

    @abstractmethod
    def compile_elf(self, output_path: Path, archive_paths: List[Path]) -> Path:
        """Link archives into an executable.

        Raises:
            LinkError: If the linker fails
        """
        pass


def _resolve_tool(value: str, base_path: Path) -> str:
    """Tool names are looked up on PATH; relative paths are package-relative."""
    if not value:
        return value
    if os.sep in value or "/" in value:
        path = Path(value)
        return str(path if path.is_absolute() else base_path / path)
    return value


def _command_path(obj: Path) -> Path:
    return obj.with_name(f"{obj.name}.cmd")


def _format_command(cmd: List[str]) -> str:
    return "\n".join(cmd) + "\n"


class GccCompiler(ICompiler):
    """GCC-style compiler driver.

    Compiles into ``dst_dir``, keeping track of the objects produced so they
    can be archived together.
    """

    def __init__(
        self,
        cc: str,
        asm: str,
        ar: str,
        dst_dir: Path,
        cflags: Optional[List[str]] = None,
        aflags: Optional[List[str]] = None,
        ldflags: Optional[List[str]] = None,
        timeout: Optional[float] = None,
    ):
        """Initialize compiler driver.

        Args:
            cc: C compiler (also the link driver)
            asm: Assembler driver
            ar: Archiver
            dst_dir: Directory receiving object files
            cflags: Toolchain default C flags
            aflags: Toolchain default assembler flags
            ldflags: Toolchain default linker flags
            timeout: Seconds each tool invocation may take
        """
        self.cc = cc
        self.asm = asm or cc
        self.ar = ar
        self.dst_dir = Path(dst_dir)
        self.ldflags = list(ldflags or [])
        self.timeout = timeout
        self.info = CompilerInfo(cflags=list(cflags or []), aflags=list(aflags or []))
        self.linker_script: Optional[Path] = None
        self.deps: List[Path] = []
        self.source_root: Optional[Path] = None
        self.objects: List[Path] = []

    @classmethod
    def from_package(
        cls,
        compiler_pkg: LocalPackage,
        dst_dir: Path,
        profile: BuildProfile,
        timeout: Optional[float] = None,
    ) -> "GccCompiler":
        """Create a compiler driver from a compiler package's settings.

        Settings:
            compiler.path.cc, compiler.path.as, compiler.path.archive
            compiler.flags.base: flags shared by every profile
            compiler.flags.<profile>: exact flags for a profile (optional)
            compiler.as.flags, compiler.ld.flags
        """
        settings = compiler_pkg.settings
        base = compiler_pkg.base_path

        cc = _resolve_tool(str(settings.get("compiler.path.cc", "gcc")), base)
        asm = _resolve_tool(str(settings.get("compiler.path.as", "")), base) or cc
        ar = _resolve_tool(str(settings.get("compiler.path.archive", "ar")), base)

        profile_flags = get_profile(profile)
        base_flags = compiler_pkg.list_setting("compiler.flags.base")
        declared = compiler_pkg.list_setting(f"compiler.flags.{profile.value}")
        if declared:
            cflags = base_flags + declared
        else:
            cflags = merge_compile_flags(base_flags, profile_flags)
        ldflags = merge_link_flags(compiler_pkg.list_setting("compiler.ld.flags"), profile_flags)

        logger.debug(f"Compiler {compiler_pkg.name} ({profile}): cc={cc} cflags={cflags}")
        return cls(
            cc=cc,
            asm=asm,
            ar=ar,
            dst_dir=dst_dir,
            cflags=cflags,
            aflags=compiler_pkg.list_setting("compiler.as.flags"),
            ldflags=ldflags,
            timeout=timeout,
        )

    def add_info(self, info: CompilerInfo) -> None:
        self.info.add_compiler_info(info)
        if info.linker_script:
            self.linker_script = info.linker_script

    def add_deps(self, paths: Iterable[Path]) -> None:
        self.deps.extend(Path(p) for p in paths)

    def _ignored(self, name: str, patterns: List[str]) -> bool:
        return any(re.search(pattern, name) for pattern in patterns)

    def _find_sources(self, src_dir: Path, kind: UnitKind, ignore_dirs: Iterable[str]) -> List[Path]:
        ignore = set(ignore_dirs)
        sources: List[Path] = []
        for root, dirnames, filenames in os.walk(src_dir):
            dirnames[:] = sorted(
                d for d in dirnames if d not in ignore and not self._ignored(d, self.info.ignore_dirs)
            )
            for filename in sorted(filenames):
                if not filename.endswith(kind.extensions):
                    continue
                if self._ignored(filename, self.info.ignore_files):
                    continue
                sources.append(Path(root) / filename)
        return sources

    def _object_path(self, source: Path, src_dir: Optional[Path] = None) -> Path:
        """Mirror the source's path below the compile root under dst_dir."""
        root = self.source_root
        if root is None or not source.is_relative_to(root):
            root = src_dir if src_dir is not None else source.parent
        rel = source.relative_to(root)
        return self.dst_dir / rel.parent / f"{rel.name}.o"

    def _up_to_date(self, source: Path, obj: Path, cmd: List[str]) -> bool:
        if not obj.exists():
            return False
        cmd_path = _command_path(obj)
        if not cmd_path.exists() or cmd_path.read_text() != _format_command(cmd):
            return False
        obj_mtime = obj.stat().st_mtime
        for dep in [source, *self.deps]:
            if dep.exists() and dep.stat().st_mtime > obj_mtime:
                return False
        return True

    def compile_command(self, source: Path, obj: Path, kind: UnitKind) -> List[str]:
        includes = [f"-I{inc}" for inc in self.info.includes]
        if kind is UnitKind.ASM:
            return [self.asm, *self.info.aflags, *includes, "-c", "-o", str(obj), str(source)]
        return [self.cc, *self.info.cflags, *includes, "-c", "-o", str(obj), str(source)]

    def compile_file(self, source: Path, kind: UnitKind, src_dir: Optional[Path] = None) -> Path:
        """Compile one translation unit, skipping it when up to date.

        Args:
            source: Source file
            kind: Translation unit kind
            src_dir: Directory being compiled, used to place the object when
                the source lies outside ``source_root``
        """
        obj = self._object_path(source, src_dir)
        if obj not in self.objects:
            self.objects.append(obj)

        cmd = self.compile_command(source, obj, kind)
        if self._up_to_date(source, obj, cmd):
            log_file(kind.value, source.name, cached=True)
            return obj

        obj.parent.mkdir(parents=True, exist_ok=True)
        cmd_path = _command_path(obj)
        cmd_path.unlink(missing_ok=True)
        log_file(kind.value, source.name)
        try:
            result = run_with_timeout(cmd, self.timeout, cwd=source.parent)
        except ToolTimeoutError as e:
            raise CompileError(f"Compilation timeout for {source}", cause=e) from e

        if result.returncode != 0:
            raise CompileError(f"Compilation failed for {source}\n{result.stdout}")
        cmd_path.write_text(_format_command(cmd))
        return obj

    def recursive_compile(self, src_dir: Path, kind: UnitKind, ignore_dirs: Iterable[str]) -> None:
        src_dir = Path(src_dir)
        for source in self._find_sources(src_dir, kind, ignore_dirs):
            self.compile_file(source, kind, src_dir)

    def compile_archive(self, archive_path: Path) -> Optional[Path]:
        if not self.objects:
            logger.debug(f"No objects to archive for {archive_path}")
            return None

        archive_path = Path(archive_path)
        archive_path.parent.mkdir(parents=True, exist_ok=True)
        # Start fresh so objects of deleted sources do not linger. Appending
        # (q) keeps members that share a file name, which r would replace
        if archive_path.exists():
            archive_path.unlink()

        log_file("archive", archive_path.name, verbose_only=True)
        cmd = [self.ar, "qcs", str(archive_path), *[str(obj) for obj in self.objects]]
        try:
            result = run_with_timeout(cmd, self.timeout, cwd=archive_path.parent)
        except ToolTimeoutError as e:
            raise CompileError(f"Archive creation timeout for {archive_path.name}", cause=e) from e

        if result.returncode != 0:
            raise CompileError(f"Archive creation failed for {archive_path.name}\n{result.stdout}")
        return archive_path

    def link_command(self, output_path: Path, archive_paths: List[Path]) -> List[str]:
        cmd = [self.cc, "-o", str(output_path), *self.ldflags]
        if self.linker_script is not None:
            cmd.append(f"-T{self.linker_script}")
        cmd.append("-Wl,--start-group")
        cmd.extend(str(a) for a in archive_paths)
        cmd.append("-Wl,--end-group")
        cmd.extend(self.info.lflags)
        return cmd

    def compile_elf(self, output_path: Path, archive_paths: List[Path]) -> Path:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        log_file("link", output_path.name, verbose_only=False)
        cmd = self.link_command(output_path, archive_paths)
        try:
            result = run_with_timeout(cmd, self.timeout, cwd=output_path.parent)
        except ToolTimeoutError as e:
            raise LinkError(f"Link timeout for {output_path.name}", cause=e) from e

        if result.returncode != 0:
            raise LinkError(f"Linking failed for {output_path.name}\n{result.stdout}")
        return output_path
