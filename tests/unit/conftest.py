"""Shared fixtures for fwbuild unit tests."""

import json
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

import pytest

from fwbuild.build.compiler_info import CompilerInfo
from fwbuild.build.toolchain import ICompiler, UnitKind


def write_pkg(root: Path, name: str, sources: Iterable[str] = (), raw: Optional[dict] = None, **settings) -> Path:
    """Create a package directory with a pkg.json manifest.

    Settings keys use underscores in place of dots: ``pkg_deps`` becomes
    ``pkg.deps``. ``raw`` keys are copied verbatim (for feature-gated keys).
    ``sources`` are package-relative files to create.
    """
    pkg_dir = root / name
    pkg_dir.mkdir(parents=True, exist_ok=True)
    manifest = {"pkg.name": name}
    for key, value in settings.items():
        manifest[key.replace("_", ".", 1)] = value
    manifest.update(raw or {})
    (pkg_dir / "pkg.json").write_text(json.dumps(manifest, indent=2))

    for rel in sources:
        path = pkg_dir / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("/* source */\n")
    return pkg_dir


class FakeCompiler(ICompiler):
    """Recording toolchain driver: finds sources but never runs a tool."""

    def __init__(self, compiler_pkg, dst_dir: Path, profile, timeout):
        self.compiler_pkg = compiler_pkg
        self.dst_dir = Path(dst_dir)
        self.profile = profile
        self.timeout = timeout
        self.infos: List[CompilerInfo] = []
        self.deps: List[Path] = []
        self.compile_calls: List[Tuple[Path, UnitKind, List[str]]] = []
        self.sources: List[Path] = []
        self.archive: Optional[Path] = None
        self.linked: Optional[Tuple[Path, List[Path]]] = None
        self.linker_script = None
        self.source_root = None

    @property
    def cflags(self) -> List[str]:
        return [flag for info in self.infos for flag in info.cflags]

    def add_info(self, info: CompilerInfo) -> None:
        self.infos.append(info.copy())

    def add_deps(self, paths: Iterable[Path]) -> None:
        self.deps.extend(paths)

    def recursive_compile(self, src_dir: Path, kind: UnitKind, ignore_dirs: Iterable[str]) -> None:
        ignore = list(ignore_dirs)
        self.compile_calls.append((Path(src_dir), kind, ignore))
        for path in sorted(Path(src_dir).rglob("*")):
            rel_parts = path.relative_to(src_dir).parts[:-1]
            if any(part in ignore for part in rel_parts):
                continue
            if path.is_file() and path.suffix in kind.extensions:
                self.sources.append(path)

    def compile_archive(self, archive_path: Path) -> Optional[Path]:
        if not self.sources:
            return None
        archive_path.parent.mkdir(parents=True, exist_ok=True)
        archive_path.write_text("\n".join(str(s) for s in self.sources))
        self.archive = archive_path
        return archive_path

    def compile_elf(self, output_path: Path, archive_paths: List[Path]) -> Path:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text("elf")
        self.linked = (output_path, list(archive_paths))
        return output_path


class FakeToolchain:
    """Compiler factory handing out FakeCompilers and remembering them."""

    def __init__(self) -> None:
        self.compilers: List[FakeCompiler] = []

    def __call__(self, compiler_pkg, dst_dir, profile, timeout) -> FakeCompiler:
        compiler = FakeCompiler(compiler_pkg, dst_dir, profile, timeout)
        self.compilers.append(compiler)
        return compiler

    @property
    def compile_steps(self) -> List[FakeCompiler]:
        return [c for c in self.compilers if c.linked is None]

    @property
    def link_step(self) -> Optional[FakeCompiler]:
        linked = [c for c in self.compilers if c.linked is not None]
        return linked[-1] if linked else None

    def for_dir(self, dst_dir: Path) -> FakeCompiler:
        for compiler in self.compilers:
            if compiler.dst_dir == dst_dir and compiler.linked is None:
                return compiler
        raise AssertionError(f"No compiler created for {dst_dir}")


@pytest.fixture
def toolchain():
    return FakeToolchain()


@pytest.fixture
def blinky_project(tmp_path):
    """App, lib, API provider, BSP, compiler and target packages on disk."""
    root = tmp_path / "project"
    write_pkg(root, "compiler/sim")
    write_pkg(
        root,
        "hw/bsp/native",
        bsp_arch="sim",
        bsp_compiler="compiler/sim",
        bsp_linkerscript="native.ld",
    )
    write_pkg(
        root,
        "apps/blinky",
        sources=["src/main.c"],
        pkg_deps=["libs/os", "libs/console/full"],
    )
    write_pkg(
        root,
        "libs/os",
        sources=["src/os.c", "src/arch/sim/os_arch.c", "src/arch/sim/ctx.s", "src/test/test_os.c"],
        pkg_req_apis=["console"],
        pkg_features=["OS_PRESENT"],
    )
    write_pkg(root, "libs/console/full", sources=["src/cons.c"], pkg_apis=["console"])
    write_pkg(
        root,
        "targets/blinky",
        target_app="apps/blinky",
        target_bsp="hw/bsp/native",
    )
    return root


@pytest.fixture
def make_pkg():
    """Return the package-writing helper."""
    return write_pkg
