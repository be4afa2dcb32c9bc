"""Tests for the GCC-style toolchain driver."""

import os
import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from fwbuild.build.build_profiles import BuildProfile
from fwbuild.build.compiler_info import CompilerInfo
from fwbuild.build.errors import CompileError, LinkError
from fwbuild.build.toolchain import GccCompiler, UnitKind
from fwbuild.packages import LocalPackage
from fwbuild.subprocess_utils import ToolTimeoutError


def ok(cmd, timeout, cwd=None):
    return subprocess.CompletedProcess(cmd, 0, "", "")


def write_output(cmd, timeout, cwd=None):
    """Stand-in tool that writes its command line into the -o output."""
    output = Path(cmd[cmd.index("-o") + 1])
    output.write_text(" ".join(cmd))
    return subprocess.CompletedProcess(cmd, 0, "", "")


@pytest.fixture
def src_tree(tmp_path):
    """Source tree with test, arch and ignored subdirectories."""
    src = tmp_path / "pkg" / "src"
    for rel in [
        "main.c",
        "util.c",
        "notes.txt",
        "test/test_main.c",
        "arch/sim/ctx.s",
        "arch/sim/boot.S",
        "legacy/old.c",
        "drivers/uart.c",
        "drivers/uart_old.c",
    ]:
        path = src / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("/* source */\n")
    return src


@pytest.fixture
def compiler(tmp_path):
    return GccCompiler(cc="arm-gcc", asm="arm-as", ar="arm-ar", dst_dir=tmp_path / "obj", timeout=5.0)


class TestSourceDiscovery:
    """Tests for recursive source discovery."""

    def test_ignore_dirs_and_patterns(self, compiler, src_tree):
        compiler.add_info(CompilerInfo(ignore_dirs=["^legacy$"], ignore_files=["_old\\.c$"]))

        with patch("fwbuild.build.toolchain.run_with_timeout", side_effect=ok):
            compiler.recursive_compile(src_tree, UnitKind.C, ["test", "arch"])

        assert [obj.name for obj in compiler.objects] == ["main.c.o", "util.c.o", "uart.c.o"]

    def test_assembly_sources(self, compiler, src_tree):
        with patch("fwbuild.build.toolchain.run_with_timeout", side_effect=ok) as mock_run:
            compiler.recursive_compile(src_tree / "arch" / "sim", UnitKind.ASM, [])

        assert sorted(obj.name for obj in compiler.objects) == ["boot.S.o", "ctx.s.o"]
        assert all(call.args[0][0] == "arm-as" for call in mock_run.call_args_list)


class TestCompile:
    """Tests for single-unit compilation."""

    def test_command_and_directories(self, compiler, src_tree, tmp_path):
        compiler.add_info(CompilerInfo(cflags=["-Wall"], includes=[tmp_path / "inc"]))
        source = src_tree / "main.c"

        with patch("fwbuild.build.toolchain.run_with_timeout", side_effect=ok) as mock_run:
            obj = compiler.compile_file(source, UnitKind.C)

        assert obj == tmp_path / "obj" / "main.c.o"
        assert obj.parent.is_dir()
        mock_run.assert_called_once_with(
            ["arm-gcc", "-Wall", f"-I{tmp_path / 'inc'}", "-c", "-o", str(obj), str(source)],
            5.0,
            cwd=src_tree,
        )

    def test_up_to_date_object_skipped(self, compiler, src_tree):
        source = src_tree / "main.c"
        with patch("fwbuild.build.toolchain.run_with_timeout", side_effect=write_output):
            obj = compiler.compile_file(source, UnitKind.C)
        os.utime(source, (1000, 1000))
        os.utime(obj, (2000, 2000))

        with patch("fwbuild.build.toolchain.run_with_timeout") as mock_run:
            compiler.compile_file(source, UnitKind.C)

        mock_run.assert_not_called()
        assert compiler.objects == [obj]

    def test_changed_flags_force_rebuild(self, compiler, src_tree, tmp_path):
        source = src_tree / "main.c"
        with patch("fwbuild.build.toolchain.run_with_timeout", side_effect=write_output):
            obj = compiler.compile_file(source, UnitKind.C)
        os.utime(source, (1000, 1000))
        os.utime(obj, (2000, 2000))
        assert "-O0" not in obj.read_text()

        debug = GccCompiler(cc="arm-gcc", asm="arm-as", ar="arm-ar", dst_dir=tmp_path / "obj", cflags=["-O0", "-g3"])
        with patch("fwbuild.build.toolchain.run_with_timeout", side_effect=write_output) as mock_run:
            assert debug.compile_file(source, UnitKind.C) == obj

        mock_run.assert_called_once()
        assert "-O0 -g3" in obj.read_text()

    def test_object_without_recorded_command_rebuilt(self, compiler, src_tree):
        source = src_tree / "main.c"
        obj = compiler.dst_dir / "main.c.o"
        obj.parent.mkdir(parents=True)
        obj.write_text("obj")
        os.utime(source, (1000, 1000))
        os.utime(obj, (2000, 2000))

        with patch("fwbuild.build.toolchain.run_with_timeout", side_effect=write_output) as mock_run:
            compiler.compile_file(source, UnitKind.C)

        mock_run.assert_called_once()
        assert (compiler.dst_dir / "main.c.o.cmd").read_text().startswith("arm-gcc\n")

    def test_failed_compile_forgets_command(self, compiler, src_tree):
        source = src_tree / "main.c"
        with patch("fwbuild.build.toolchain.run_with_timeout", side_effect=write_output):
            obj = compiler.compile_file(source, UnitKind.C)

        failed = subprocess.CompletedProcess([], 1, "main.c:1: error", "")
        compiler.add_info(CompilerInfo(cflags=["-Werror"]))
        with patch("fwbuild.build.toolchain.run_with_timeout", return_value=failed):
            with pytest.raises(CompileError):
                compiler.compile_file(source, UnitKind.C)

        assert obj.exists()
        assert not (compiler.dst_dir / "main.c.o.cmd").exists()

    def test_newer_manifest_forces_rebuild(self, compiler, src_tree, tmp_path):
        source = src_tree / "main.c"
        manifest = tmp_path / "pkg" / "pkg.json"
        manifest.write_text("{}")
        with patch("fwbuild.build.toolchain.run_with_timeout", side_effect=write_output):
            obj = compiler.compile_file(source, UnitKind.C)
        os.utime(source, (1000, 1000))
        os.utime(obj, (2000, 2000))
        os.utime(manifest, (3000, 3000))
        compiler.add_deps([manifest])

        with patch("fwbuild.build.toolchain.run_with_timeout", side_effect=ok) as mock_run:
            compiler.compile_file(source, UnitKind.C)

        mock_run.assert_called_once()

    def test_compile_failure(self, compiler, src_tree):
        failed = subprocess.CompletedProcess([], 1, "main.c:1: error: expected ';'", "")
        with patch("fwbuild.build.toolchain.run_with_timeout", return_value=failed):
            with pytest.raises(CompileError, match="expected ';'"):
                compiler.compile_file(src_tree / "main.c", UnitKind.C)

    def test_compile_timeout(self, compiler, src_tree):
        timeout = ToolTimeoutError(["arm-gcc"], 5.0)
        with patch("fwbuild.build.toolchain.run_with_timeout", side_effect=timeout):
            with pytest.raises(CompileError) as exc_info:
                compiler.compile_file(src_tree / "main.c", UnitKind.C)

        assert exc_info.value.cause is timeout

    def test_same_file_name_in_subdirectories(self, compiler, src_tree, tmp_path):
        (src_tree / "arch" / "sim" / "uart.c").write_text("/* source */\n")
        compiler.source_root = tmp_path / "pkg"

        with patch("fwbuild.build.toolchain.run_with_timeout", side_effect=ok):
            compiler.recursive_compile(src_tree / "drivers", UnitKind.C, [])
            compiler.recursive_compile(src_tree / "arch" / "sim", UnitKind.C, [])

        assert compiler.objects == [
            tmp_path / "obj" / "src" / "drivers" / "uart.c.o",
            tmp_path / "obj" / "src" / "drivers" / "uart_old.c.o",
            tmp_path / "obj" / "src" / "arch" / "sim" / "uart.c.o",
        ]

    def test_objects_relative_to_compiled_directory(self, compiler, src_tree, tmp_path):
        with patch("fwbuild.build.toolchain.run_with_timeout", side_effect=ok):
            compiler.recursive_compile(src_tree / "drivers", UnitKind.C, [])
            compiler.recursive_compile(src_tree, UnitKind.C, ["arch", "drivers", "legacy", "test"])

        assert compiler.objects == [
            tmp_path / "obj" / "uart.c.o",
            tmp_path / "obj" / "uart_old.c.o",
            tmp_path / "obj" / "main.c.o",
            tmp_path / "obj" / "util.c.o",
        ]


class TestArchiveAndLink:
    """Tests for archiving and linking."""

    def test_no_objects_no_archive(self, compiler, tmp_path):
        with patch("fwbuild.build.toolchain.run_with_timeout") as mock_run:
            assert compiler.compile_archive(tmp_path / "out" / "lib.a") is None
        mock_run.assert_not_called()

    def test_archive_replaces_existing(self, compiler, src_tree, tmp_path):
        archive = tmp_path / "out" / "lib.a"
        archive.parent.mkdir()
        archive.write_text("stale")

        with patch("fwbuild.build.toolchain.run_with_timeout", side_effect=ok) as mock_run:
            compiler.compile_file(src_tree / "main.c", UnitKind.C)
            assert compiler.compile_archive(archive) == archive

        assert not archive.exists()
        ar_call = mock_run.call_args_list[-1]
        assert ar_call.args[0] == ["arm-ar", "qcs", str(archive), str(compiler.dst_dir / "main.c.o")]

    def test_link_command(self, compiler, tmp_path):
        compiler.ldflags = ["-nostartfiles"]
        compiler.linker_script = tmp_path / "bsp" / "link.ld"
        compiler.add_info(CompilerInfo(lflags=["-lm"]))
        archives = [tmp_path / "a.a", tmp_path / "b.a"]
        elf = tmp_path / "out" / "app.elf"

        assert compiler.link_command(elf, archives) == [
            "arm-gcc",
            "-o",
            str(elf),
            "-nostartfiles",
            f"-T{tmp_path / 'bsp' / 'link.ld'}",
            "-Wl,--start-group",
            str(archives[0]),
            str(archives[1]),
            "-Wl,--end-group",
            "-lm",
        ]

    def test_link_failure(self, compiler, tmp_path):
        failed = subprocess.CompletedProcess([], 1, "undefined reference to `main'", "")
        with patch("fwbuild.build.toolchain.run_with_timeout", return_value=failed):
            with pytest.raises(LinkError, match="undefined reference"):
                compiler.compile_elf(tmp_path / "out" / "app.elf", [])

    def test_link_timeout(self, compiler, tmp_path):
        with patch("fwbuild.build.toolchain.run_with_timeout", side_effect=ToolTimeoutError(["arm-gcc"], 5.0)):
            with pytest.raises(LinkError, match="timeout"):
                compiler.compile_elf(tmp_path / "out" / "app.elf", [])


class TestFromPackage:
    """Tests for GccCompiler.from_package()."""

    def test_tools_and_declared_profile_flags(self, tmp_path):
        pkg = LocalPackage(
            "compiler/arm",
            tmp_path / "compiler",
            {
                "compiler.path.cc": "bin/arm-none-eabi-gcc",
                "compiler.path.archive": "arm-none-eabi-ar",
                "compiler.flags.base": "-mcpu=cortex-m4 -mthumb",
                "compiler.flags.debug": "-O1 -ggdb",
                "compiler.ld.flags": "-static",
            },
        )

        compiler = GccCompiler.from_package(pkg, tmp_path / "obj", BuildProfile.DEBUG, timeout=9.0)

        assert compiler.cc == str(tmp_path / "compiler" / "bin" / "arm-none-eabi-gcc")
        assert compiler.asm == compiler.cc
        assert compiler.ar == "arm-none-eabi-ar"
        assert compiler.info.cflags == ["-mcpu=cortex-m4", "-mthumb", "-O1", "-ggdb"]
        assert compiler.ldflags == ["-static"]
        assert compiler.timeout == 9.0

    def test_profile_fallback_flags(self, tmp_path):
        pkg = LocalPackage("compiler/arm", tmp_path, {"compiler.flags.base": "-O3 -mthumb -g"})

        compiler = GccCompiler.from_package(pkg, tmp_path / "obj", BuildProfile.DEFAULT)

        assert compiler.cc == "gcc"
        assert compiler.info.cflags == ["-mthumb", "-Os", "-g", "-ffunction-sections", "-fdata-sections"]
        assert compiler.ldflags == ["-Wl,--gc-sections"]
