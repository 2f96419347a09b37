"""
Tests for environment assembly.
"""

from pathlib import Path

import pytest

from xwinkit.core.exceptions import AssemblyError, ConfigurationError
from xwinkit.core.platform import HostConventions
from xwinkit.cross.environment import (
    EnvironmentAssembler,
    is_static_crt,
    normalize_path,
    user_rustflags,
)
from xwinkit.toolchain.strategies import ClangBackend, ClangClBackend
from xwinkit.toolchain.strategy import Tool, ToolRoles

T = "X86_64_PC_WINDOWS_MSVC"
t = "x86_64_pc_windows_msvc"


@pytest.fixture
def assembler():
    return EnvironmentAssembler()


@pytest.fixture
def clang_cl():
    return ClangClBackend()


def assemble(assembler, spec, backend, host, root, env=None, **kwargs):
    return assembler.assemble(
        spec, backend, host, root, env or {}, bin_dir=Path("/cache/bin"), **kwargs
    )


@pytest.mark.unit
class TestPathRules:
    """Path normalization rules."""

    def test_verbatim_prefix_stripped(self):
        assert normalize_path("\\\\?\\C:\\xwin\\crt") == "C:/xwin/crt"

    def test_posix_path_unchanged(self):
        assert normalize_path("/home/me/.cache/xwin") == "/home/me/.cache/xwin"

    def test_relative_path_rejected(self):
        with pytest.raises(ConfigurationError, match="absolute"):
            normalize_path("cache/xwin")


@pytest.mark.unit
class TestRustflags:
    """Rustflags helpers."""

    def test_encoded_wins(self):
        env = {
            "CARGO_ENCODED_RUSTFLAGS": "-C\x1ftarget-feature=+crt-static",
            "RUSTFLAGS": "-Dwarnings",
        }

        assert user_rustflags(env, _spec_stub()) == ["-C", "target-feature=+crt-static"]

    def test_plain_then_per_target(self):
        assert user_rustflags({"RUSTFLAGS": "-Dwarnings"}, _spec_stub()) == [
            "-Dwarnings"
        ]
        assert user_rustflags(
            {f"CARGO_TARGET_{T}_RUSTFLAGS": "-g"}, _spec_stub()
        ) == ["-g"]

    def test_config_flags_used_when_environment_is_silent(self):
        config = ["-C", "target-feature=+crt-static"]

        assert user_rustflags({}, _spec_stub(), config) == config
        assert user_rustflags({"RUSTFLAGS": "-g"}, _spec_stub(), config) == ["-g"]

    def test_static_crt_last_wins(self):
        assert is_static_crt(["-C", "target-feature=+crt-static"])
        assert not is_static_crt(
            ["-Ctarget-feature=+crt-static", "-Ctarget-feature=-crt-static"]
        )
        assert not is_static_crt([])


def _spec_stub():
    class Stub:
        env_target_upper = T

    return Stub()


@pytest.mark.unit
class TestClangClPlan:
    """Plans for the clang-cl backend."""

    def test_compiler_and_target(
        self, assembler, clang_cl, make_spec, linux_host, splat_root
    ):
        plan = assemble(assembler, make_spec(), clang_cl, linux_host, splat_root)

        assert plan.env.get(f"CC_{t}") == "clang-cl"
        assert plan.env.get(f"CXX_{t}") == "clang-cl"
        assert plan.env.get(f"AR_{t}") == "llvm-lib"
        assert plan.env.get(f"CARGO_TARGET_{T}_LINKER") == "lld-link"
        assert "--target=x86_64-pc-windows-msvc" in plan.flags_for("c")

    def test_include_paths_without_atl(
        self, assembler, clang_cl, make_spec, linux_host, splat_root
    ):
        plan = assemble(assembler, make_spec(), clang_cl, linux_host, splat_root)

        root = splat_root.as_posix()
        assert f"{root}/crt/include" in plan.include_dirs
        assert f"{root}/sdk/include/ucrt" in plan.include_dirs
        assert f"{root}/crt/lib/x86_64" in plan.lib_dirs
        assert f"{root}/sdk/lib/um/x86_64" in plan.lib_dirs
        assert not any("atlmfc" in d for d in plan.include_dirs + plan.lib_dirs)

        cflags = plan.flags_for("c")
        position = cflags.index(f"{root}/crt/include")
        assert cflags[position - 1] == "/imsvc"

    def test_include_paths_with_atl(
        self, assembler, clang_cl, make_spec, linux_host, splat_root_atl
    ):
        plan = assemble(
            assembler,
            make_spec(xwin_include_atl=True),
            clang_cl,
            linux_host,
            splat_root_atl,
        )

        root = splat_root_atl.as_posix()
        assert f"{root}/crt/atlmfc/include" in plan.include_dirs
        assert f"{root}/crt/atlmfc/lib/x86_64" in plan.lib_dirs
        assert f"{root}/crt/atlmfc/include" in plan.flags_for("c")

    def test_lib_dirs_follow_target_arch(
        self, assembler, clang_cl, make_spec, linux_host, splat_root
    ):
        plan = assemble(
            assembler,
            make_spec("aarch64-pc-windows-msvc"),
            clang_cl,
            linux_host,
            splat_root,
        )

        assert all(d.endswith("/aarch64") for d in plan.lib_dirs)
        assert plan.processor == "ARM64"

    def test_lib_and_cl_flags_exported(
        self, assembler, clang_cl, make_spec, linux_host, splat_root
    ):
        plan = assemble(assembler, make_spec(), clang_cl, linux_host, splat_root)

        assert plan.env.get("LIB") == ";".join(plan.lib_dirs)
        assert plan.env.get("CL_FLAGS") == " ".join(plan.flags_for("c"))

    def test_cxx_adds_exception_model(
        self, assembler, clang_cl, make_spec, linux_host, splat_root
    ):
        plan = assemble(assembler, make_spec(), clang_cl, linux_host, splat_root)

        assert plan.flags_for("cxx")[-1] == "/EHsc"
        assert "/EHsc" not in plan.flags_for("c")

    def test_rustflags(self, assembler, clang_cl, make_spec, linux_host, splat_root):
        plan = assemble(assembler, make_spec(), clang_cl, linux_host, splat_root)

        rustflags = plan.env.get(f"CARGO_TARGET_{T}_RUSTFLAGS").split()
        assert rustflags[:2] == ["-C", "linker-flavor=lld-link"]
        assert [f for f in rustflags if f.startswith("-Lnative=")] == [
            f"-Lnative={d}" for d in plan.lib_dirs
        ]
        assert plan.msvc_runtime == "MultiThreadedDLL"

    def test_static_crt(self, assembler, clang_cl, make_spec, linux_host, splat_root):
        env = {"RUSTFLAGS": "-C target-feature=+crt-static"}

        plan = assemble(assembler, make_spec(), clang_cl, linux_host, splat_root, env)

        rustflags = plan.env.get(f"CARGO_TARGET_{T}_RUSTFLAGS")
        assert rustflags.startswith("-C target-feature=+crt-static -C linker-flavor")
        assert "link-arg=-defaultlib:libucrt" in rustflags
        assert plan.msvc_runtime == "MultiThreaded"
        assert "RUSTFLAGS" in plan.removed

    def test_static_crt_from_config_file(
        self, assembler, clang_cl, make_spec, linux_host, splat_root
    ):
        plan = assemble(
            assembler,
            make_spec(),
            clang_cl,
            linux_host,
            splat_root,
            config_rustflags=["-C", "target-feature=+crt-static"],
        )

        rustflags = plan.env.get(f"CARGO_TARGET_{T}_RUSTFLAGS")
        assert rustflags.startswith("-C target-feature=+crt-static -C linker-flavor")
        assert "link-arg=-nodefaultlib:ucrt" in rustflags
        assert plan.msvc_runtime == "MultiThreaded"

    def test_cmake_variables(
        self, assembler, clang_cl, make_spec, linux_host, splat_root, tmp_path
    ):
        descriptor = tmp_path / "x86_64-pc-windows-msvc-toolchain.cmake"

        plan = assemble(
            assembler,
            make_spec(),
            clang_cl,
            linux_host,
            splat_root,
            descriptor_path=descriptor,
        )

        assert plan.env.get("CMAKE_GENERATOR") == "Ninja"
        assert plan.env.get("CMAKE_SYSTEM_NAME") == "Windows"
        assert plan.env.get(f"CMAKE_TOOLCHAIN_FILE_{t}") == descriptor.as_posix()
        assert plan.descriptor_path == descriptor.as_posix()


@pytest.mark.unit
class TestPrecedence:
    """User values versus computed values."""

    def test_user_scalar_kept(
        self, assembler, clang_cl, make_spec, linux_host, splat_root
    ):
        env = {f"CC_{t}": "/opt/llvm/bin/clang-cl", "CMAKE_GENERATOR": "Unix Makefiles"}

        plan = assemble(assembler, make_spec(), clang_cl, linux_host, splat_root, env)

        assert plan.env.get(f"CC_{t}") == "/opt/llvm/bin/clang-cl"
        assert plan.env.get("CMAKE_GENERATOR") == "Unix Makefiles"

    def test_empty_user_scalar_is_unset(
        self, assembler, clang_cl, make_spec, linux_host, splat_root
    ):
        plan = assemble(
            assembler, make_spec(), clang_cl, linux_host, splat_root, {f"CC_{t}": ""}
        )

        assert plan.env.get(f"CC_{t}") == "clang-cl"

    def test_user_list_entries_first(
        self, assembler, clang_cl, make_spec, linux_host, splat_root
    ):
        env = {"CFLAGS": "-DUSER=1", "LIB": "/user/lib", "PATH": "/usr/bin:/bin"}

        plan = assemble(assembler, make_spec(), clang_cl, linux_host, splat_root, env)

        assert plan.env.get(f"CFLAGS_{t}").startswith("-DUSER=1 --target=")
        assert plan.env.get("LIB").startswith("/user/lib;")
        assert plan.env.get("PATH") == "/usr/bin:/bin:/cache/bin"

    def test_per_target_cflags_beat_generic(
        self, assembler, clang_cl, make_spec, linux_host, splat_root
    ):
        env = {"CFLAGS": "-DGENERIC", f"CFLAGS_{t}": "-DTARGET"}

        plan = assemble(assembler, make_spec(), clang_cl, linux_host, splat_root, env)

        assert plan.env.get(f"CFLAGS_{t}").startswith("-DTARGET ")
        assert "-DGENERIC" not in plan.env.get(f"CFLAGS_{t}")

    def test_bin_dir_not_duplicated(
        self, assembler, clang_cl, make_spec, linux_host, splat_root
    ):
        env = {"PATH": "/cache/bin:/usr/bin"}

        plan = assemble(assembler, make_spec(), clang_cl, linux_host, splat_root, env)

        assert plan.env.get("PATH") == "/cache/bin:/usr/bin"

    def test_windows_path_separator(
        self, assembler, clang_cl, make_spec, windows_host, splat_root
    ):
        env = {"PATH": "C:\\Windows"}

        plan = assemble(assembler, make_spec(), clang_cl, windows_host, splat_root, env)

        assert plan.env.get("PATH").split(";")[0] == "C:\\Windows"

    def test_apply_overlays_and_removes(
        self, assembler, clang_cl, make_spec, linux_host, splat_root
    ):
        env = {"HOME": "/home/me", "RUSTFLAGS": "-g", f"CC_{t}": ""}
        plan = assemble(assembler, make_spec(), clang_cl, linux_host, splat_root, env)

        child = plan.apply(env)

        assert child["HOME"] == "/home/me"
        assert "RUSTFLAGS" not in child
        assert child[f"CC_{t}"] == "clang-cl"
        assert child[f"CARGO_TARGET_{T}_RUSTFLAGS"].startswith("-g ")


@pytest.mark.unit
class TestDeterminism:
    """Identical inputs give identical plans."""

    def test_same_plan_twice(
        self, assembler, clang_cl, make_spec, linux_host, splat_root
    ):
        env = {"PATH": "/usr/bin", "CFLAGS": "-O2"}

        first = assemble(assembler, make_spec(), clang_cl, linux_host, splat_root, env)
        second = assemble(assembler, make_spec(), clang_cl, linux_host, splat_root, env)

        assert first == second
        assert first.variables == second.variables

    def test_base_env_not_mutated(
        self, assembler, clang_cl, make_spec, linux_host, splat_root
    ):
        env = {"PATH": "/usr/bin"}

        assemble(assembler, make_spec(), clang_cl, linux_host, splat_root, env)

        assert env == {"PATH": "/usr/bin"}


@pytest.mark.unit
class TestClangPlan:
    """Plans for the plain clang backend."""

    def test_sysroot_layout(self, assembler, make_spec, linux_host, sysroot_root):
        plan = assemble(
            assembler, make_spec(), ClangBackend(), linux_host, sysroot_root
        )

        root = sysroot_root.as_posix()
        assert plan.env.get(f"CC_{t}") == "clang"
        assert plan.env.get(f"CXX_{t}") == "clang++"
        assert plan.env.get(f"CARGO_TARGET_{T}_LINKER") == "lld-link"
        assert "--target=x86_64-windows-msvc" in plan.flags_for("c")
        assert f"-I{root}/include" in plan.flags_for("c")
        assert plan.lib_dirs == (f"{root}/lib/x86_64-unknown-windows-msvc",)
        cflags = plan.env[f"CFLAGS_{t}"]
        assert f"-L{root}/lib/x86_64-unknown-windows-msvc" in cflags
        assert plan.env.get("LIB") is None
        assert plan.env.get("CL_FLAGS") is None

    def test_i686_uses_sysroot_arch(
        self, assembler, make_spec, linux_host, sysroot_root
    ):
        plan = assemble(
            assembler,
            make_spec("i686-pc-windows-msvc"),
            ClangBackend(),
            linux_host,
            sysroot_root,
        )

        assert plan.target_triple == "i686-windows-msvc"
        assert plan.lib_dirs[0].endswith("/lib/i686-unknown-windows-msvc")

    @pytest.mark.parametrize(
        "triple,overrides",
        [
            ("thumbv7a-pc-windows-msvc", {}),
            ("x86_64-pc-windows-msvc", {"xwin_include_atl": True}),
            ("x86_64-pc-windows-msvc", {"xwin_sdk_version": "10.0.22621"}),
        ],
    )
    def test_unsupported_pairings(
        self, assembler, make_spec, linux_host, sysroot_root, triple, overrides
    ):
        with pytest.raises(ConfigurationError, match="clang backend"):
            assemble(
                assembler,
                make_spec(triple, **overrides),
                ClangBackend(),
                linux_host,
                sysroot_root,
            )


@pytest.mark.unit
class TestFailures:
    """Assembly failures."""

    def test_missing_search_dir(
        self, assembler, clang_cl, make_spec, linux_host, tmp_path
    ):
        root = tmp_path / "empty"
        root.mkdir()

        with pytest.raises(AssemblyError) as exc_info:
            assemble(assembler, make_spec(), clang_cl, linux_host, root)

        assert exc_info.value.missing == "crt/include"
        assert exc_info.value.exit_code == 4

    def test_atl_requested_but_not_in_root(
        self, assembler, clang_cl, make_spec, linux_host, splat_root
    ):
        with pytest.raises(AssemblyError, match="atlmfc"):
            assemble(
                assembler,
                make_spec(xwin_include_atl=True),
                clang_cl,
                linux_host,
                splat_root,
            )

    def test_mixed_tool_roles_rejected(
        self, assembler, make_spec, linux_host, splat_root
    ):
        class MixedBackend(ClangClBackend):
            def tool_roles(self):
                return ToolRoles(
                    c_compiler=Tool("clang-cl", "clang-cl"),
                    cxx_compiler=Tool("clang++", "clang"),
                    archiver=Tool("llvm-lib", "clang-cl"),
                    linker=Tool("lld-link", "clang-cl"),
                    resource_compiler=Tool("llvm-rc", "clang-cl"),
                )

        with pytest.raises(ConfigurationError, match="cxx_compiler"):
            assemble(assembler, make_spec(), MixedBackend(), linux_host, splat_root)


@pytest.mark.unit
class TestMacosHost:
    """Homebrew LLVM is added to PATH on macOS when installed."""

    def test_homebrew_llvm(
        self, assembler, clang_cl, make_spec, splat_root, monkeypatch
    ):
        host = HostConventions("macos", "arm64", ":")
        original_is_dir = Path.is_dir

        def fake_is_dir(self, *args, **kwargs):
            if str(self) == "/opt/homebrew/opt/llvm/bin":
                return True
            return original_is_dir(self, *args, **kwargs)

        monkeypatch.setattr(Path, "is_dir", fake_is_dir)

        plan = assemble(
            assembler, make_spec(), clang_cl, host, splat_root, {"PATH": "/usr/bin"}
        )

        assert plan.env.get("PATH") == "/usr/bin:/opt/homebrew/opt/llvm/bin:/cache/bin"
