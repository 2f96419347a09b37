"""
Standard Compiler Backends.

Implementations for the two supported frontends: clang-cl (MSVC-compatible
driver over an xwin splat) and clang (GNU-style driver over the
windows-msvc-sysroot release).
"""

from pathlib import Path
from typing import Dict, List

from xwinkit.core.exceptions import ConfigurationError
from xwinkit.cross.targets import Architecture, TargetSpec
from ..strategy import CompilerBackend, Tool, ToolRoles


class ClangClBackend(CompilerBackend):
    """Backend for clang-cl."""

    name = "clang-cl"
    provider_name = "xwin"

    def tool_roles(self) -> ToolRoles:
        return ToolRoles(
            c_compiler=Tool("clang-cl", self.name),
            cxx_compiler=Tool("clang-cl", self.name),
            archiver=Tool("llvm-lib", self.name),
            linker=Tool("lld-link", self.name),
            resource_compiler=Tool("llvm-rc", self.name),
        )

    def target_triple(self, spec: TargetSpec) -> str:
        return f"{spec.triple_arch}-pc-windows-msvc"

    def include_dirs(self, root: Path, spec: TargetSpec) -> List[Path]:
        dirs = [
            root / "crt" / "include",
            root / "sdk" / "include" / "ucrt",
            root / "sdk" / "include" / "um",
            root / "sdk" / "include" / "shared",
            root / "sdk" / "include" / "winrt",
        ]
        if spec.include_atl:
            dirs.append(root / "crt" / "atlmfc" / "include")
        return dirs

    def lib_dirs(self, root: Path, spec: TargetSpec) -> List[Path]:
        arch = spec.architecture.xwin_name
        dirs = [
            root / "crt" / "lib" / arch,
            root / "sdk" / "lib" / "um" / arch,
            root / "sdk" / "lib" / "ucrt" / arch,
        ]
        if spec.include_atl:
            dirs.append(root / "crt" / "atlmfc" / "lib" / arch)
        return dirs

    def compile_flags(self, triple: str, include_dirs: List[str]) -> List[str]:
        flags = [
            f"--target={triple}",
            "-Wno-unused-command-line-argument",
            "-fuse-ld=lld-link",
        ]
        for include_dir in include_dirs:
            flags += ["/imsvc", include_dir]
        return flags

    def cxx_extra_flags(self) -> List[str]:
        return ["/EHsc"]

    def exports_lib_variable(self) -> bool:
        return True

    def exports_cl_flags(self) -> bool:
        return True

    def linked_tools(self) -> Dict[str, str]:
        tools = {"clang-cl": "clang"}
        tools.update(super().linked_tools())
        return tools


class ClangBackend(CompilerBackend):
    """Backend for plain clang with the windows-msvc-sysroot layout."""

    name = "clang"
    provider_name = "windows-msvc-sysroot"

    _ARCHES = {
        Architecture.X86: "i686",
        Architecture.X86_64: "x86_64",
        Architecture.ARM64: "aarch64",
    }

    def tool_roles(self) -> ToolRoles:
        return ToolRoles(
            c_compiler=Tool("clang", self.name),
            cxx_compiler=Tool("clang++", self.name),
            archiver=Tool("llvm-lib", self.name),
            linker=Tool("lld-link", self.name),
            resource_compiler=Tool("llvm-rc", self.name),
        )

    def check_supported(self, spec: TargetSpec) -> None:
        if spec.architecture not in self._ARCHES:
            raise ConfigurationError(
                f"The clang backend does not support {spec.triple}: "
                f"windows-msvc-sysroot has no {spec.architecture.value} libraries"
            )
        if spec.include_atl:
            raise ConfigurationError(
                "The clang backend cannot include ATL; use --cross-compiler clang-cl"
            )
        if spec.sdk_version or spec.crt_version:
            raise ConfigurationError(
                "The clang backend uses the prebuilt windows-msvc-sysroot release "
                "and cannot pin SDK or CRT versions"
            )

    def clang_arch(self, spec: TargetSpec) -> str:
        return self._ARCHES[spec.architecture]

    def target_triple(self, spec: TargetSpec) -> str:
        return f"{self.clang_arch(spec)}-windows-msvc"

    def include_dirs(self, root: Path, spec: TargetSpec) -> List[Path]:
        return [root / "include", root / "include" / "c++" / "stl"]

    def lib_dirs(self, root: Path, spec: TargetSpec) -> List[Path]:
        return [root / "lib" / f"{self.clang_arch(spec)}-unknown-windows-msvc"]

    def compile_flags(self, triple: str, include_dirs: List[str]) -> List[str]:
        flags = [
            f"--target={triple}",
            "-Wno-unused-command-line-argument",
            "-fuse-ld=lld-link",
        ]
        flags += [f"-I{d}" for d in include_dirs]
        return flags

    def env_extra_flags(self, lib_dirs: List[str]) -> List[str]:
        return [f"-L{d}" for d in lib_dirs]
