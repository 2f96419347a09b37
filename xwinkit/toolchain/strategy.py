"""
Compiler Backend Interface.

This module defines the interface for compiler backends, which encapsulate
the flag dialect, tool names and SDK layout of one Windows MSVC cross
compiler frontend.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Dict, List

from xwinkit.core.exceptions import ConfigurationError
from xwinkit.cross.targets import TargetSpec


@dataclass(frozen=True)
class Tool:
    """An executable bound to the backend it belongs to."""

    name: str
    backend: str


@dataclass(frozen=True)
class ToolRoles:
    """Executables for every toolchain role."""

    c_compiler: Tool
    cxx_compiler: Tool
    archiver: Tool
    linker: Tool
    resource_compiler: Tool

    def check_consistent(self, backend: str) -> None:
        """
        Ensure every role is bound to ``backend``.

        Raises:
            ConfigurationError: If any role comes from a different backend
        """
        for role in fields(self):
            tool = getattr(self, role.name)
            if tool.backend != backend:
                raise ConfigurationError(
                    f"Toolchain role {role.name} uses {tool.name} from the "
                    f"{tool.backend} backend, but the selected backend is {backend}"
                )


class CompilerBackend(ABC):
    """
    Abstract base class for compiler backends.

    A backend defines how to configure a specific cross compiler frontend
    (clang-cl or clang) for a Windows MSVC target.

    Attributes:
        name: Backend name as selected with ``--cross-compiler``
        provider_name: Name of the SDK provider whose layout this backend reads
    """

    name: str = ""
    provider_name: str = ""

    @abstractmethod
    def tool_roles(self) -> ToolRoles:
        """Executables for the compiler, archiver, linker and resource compiler."""
        pass

    @abstractmethod
    def target_triple(self, spec: TargetSpec) -> str:
        """Triple passed to ``--target=`` in this backend's vocabulary."""
        pass

    def check_supported(self, spec: TargetSpec) -> None:
        """
        Reject targets this backend cannot build.

        Raises:
            ConfigurationError: On an unsupported architecture or option pairing
        """
        return None

    @abstractmethod
    def include_dirs(self, root: Path, spec: TargetSpec) -> List[Path]:
        """Header search directories inside the ready root, in search order."""
        pass

    @abstractmethod
    def lib_dirs(self, root: Path, spec: TargetSpec) -> List[Path]:
        """Library search directories inside the ready root, in search order."""
        pass

    @abstractmethod
    def compile_flags(self, triple: str, include_dirs: List[str]) -> List[str]:
        """Flags shared by C and C++ compilation."""
        pass

    def cxx_extra_flags(self) -> List[str]:
        """Flags added for C++ only."""
        return []

    def env_extra_flags(self, lib_dirs: List[str]) -> List[str]:
        """Flags added to ``CFLAGS_<t>``/``CXXFLAGS_<t>`` only."""
        return []

    def include_args(self, include_dirs: List[str]) -> List[str]:
        """``-I`` flags for the resource compiler and bindgen."""
        return [f"-I{d}" for d in include_dirs]

    def descriptor_link_flags(
        self, lib_dirs: List[str], debug_symbols: bool
    ) -> List[str]:
        """Linker flags for the CMake toolchain file."""
        flags = ["/manifest:no"]
        flags += [f'-libpath:"{d}"' for d in lib_dirs]
        if debug_symbols:
            flags.append("/DEBUG")
        return flags

    def exports_lib_variable(self) -> bool:
        """Whether the ``LIB`` search path variable is part of the environment."""
        return False

    def exports_cl_flags(self) -> bool:
        """Whether ``CL_FLAGS`` is part of the environment."""
        return False

    def linked_tools(self) -> Dict[str, str]:
        """Tool links to create in ``<cache>/bin``: link name -> source tool."""
        return {
            "lld-link": "rust-lld",
            "llvm-lib": "llvm-ar",
            "llvm-dlltool": "llvm-ar",
        }
