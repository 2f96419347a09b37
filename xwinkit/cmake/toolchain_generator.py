"""
CMake Toolchain File Generator

This module renders an `EnvironmentPlan` into a CMake toolchain file so that
CMake projects built from ``build.rs`` (through the ``cmake`` crate) use the
same compiler, flags and search paths as the cargo build itself.

A companion ``override.cmake`` is written next to every toolchain file and
loaded through ``CMAKE_USER_MAKE_RULES_OVERRIDE``. It holds the quirk rules:
small, named fix-ups of CMake's default rules that clang-cl needs when it is
driven from a non-Windows host.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence, Tuple

from ..core.filesystem import atomic_write
from ..cross.environment import EnvironmentPlan

logger = logging.getLogger(__name__)

OVERRIDE_FILE_NAME = "override.cmake"


@dataclass(frozen=True)
class QuirkRule:
    """A named fix-up emitted into ``override.cmake``."""

    name: str
    comment: str
    lines: Tuple[str, ...]

    def render(self) -> List[str]:
        return [f"# {self.comment}", *self.lines]


# Host paths such as /Users/... would otherwise be parsed by clang-cl as /U
SOURCE_TERMINATOR = QuirkRule(
    name="source-terminator",
    comment="Separate source files from options: -c -- <SOURCE>",
    lines=(
        'string(REPLACE "-c <SOURCE>" "-c -- <SOURCE>" CMAKE_C_COMPILE_OBJECT '
        '"${CMAKE_C_COMPILE_OBJECT}")',
        'string(REPLACE "-c <SOURCE>" "-c -- <SOURCE>" CMAKE_CXX_COMPILE_OBJECT '
        '"${CMAKE_CXX_COMPILE_OBJECT}")',
    ),
)

# Older CMake spells resource compiler defines as /D, which llvm-rc rejects
RC_DEFINE_SPELLING = QuirkRule(
    name="rc-define-spelling",
    comment="Resource compiler defines use -D instead of the inherited /D",
    lines=(
        'string(REPLACE "/D" "-D" CMAKE_RC_FLAGS "${CMAKE_RC_FLAGS_INIT}")',
        'string(REPLACE "/D" "-D" CMAKE_RC_FLAGS_DEBUG "${CMAKE_RC_FLAGS_DEBUG_INIT}")',
    ),
)

NINJA_CMCLDEPS = QuirkRule(
    name="ninja-cmcldeps",
    comment="cmcldeps only exists on Windows hosts",
    lines=(
        "if(NOT CMAKE_HOST_WIN32)",
        "  set(CMAKE_NINJA_CMCLDEPS_RC 0)",
        "endif()",
    ),
)

QUIRK_RULES: Tuple[QuirkRule, ...] = (
    SOURCE_TERMINATOR,
    RC_DEFINE_SPELLING,
    NINJA_CMCLDEPS,
)


def descriptor_path(target_dir: Path, backend: str, triple: str) -> Path:
    """Stable toolchain file location for one target inside the build output."""
    cmake_dir = Path(target_dir) / "xwinkit" / "cmake" / backend
    return cmake_dir / f"{triple}-toolchain.cmake"


def _cmake_arg(token: str) -> str:
    if " " in token and not token.startswith('"'):
        return f'"{token}"'
    return token


class ToolchainFileGenerator:
    """Generates CMake toolchain files from environment plans.

    Example:
        >>> generator = ToolchainFileGenerator()
        >>> text = generator.render(plan)
        >>> generator.generate(plan, Path(plan.descriptor_path))
    """

    def __init__(self, rules: Sequence[QuirkRule] = QUIRK_RULES):
        self.rules = tuple(rules)

    def render(self, plan: EnvironmentPlan) -> str:
        """Render the toolchain file text. Pure; no timestamps."""
        lines: List[str] = []
        lines.extend(self._render_header(plan))
        lines.append("")
        lines.extend(self._render_tools(plan))
        lines.append("")
        lines.extend(self._render_flags(plan))
        lines.append("")
        lines.extend(self._render_defaults())
        return "\n".join(lines) + "\n"

    def render_override(self) -> str:
        """Render ``override.cmake`` from the quirk rules."""
        lines = [
            "# Generated by xwinkit - do not edit",
            "# Loaded through CMAKE_USER_MAKE_RULES_OVERRIDE after CMake set up",
            "# its default rules, so the rules below patch them in place.",
        ]
        for rule in self.rules:
            lines.append("")
            lines.extend(rule.render())
        return "\n".join(lines) + "\n"

    def write(self, text: str, destination: Path) -> Path:
        """Atomically replace ``destination`` with ``text``."""
        destination = Path(destination)
        atomic_write(destination, text)
        return destination

    def generate(self, plan: EnvironmentPlan, destination: Path) -> Path:
        """
        Write the toolchain file and its ``override.cmake``.

        Args:
            plan: Environment plan for the target
            destination: Toolchain file path

        Returns:
            Path to the toolchain file
        """
        destination = Path(destination)
        self.write(self.render_override(), destination.parent / OVERRIDE_FILE_NAME)
        self.write(self.render(plan), destination)
        logger.debug(f"Generated CMake toolchain file: {destination}")
        return destination

    def _render_header(self, plan: EnvironmentPlan) -> List[str]:
        return [
            "# Generated by xwinkit - do not edit",
            f"# Target: {plan.triple} ({plan.backend})",
            "",
            "set(CMAKE_SYSTEM_NAME Windows)",
            f"set(CMAKE_SYSTEM_PROCESSOR {plan.processor})",
        ]

    def _render_tools(self, plan: EnvironmentPlan) -> List[str]:
        tools = plan.tools
        return [
            f'set(CMAKE_C_COMPILER {tools.c_compiler.name} CACHE FILEPATH "")',
            f'set(CMAKE_CXX_COMPILER {tools.cxx_compiler.name} CACHE FILEPATH "")',
            f"set(CMAKE_AR {tools.archiver.name})",
            f'set(CMAKE_LINKER {tools.linker.name} CACHE FILEPATH "")',
            f'set(CMAKE_RC_COMPILER {tools.resource_compiler.name} CACHE FILEPATH "")',
            # Rust always links the release runtime
            f'set(CMAKE_MSVC_RUNTIME_LIBRARY "{plan.msvc_runtime}" CACHE STRING "")',
        ]

    def _render_flags(self, plan: EnvironmentPlan) -> List[str]:
        c_flags = plan.flags_for("c")
        cxx_extra = plan.flags_for("cxx")[len(c_flags) :]
        cxx_suffix = "".join(f" {flag}" for flag in cxx_extra)

        lines = ["set(COMPILE_FLAGS"]
        lines += [f"    {_cmake_arg(flag)}" for flag in c_flags]
        lines[-1] += ")"
        lines.append("")
        lines.append("set(LINK_FLAGS")
        lines += [f"    {_cmake_arg(flag)}" for flag in plan.flags_for("link")]
        lines[-1] += ")"
        lines.append("")

        lines += [
            'string(REPLACE ";" " " COMPILE_FLAGS "${COMPILE_FLAGS}")',
            "",
            'set(_CMAKE_C_FLAGS_INITIAL "${CMAKE_C_FLAGS}" CACHE STRING "")',
            'set(CMAKE_C_FLAGS "${_CMAKE_C_FLAGS_INITIAL} ${COMPILE_FLAGS}" '
            'CACHE STRING "" FORCE)',
            "",
            'set(_CMAKE_CXX_FLAGS_INITIAL "${CMAKE_CXX_FLAGS}" CACHE STRING "")',
            'set(CMAKE_CXX_FLAGS "${_CMAKE_CXX_FLAGS_INITIAL} ${COMPILE_FLAGS}'
            f'{cxx_suffix}" CACHE STRING "" FORCE)',
            "",
            'string(REPLACE ";" " " LINK_FLAGS "${LINK_FLAGS}")',
        ]
        for kind in ("EXE", "MODULE", "SHARED"):
            var = f"CMAKE_{kind}_LINKER_FLAGS"
            lines += [
                "",
                f'set(_{var}_INITIAL "${{{var}}}" CACHE STRING "")',
                f'set({var} "${{_{var}_INITIAL}} ${{LINK_FLAGS}}"'
                ' CACHE STRING "" FORCE)',
            ]
        return lines

    def _render_defaults(self) -> List[str]:
        return [
            "# Projects list the libraries they need explicitly",
            'set(CMAKE_C_STANDARD_LIBRARIES "" CACHE STRING "" FORCE)',
            'set(CMAKE_CXX_STANDARD_LIBRARIES "" CACHE STRING "" FORCE)',
            "",
            "set(CMAKE_TRY_COMPILE_CONFIGURATION Release)",
            "",
            "set(CMAKE_USER_MAKE_RULES_OVERRIDE "
            f'"${{CMAKE_CURRENT_LIST_DIR}}/{OVERRIDE_FILE_NAME}")',
        ]
