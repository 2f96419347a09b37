"""
CMake integration module for xwinkit.

This module generates CMake toolchain files from assembled environments so
that CMake projects built by ``build.rs`` scripts cross compile too.
"""

from .toolchain_generator import (
    QUIRK_RULES,
    QuirkRule,
    ToolchainFileGenerator,
    descriptor_path,
)

__all__ = [
    "QUIRK_RULES",
    "QuirkRule",
    "ToolchainFileGenerator",
    "descriptor_path",
]
