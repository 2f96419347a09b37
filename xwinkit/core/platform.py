"""
Host platform detection for xwinkit.

This module detects the host the tool runs on (OS and CPU architecture) and
captures the host conventions the environment assembler has to reconcile
with the Windows target: the PATH separator, the verbatim path prefix that
Windows canonicalization produces, and the executable suffix.

Usage:
    from xwinkit.core.platform import detect_host

    host = detect_host()
    print(host.os, host.arch)
"""

import functools
import os
import platform
from dataclasses import dataclass
from pathlib import Path

VERBATIM_PREFIX = "\\\\?\\"


@dataclass(frozen=True)
class HostConventions:
    """
    Host platform information and path conventions.

    Attributes:
        os: Operating system ('windows', 'linux', 'macos')
        arch: CPU architecture ('x64', 'arm64', 'x86', 'arm')
        path_separator: Separator used in the host's PATH variable
    """

    os: str
    arch: str
    path_separator: str = os.pathsep

    @property
    def is_windows(self) -> bool:
        return self.os == "windows"

    @property
    def is_macos(self) -> bool:
        return self.os == "macos"

    @property
    def exe_suffix(self) -> str:
        return ".exe" if self.is_windows else ""

    def platform_string(self) -> str:
        """Canonical platform string (e.g., 'linux-x64', 'macos-arm64')."""
        return f"{self.os}-{self.arch}"

    def __str__(self) -> str:
        return self.platform_string()


def adjust_canonicalization(path: str) -> str:
    """Strip the ``\\\\?\\`` prefix produced by Windows path canonicalization."""
    if path.startswith(VERBATIM_PREFIX):
        return path[len(VERBATIM_PREFIX) :]
    return path


@functools.lru_cache(maxsize=1)
def detect_host() -> HostConventions:
    """
    Detect the host platform.

    This function is cached - it only runs detection once per process.

    Returns:
        HostConventions for the running host

    Example:
        >>> host = detect_host()
        >>> print(f"Running on {host.platform_string()}")
        Running on linux-x64
    """
    return HostConventions(os=_detect_os(), arch=_detect_architecture())


def _detect_os() -> str:
    """
    Detect operating system.

    Returns:
        Normalized OS name: 'windows', 'linux', 'macos'

    Raises:
        RuntimeError: If OS is not supported
    """
    system = platform.system().lower()

    if system == "windows":
        return "windows"
    elif system == "linux":
        return "linux"
    elif system == "darwin":
        return "macos"
    elif system.endswith("bsd"):
        return system
    else:
        raise RuntimeError(f"Unsupported operating system: {system}")


def _detect_architecture() -> str:
    """
    Detect CPU architecture.

    Returns:
        Normalized architecture: 'x64', 'arm64', 'x86', 'arm'
    """
    machine = platform.machine().lower()

    if machine in ("x86_64", "amd64", "x64"):
        return "x64"
    elif machine in ("aarch64", "arm64"):
        return "arm64"
    elif machine in ("i386", "i686", "x86"):
        return "x86"
    elif machine.startswith("arm"):
        return "arm"
    else:
        return machine


def default_cache_dir(host: HostConventions = None) -> Path:
    """
    Get the per-user cache directory for xwinkit.

    Falls back to the current directory when the platform has no cache
    directory at all.

    Returns:
        Path to ``<platform cache dir>/xwinkit``
    """
    host = host or detect_host()

    try:
        if host.is_windows:
            base = os.environ.get("LOCALAPPDATA")
            root = Path(base) if base else Path.home() / "AppData" / "Local"
        elif host.is_macos:
            root = Path.home() / "Library" / "Caches"
        else:
            xdg = os.environ.get("XDG_CACHE_HOME")
            root = Path(xdg) if xdg else Path.home() / ".cache"
    except RuntimeError:
        # No home directory to derive a cache dir from
        root = Path.cwd()

    return root / "xwinkit"


def clear_host_cache():
    """Clear the cached host detection (used by tests)."""
    detect_host.cache_clear()


__all__ = [
    "HostConventions",
    "adjust_canonicalization",
    "detect_host",
    "default_cache_dir",
    "clear_host_cache",
]
