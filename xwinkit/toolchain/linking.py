"""
Tool links for the cross toolchain.

clang-cl, lld-link, llvm-lib and llvm-dlltool are often missing from a host
that still has what is needed to provide them: a ``clang`` binary (which
acts as clang-cl when invoked under that name) and the ``rust-lld`` /
``llvm-ar`` tools shipped with the Rust toolchain. This module creates the
missing names as links in ``<cache>/bin``, which the environment appends to
PATH.
"""

import logging
import os
import shutil
from pathlib import Path
from typing import Dict, List, Optional

from ..core.locking import LockManager
from ..core.platform import HostConventions, detect_host
from ..core.process import capture_output, find_program

logger = logging.getLogger(__name__)

SYSTEM_CLANG = Path("/usr/bin/clang")


def rustc_tool_dir() -> Optional[Path]:
    """Directory holding ``rust-lld``/``llvm-ar`` for the active Rust toolchain."""
    libdir = capture_output(["rustc", "--print", "target-libdir"])
    if not libdir:
        return None
    return Path(libdir).parent / "bin"


class ToolLinkManager:
    """Manages links to compiler and LLVM tools in the cache bin directory."""

    def __init__(
        self,
        bin_dir: Path,
        lock_manager: LockManager,
        host: Optional[HostConventions] = None,
        search_path: Optional[str] = None,
    ):
        """
        Initialize link manager.

        Args:
            bin_dir: Directory that receives the links
            lock_manager: Lock manager of the cache the directory belongs to
            host: Host conventions (auto-detected if None)
            search_path: PATH used to decide whether a tool is missing
        """
        self.bin_dir = Path(bin_dir)
        self.lock_manager = lock_manager
        self.host = host or detect_host()
        path = search_path if search_path is not None else os.environ.get("PATH", "")
        self.search_path = self.host.path_separator.join(
            p for p in (path, str(self.bin_dir)) if p
        )

    def ensure_links(self, tools: Dict[str, str]) -> List[Path]:
        """
        Create links for every tool in ``tools`` that is not on the search path.

        Args:
            tools: Mapping of link name -> source tool name

        Returns:
            Links created by this call
        """
        created = []
        with self.lock_manager.key_lock("tool-links"):
            for link_name, source in tools.items():
                if find_program(link_name, self.search_path):
                    continue
                target = self._locate_source(source)
                if target is None:
                    logger.debug(f"No {source} found to provide {link_name}")
                    continue
                created.append(self.create_link(link_name, target))
        return created

    def create_link(self, link_name: str, target: Path) -> Path:
        """
        Create ``bin_dir/link_name`` pointing at ``target``, replacing any old link.

        Falls back to copying on Windows when symlinks are not permitted.
        """
        self.bin_dir.mkdir(parents=True, exist_ok=True)
        link_path = self.bin_dir / f"{link_name}{self.host.exe_suffix}"

        if link_path.is_symlink() or link_path.is_file():
            link_path.unlink()

        try:
            os.symlink(target, link_path)
            logger.info(f"Created symlink: {link_path} -> {target}")
        except OSError as e:
            if not self.host.is_windows:
                raise
            logger.debug(f"Symlink failed ({e}), copying {target} instead")
            shutil.copy2(target, link_path)
        return link_path

    def _locate_source(self, source: str) -> Optional[Path]:
        if source == "clang":
            return self._find_clang()

        tool_dir = rustc_tool_dir()
        if tool_dir is None:
            return None
        candidate = tool_dir / f"{source}{self.host.exe_suffix}"
        return candidate if candidate.exists() else None

    def _find_clang(self) -> Optional[Path]:
        clang = find_program("clang", self.search_path)
        if self.host.is_macos:
            # Apple's system clang cannot act as clang-cl
            if clang is not None and clang == SYSTEM_CLANG:
                clang = None
            if clang is None:
                found = capture_output(["xcrun", "--find", "clang"])
                clang = Path(found) if found else None
        return clang
