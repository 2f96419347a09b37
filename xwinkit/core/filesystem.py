"""
File system operations used by the SDK cache and the toolchain file writer.

- ``extract_archive``: unpack a tarball, rejecting members that would land
  outside the destination
- ``atomic_write``: replace a file through a temporary sibling
- ``promote_directory``: rename a populated staging directory into place
- ``safe_rmtree``: recursive removal restricted to a required prefix
"""

import os
import shutil
import stat
import sys
import tarfile
import tempfile
from pathlib import Path
from typing import Callable, Optional, Union

PathLike = Union[str, Path]

# Archive suffix -> tarfile read mode
TAR_MODES = (
    ((".tar.gz", ".tgz"), "r:gz"),
    ((".tar.xz", ".txz"), "r:xz"),
    ((".tar.bz2", ".tbz2"), "r:bz2"),
    ((".tar",), "r:"),
)


class FilesystemError(Exception):
    """A file system operation failed."""


class ArchiveExtractionError(FilesystemError):
    """An archive could not be extracted."""


class UnsupportedArchiveFormat(ArchiveExtractionError):
    """The archive suffix is not a known tar format."""


class InsecureArchiveError(ArchiveExtractionError):
    """An archive member would be written outside the destination."""


def is_relative_to(path: Path, parent: Path) -> bool:
    """True if ``path`` is ``parent`` or lies below it."""
    try:
        path.relative_to(parent)
    except ValueError:
        return False
    return True


def _tar_mode(archive_path: Path) -> str:
    name = archive_path.name.lower()
    for suffixes, mode in TAR_MODES:
        if name.endswith(suffixes):
            return mode
    known = ", ".join(s for suffixes, _ in TAR_MODES for s in suffixes)
    raise UnsupportedArchiveFormat(
        f"Cannot extract {archive_path.name}: expected one of {known}"
    )


def extract_archive(
    archive_path: PathLike,
    destination: PathLike,
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> None:
    """
    Extract a tar archive into ``destination``.

    Every member is checked before anything is written, so a rejected
    archive leaves the destination untouched.

    Args:
        archive_path: ``.tar``, ``.tar.gz``, ``.tar.xz`` or ``.tar.bz2`` file
        destination: Directory to extract into; created if missing
        progress_callback: Called as ``callback(extracted, total)`` per member

    Raises:
        UnsupportedArchiveFormat: If the suffix is not a tar format
        InsecureArchiveError: If a member escapes ``destination``
        ArchiveExtractionError: If the archive is missing or corrupt
    """
    archive_path = Path(archive_path)
    destination = Path(destination)

    if not archive_path.is_file():
        raise ArchiveExtractionError(f"Archive not found: {archive_path}")
    mode = _tar_mode(archive_path)

    destination.mkdir(parents=True, exist_ok=True)
    root = destination.resolve()
    try:
        with tarfile.open(archive_path, mode) as tar:
            members = tar.getmembers()
            for member in members:
                if not is_relative_to((root / member.name).resolve(), root):
                    raise InsecureArchiveError(
                        f"Refusing to extract {archive_path.name}: member "
                        f"'{member.name}' points outside the destination"
                    )

            for index, member in enumerate(members, start=1):
                if sys.version_info >= (3, 12):
                    tar.extract(member, root, filter="data")
                else:
                    tar.extract(member, root)
                if progress_callback:
                    progress_callback(index, len(members))
    except (OSError, tarfile.TarError) as e:
        raise ArchiveExtractionError(f"Failed to extract {archive_path}: {e}") from e


def atomic_write(file_path: PathLike, content: Union[str, bytes]) -> None:
    """
    Replace ``file_path`` with ``content`` in one rename.

    Text is written as UTF-8 without newline translation, so identical
    content always produces identical bytes.

    Example:
        >>> atomic_write("toolchain.cmake", "set(CMAKE_SYSTEM_NAME Windows)\\n")
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    data = content.encode("utf-8") if isinstance(content, str) else content

    fd, temp_name = tempfile.mkstemp(
        dir=file_path.parent, prefix=f".{file_path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(temp_name, file_path)
    except BaseException:
        Path(temp_name).unlink(missing_ok=True)
        raise


def promote_directory(staging: PathLike, destination: PathLike) -> None:
    """
    Rename a fully populated ``staging`` directory to ``destination``.

    The caller must hold the lock for ``destination``; an existing
    destination is never replaced.

    Raises:
        FilesystemError: If ``destination`` exists or the rename fails
    """
    staging = Path(staging)
    destination = Path(destination)

    if destination.exists():
        raise FilesystemError(f"Refusing to replace existing directory: {destination}")

    destination.parent.mkdir(parents=True, exist_ok=True)
    try:
        os.rename(staging, destination)
    except OSError as e:
        raise FilesystemError(
            f"Could not move {staging} into place as {destination}: {e}"
        ) from e


def _clear_readonly(func, path, _exc_info):
    # Read-only files (e.g. extracted from archives) block removal on Windows
    os.chmod(path, stat.S_IWRITE)
    func(path)


def safe_rmtree(path: PathLike, require_prefix: Optional[PathLike] = None) -> None:
    """
    Remove a directory tree; a missing path is not an error.

    Args:
        path: Directory to remove
        require_prefix: If given, ``path`` must lie below this directory

    Raises:
        ValueError: If ``path`` is outside ``require_prefix``
        FilesystemError: If ``path`` is not a directory or removal fails
    """
    path = Path(path).resolve()

    if require_prefix is not None:
        prefix = Path(require_prefix).resolve()
        if not is_relative_to(path, prefix):
            raise ValueError(
                f"Refusing to delete {path}: not under required prefix {prefix}"
            )

    if not path.exists():
        return
    if not path.is_dir():
        raise FilesystemError(f"Refusing to delete {path}: not a directory")

    try:
        if os.name == "nt":
            shutil.rmtree(path, onerror=_clear_readonly)
        else:
            shutil.rmtree(path)
    except OSError as e:
        raise FilesystemError(f"Failed to remove {path}: {e}") from e
