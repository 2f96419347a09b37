"""
Shared on-disk cache of prepared SDK/CRT payloads.

Layout under the cache root:

    <cache>/<provider>/<entry>/     ready entries (immutable once promoted)
    <cache>/.staging/<entry>.<id>/  private staging directories
    <cache>/locks/<entry>.lock      per-entry file locks

An entry is ready when it exists under ``<cache>/<provider>/`` and holds the
``.xwinkit-entry.json`` manifest. Population happens in a staging directory
and is promoted with a single rename, so an interrupted population is never
mistaken for a ready entry.

Debug toggles do not change the base key. They select one of four entry
names (``<base>``, ``<base>-dbglibs``, ``<base>-dbgsyms``,
``<base>-dbglibs-dbgsyms``) and a request is served by any ready entry whose
toggles are a superset of the requested ones.

Usage:
    from xwinkit.cross.sdk_cache import SdkCache
    from xwinkit.cross.providers import XwinSplatProvider

    cache = SdkCache(spec.cache_dir, XwinSplatProvider())
    root = cache.ensure(spec)
"""

import hashlib
import json
import logging
import os
import threading
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from xwinkit.core.download import DownloadError
from xwinkit.core.exceptions import (
    AcquisitionError,
    OperationCancelled,
    SpawnError,
    VersionNotFoundError,
)
from xwinkit.core.filesystem import (
    FilesystemError,
    atomic_write,
    promote_directory,
    safe_rmtree,
)
from xwinkit.core.locking import LockManager
from xwinkit.cross.providers import ProviderError, SdkProvider, UpstreamVersionNotFound
from xwinkit.cross.targets import TargetSpec

logger = logging.getLogger(__name__)

ENTRY_MANIFEST = ".xwinkit-entry.json"
STAGING_DIR = ".staging"
LOCKS_DIR = "locks"


@dataclass(frozen=True)
class CacheEntry:
    """One (possibly absent) cache entry."""

    name: str
    path: Path
    debug_libs: bool
    debug_symbols: bool

    @property
    def manifest_path(self) -> Path:
        return self.path / ENTRY_MANIFEST

    @property
    def is_ready(self) -> bool:
        return self.manifest_path.is_file()


def entry_name(base_key: str, debug_libs: bool, debug_symbols: bool) -> str:
    """Entry directory name for a base key and debug toggles."""
    name = base_key
    if debug_libs:
        name += "-dbglibs"
    if debug_symbols:
        name += "-dbgsyms"
    return name


class SdkCache:
    """
    Maps TargetSpecs to ready SDK roots, populating each entry at most once.

    Args:
        cache_dir: Cache root
        provider: Provider that produces the payload
        cancel: Once set, no population starts or is promoted
    """

    def __init__(
        self,
        cache_dir: Path,
        provider: SdkProvider,
        cancel: Optional[threading.Event] = None,
    ):
        self.cache_dir = Path(cache_dir)
        self.provider = provider
        self.cancel = cancel
        self.entries_dir = self.cache_dir / provider.name
        self.staging_dir = self.cache_dir / STAGING_DIR
        self.lock_manager = LockManager(self.cache_dir / LOCKS_DIR)

    def base_key(self, spec: TargetSpec) -> str:
        """Stable key derived from the cache-relevant fields of ``spec``."""
        fields = {"provider": self.provider.name, **self.provider.key_fields(spec)}
        payload = json.dumps(fields, sort_keys=True, separators=(",", ":"))
        digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]
        return f"{self.provider.name}-{digest}"

    def candidates(self, spec: TargetSpec) -> List[CacheEntry]:
        """
        Entries able to serve ``spec``, exact match first.

        Returns:
            Exact entry followed by the entries with more debug content
        """
        base = self.base_key(spec)
        want_libs, want_syms = self.provider.debug_toggles(spec)

        toggles: List[Tuple[bool, bool]] = [(want_libs, want_syms)]
        for libs in (False, True):
            for syms in (False, True):
                if (libs, syms) in toggles:
                    continue
                if libs >= want_libs and syms >= want_syms:
                    toggles.append((libs, syms))

        return [
            CacheEntry(
                name=entry_name(base, libs, syms),
                path=self.entries_dir / entry_name(base, libs, syms),
                debug_libs=libs,
                debug_symbols=syms,
            )
            for libs, syms in toggles
        ]

    def lookup(self, spec: TargetSpec) -> Optional[Path]:
        """Return a ready root for ``spec`` without populating anything."""
        for entry in self.candidates(spec):
            if entry.is_ready:
                return entry.path
        return None

    def ensure(self, spec: TargetSpec) -> Path:
        """
        Return a ready root for ``spec``, populating it if needed.

        Concurrent callers for the same entry (threads or processes) block on
        the entry lock; exactly one populates, the others then observe the
        ready entry.

        Raises:
            AcquisitionError: If the provider, network or disk fails
            VersionNotFoundError: If a pinned version does not exist upstream
            OperationCancelled: If the cancel event was set
        """
        ready = self.lookup(spec)
        if ready is not None:
            logger.debug(f"Cache hit: {ready}")
            return ready

        exact = self.candidates(spec)[0]
        with self.lock_manager.key_lock(exact.name):
            # Another holder may have finished while we waited
            ready = self.lookup(spec)
            if ready is not None:
                logger.debug(f"Cache entry became ready while waiting: {ready}")
                return ready
            return self._populate(spec, exact)

    def _populate(self, spec: TargetSpec, entry: CacheEntry) -> Path:
        self._remove_stale_staging(entry.name)

        unique = f"{entry.name}.{os.getpid()}.{uuid.uuid4().hex[:8]}"
        staging = self.staging_dir / unique
        work_dir = self.staging_dir / f"{unique}.work"

        logger.info(f"Preparing {self.provider.describe(spec)}")
        logger.debug(f"Staging {entry.name} in {staging}")

        try:
            if entry.path.exists():
                # No manifest, so not ready; nothing can be using it
                logger.warning(f"Removing incomplete cache entry {entry.path}")
                safe_rmtree(entry.path, require_prefix=self.entries_dir)
            staging.mkdir(parents=True)
            self._check_cancelled(entry)
            self.provider.populate(spec, staging, work_dir)
            self._write_manifest(spec, entry, staging)
            self._check_cancelled(entry)
            promote_directory(staging, entry.path)
        except UpstreamVersionNotFound as e:
            self._discard(staging)
            raise VersionNotFoundError(entry.name, e.version, str(e)) from e
        except (ProviderError, SpawnError, DownloadError, FilesystemError) as e:
            self._discard(staging)
            raise AcquisitionError(entry.name, str(e)) from e
        except OSError as e:
            self._discard(staging)
            raise AcquisitionError(entry.name, f"disk error: {e}") from e
        except BaseException:
            self._discard(staging)
            raise
        finally:
            self._discard(work_dir)

        logger.info(f"Cache entry ready: {entry.path}")
        return entry.path

    def _check_cancelled(self, entry: CacheEntry) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise OperationCancelled(f"Preparation of {entry.name}")

    def _write_manifest(self, spec: TargetSpec, entry: CacheEntry, staging: Path):
        manifest = {
            "name": entry.name,
            "provider": self.provider.name,
            "fields": self.provider.key_fields(spec),
            "debug_libs": entry.debug_libs,
            "debug_symbols": entry.debug_symbols,
        }
        atomic_write(
            staging / ENTRY_MANIFEST, json.dumps(manifest, indent=2, sort_keys=True)
        )

    def _remove_stale_staging(self, name: str) -> None:
        """Delete staging leftovers of interrupted populations of ``name``."""
        if not self.staging_dir.is_dir():
            return
        for stale in self.staging_dir.glob(f"{name}.*"):
            logger.debug(f"Removing stale staging directory {stale}")
            self._discard(stale)

    def _discard(self, path: Path) -> None:
        if not path.exists():
            return
        try:
            safe_rmtree(path, require_prefix=self.staging_dir)
        except (FilesystemError, ValueError) as e:
            logger.warning(f"Could not remove {path}: {e}")
