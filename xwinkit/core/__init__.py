"""
Core functionality for xwinkit.

This package contains the foundational modules that other components depend on.
"""

from .exceptions import (
    XwinKitError,
    ConfigurationError,
    AcquisitionError,
    VersionNotFoundError,
    AssemblyError,
    SpawnError,
    CollaboratorFailure,
)

from .locking import LockManager, LockTimeout

from .platform import (
    HostConventions,
    detect_host,
    default_cache_dir,
    clear_host_cache,
)

__all__ = [
    # Exceptions
    "XwinKitError",
    "ConfigurationError",
    "AcquisitionError",
    "VersionNotFoundError",
    "AssemblyError",
    "SpawnError",
    "CollaboratorFailure",
    # Locking
    "LockManager",
    "LockTimeout",
    # Platform
    "HostConventions",
    "detect_host",
    "default_cache_dir",
    "clear_host_cache",
]
