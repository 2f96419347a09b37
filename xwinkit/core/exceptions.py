"""
Centralized exception hierarchy for xwinkit.

Every exception carries the process exit code the CLI reports when the
invocation is aborted by it. Failures that never reach a collaborator spawn
use codes distinct from anything cargo or wine would return.
"""

from typing import Optional


# ============================================================================
# Base Exceptions
# ============================================================================


class XwinKitError(Exception):
    """Base exception for all xwinkit errors."""

    exit_code = 1


# ============================================================================
# Target / Configuration Exceptions
# ============================================================================


class ConfigurationError(XwinKitError):
    """Bad or unsupported triple, variant, version, or backend."""

    exit_code = 2


# ============================================================================
# SDK Cache Exceptions
# ============================================================================


class AcquisitionError(XwinKitError):
    """Raised when the SDK/CRT payload cannot be prepared in the cache."""

    exit_code = 3

    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__(f"Failed to prepare cache entry {key}: {message}")


class VersionNotFoundError(AcquisitionError):
    """Requested SDK/CRT/manifest version does not exist upstream."""

    def __init__(self, key: str, version: str, message: str = ""):
        self.version = version
        detail = f"version {version} not found upstream"
        if message:
            detail += f" ({message})"
        super().__init__(key, detail)


class OperationCancelled(XwinKitError):
    """An acquisition stopped because the invocation was interrupted."""

    exit_code = 130

    def __init__(self, what: str):
        self.what = what
        super().__init__(f"{what} cancelled")


# ============================================================================
# Environment Exceptions
# ============================================================================


class AssemblyError(XwinKitError):
    """Expected path missing from a ready cache entry (cache corruption)."""

    exit_code = 4

    def __init__(self, root, missing: str):
        self.root = root
        self.missing = missing
        super().__init__(
            f"Cache entry {root} is missing {missing}; "
            "the entry is corrupt or was produced by an incompatible provider"
        )


# ============================================================================
# Collaborator Exceptions
# ============================================================================


class SpawnError(XwinKitError):
    """Collaborator executable could not be started."""

    def __init__(self, program: str, reason: str, tool_missing: bool = False):
        self.program = program
        self.tool_missing = tool_missing
        self.exit_code = 127 if tool_missing else 126
        if tool_missing:
            super().__init__(f"{program} not found: {reason}")
        else:
            super().__init__(f"Failed to start {program}: {reason}")


class CollaboratorFailure(XwinKitError):
    """Build tool or emulation layer ran and exited non-zero."""

    def __init__(self, program: str, exit_code: int, target: Optional[str] = None):
        self.program = program
        self.exit_code = exit_code
        self.target = target
        msg = f"{program} exited with status {exit_code}"
        if target:
            msg += f" (target {target})"
        super().__init__(msg)
