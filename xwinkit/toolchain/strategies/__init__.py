"""
Compiler backend registry.
"""

from xwinkit.core.exceptions import ConfigurationError
from .standard import ClangBackend, ClangClBackend

BACKENDS = {
    ClangClBackend.name: ClangClBackend,
    ClangBackend.name: ClangBackend,
}


def get_backend(name: str):
    """
    Instantiate the backend selected with ``--cross-compiler``.

    Raises:
        ConfigurationError: If no backend has that name
    """
    try:
        return BACKENDS[name]()
    except KeyError:
        raise ConfigurationError(
            f"Unsupported cross compiler '{name}'. Supported: {', '.join(BACKENDS)}"
        ) from None


__all__ = ["BACKENDS", "ClangBackend", "ClangClBackend", "get_backend"]
