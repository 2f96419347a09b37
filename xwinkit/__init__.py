"""
xwinkit - cross compile Rust projects to Windows MSVC from any host.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("xwinkit")
except PackageNotFoundError:
    __version__ = "0.1.0"
