"""
xwinkit CLI module.

This module provides the command-line interface for xwinkit.
"""

from .parser import CLI, main

__all__ = ["CLI", "main"]
