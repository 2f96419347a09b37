"""
Configuration for xwinkit: the project file and the ``--xwin-*`` options.
"""

from .parser import ProjectConfig, find_project_config, parse_project_config
from .options import OPTION_DEFS, XWinOptions, resolve_options

__all__ = [
    "ProjectConfig",
    "find_project_config",
    "parse_project_config",
    "OPTION_DEFS",
    "XWinOptions",
    "resolve_options",
]
