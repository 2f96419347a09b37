"""
Shared utilities for CLI commands.
"""

import logging
from typing import Any, Dict, Mapping, Optional

from xwinkit.build.dispatcher import InvocationContext
from xwinkit.config.options import OPTION_DEFS

logger = logging.getLogger(__name__)


def option_values(
    args, overrides: Optional[Mapping[str, Any]] = None
) -> Dict[str, Any]:
    """
    Collect ``--xwin-*`` option values from parsed arguments.

    Options the command does not define, or the user did not give, are None
    so lower-precedence sources apply.
    """
    values = {option.name: getattr(args, option.name, None) for option in OPTION_DEFS}
    if overrides:
        values.update(overrides)
    return values


def build_context(args, overrides: Optional[Mapping[str, Any]] = None):
    """Create the invocation context for parsed arguments."""
    return InvocationContext.create(
        option_values(args, overrides),
        config_path=getattr(args, "config", None),
    )


def format_export(name: str, value: str) -> str:
    """Shell ``export`` line for one variable."""
    escaped = value.replace("\\", "\\\\")
    for special in ('"', "$", "`"):
        escaped = escaped.replace(special, f"\\{special}")
    return f'export {name}="{escaped}";'
