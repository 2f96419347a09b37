"""
Cache command implementation.

Prepares the SDK/CRT payload of a provider in the cache without running a
build, e.g. while building a container image.
"""

import logging

from xwinkit.build.dispatcher import CommandDispatcher
from xwinkit.cli.utils import build_context

logger = logging.getLogger(__name__)

PROVIDER_BACKENDS = {
    "xwin": "clang-cl",
    "windows-msvc-sysroot": "clang",
}


def run(args) -> int:
    """
    Run the cache command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success)
    """
    if args.cargo_args:
        logger.warning(f"Ignoring arguments: {' '.join(args.cargo_args)}")

    backend = PROVIDER_BACKENDS[args.provider]
    context = build_context(args, {"cross_compiler": backend})
    dispatcher = CommandDispatcher(context)

    for root in dispatcher.ensure_cache(args.target):
        print(root)
    return 0
