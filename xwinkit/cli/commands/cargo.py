"""
Cargo subcommand implementation.

Runs any cargo subcommand through the dispatcher: build-like commands get
the cross environment, ``run``/``test`` execute the results under the
emulation layer and unknown commands are forwarded unchanged.
"""

import logging

from xwinkit.build.dispatcher import BuildInvocation, CommandDispatcher
from xwinkit.cli.utils import build_context

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run a cargo subcommand.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code of cargo or of the emulated program
    """
    logger.debug(f"Arguments: {args}")

    context = build_context(args)
    dispatcher = CommandDispatcher(context)
    invocation = BuildInvocation(
        subcommand=args.command,
        cargo_args=tuple(args.cargo_args),
        program_args=tuple(args.program_args),
    )
    return dispatcher.dispatch(invocation)
