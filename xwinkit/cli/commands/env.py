"""
Env command implementation.

Prints the cross-compilation environment as shell ``export`` lines so it
can be applied with ``eval "$(xwinkit env --target ...)"``.
"""

import logging

from xwinkit.build.cargo import cargo_target_dir, split_targets
from xwinkit.build.dispatcher import CommandDispatcher
from xwinkit.build.emulation import emulation_variables
from xwinkit.cli.utils import build_context, format_export

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the env command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success)
    """
    context = build_context(args)
    dispatcher = CommandDispatcher(context)

    triples, cargo_args = split_targets(args.cargo_args)
    specs = dispatcher.resolve_targets(triples)
    target_dir = cargo_target_dir(cargo_args, context.environ, context.cwd)

    for target in dispatcher.prepare(specs, target_dir):
        variables = dict(target.plan.variables)
        variables.update(
            emulation_variables(target.spec.env_target_upper, context.environ)
        )
        for name, value in variables.items():
            print(format_export(name, value))
    return 0
