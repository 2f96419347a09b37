"""
xwinkit CLI argument parser.

This module implements the command-line interface for xwinkit using argparse.
Cargo subcommands accept the ``--xwin-*`` options; every other argument is
forwarded to cargo untouched, and anything after ``--`` goes to the program
being run or tested.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from xwinkit import __version__
from xwinkit.build.cargo import split_program_args
from xwinkit.build.dispatcher import SUBCOMMANDS
from xwinkit.cli.commands.cache import PROVIDER_BACKENDS
from xwinkit.config.options import OPTION_DEFS
from xwinkit.core.exceptions import XwinKitError

logger = logging.getLogger(__name__)

# Commands implemented by xwinkit itself rather than forwarded to cargo
OWN_COMMANDS = ("cache", "env")


def add_xwin_options(parser: argparse.ArgumentParser) -> None:
    """Add the ``--xwin-*`` customization options to ``parser``."""
    group = parser.add_argument_group("xwin options")
    for option in OPTION_DEFS:
        kwargs = {"dest": option.name, "default": None, "help": option.help}
        if option.kind == "bool":
            kwargs["action"] = "store_true"
        elif option.kind == "path":
            kwargs["type"] = Path
            kwargs["metavar"] = "PATH"
        else:
            kwargs["metavar"] = option.name.split("_")[-1].upper()
        group.add_argument(option.flag, **kwargs)


class CLI:
    """xwinkit command-line interface."""

    def __init__(self):
        """Initialize CLI with argument parser."""
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        """
        Create argument parser with all subcommands.

        Returns:
            Configured ArgumentParser instance
        """
        parser = argparse.ArgumentParser(
            prog="xwinkit",
            description="xwinkit - cross compile Rust projects to Windows MSVC",
            epilog=(
                'Use "xwinkit COMMAND --help" for command-specific help. '
                "Unknown commands are passed to cargo unchanged."
            ),
            formatter_class=argparse.RawDescriptionHelpFormatter,
            allow_abbrev=False,
        )

        # Global options
        parser.add_argument(
            "--version", action="version", version=f"xwinkit {__version__}"
        )
        parser.add_argument(
            "--verbose", "-v", action="store_true", help="Enable verbose output"
        )
        parser.add_argument(
            "--quiet",
            "-q",
            action="store_true",
            help="Enable minimal output (errors only)",
        )
        parser.add_argument(
            "--config",
            type=Path,
            metavar="PATH",
            help="Path to configuration file (default: nearest xwinkit.yaml)",
        )

        # Subcommands
        subparsers = parser.add_subparsers(
            dest="command", help="Available commands", metavar="COMMAND"
        )

        for name in SUBCOMMANDS:
            self._add_cargo_command(subparsers, name)
        self._add_cache_command(subparsers)
        self._add_env_command(subparsers)

        return parser

    def _add_cargo_command(self, subparsers, name: str):
        """Add a cargo subcommand."""
        subcommand = SUBCOMMANDS[name]
        parser = subparsers.add_parser(
            name,
            help=f"Run cargo {name}"
            + (" for Windows MSVC targets" if subcommand.cross_env else ""),
            description=f"Run 'cargo {name}'; unrecognized arguments go to cargo",
            allow_abbrev=False,
        )
        if subcommand.cross_env:
            add_xwin_options(parser)

    def _add_cache_command(self, subparsers):
        """Add 'cache' subcommand."""
        parser = subparsers.add_parser(
            "cache",
            help="Prepare the SDK/CRT cache without building",
            description="Download and prepare the SDK/CRT payload for the targets",
            allow_abbrev=False,
        )
        parser.add_argument(
            "provider",
            choices=list(PROVIDER_BACKENDS),
            help="Payload to prepare (xwin or windows-msvc-sysroot)",
        )
        parser.add_argument(
            "--target",
            action="append",
            default=[],
            metavar="TRIPLE",
            help="Target triple (can be used multiple times)",
        )
        add_xwin_options(parser)

    def _add_env_command(self, subparsers):
        """Add 'env' subcommand."""
        parser = subparsers.add_parser(
            "env",
            help="Print the cross-compilation environment",
            description='Print "export NAME=VALUE;" lines for the targets',
            allow_abbrev=False,
        )
        add_xwin_options(parser)

    def parse_args(self, args: Optional[List[str]] = None):
        """
        Parse command-line arguments.

        A leading ``xwin`` (as passed by ``cargo xwin ...``) is dropped,
        arguments after ``--`` become ``program_args`` and arguments the
        command does not know become ``cargo_args``.

        Args:
            args: Arguments to parse (uses sys.argv if None)

        Returns:
            Parsed arguments namespace
        """
        args = list(sys.argv[1:] if args is None else args)
        if args and args[0] == "xwin":
            args = args[1:]

        args, program_args = split_program_args(args)
        command_index = _first_positional(args)

        if command_index is not None and args[command_index] not in (
            *SUBCOMMANDS,
            *OWN_COMMANDS,
        ):
            # Unknown subcommand: parse global options only
            parsed = self.parser.parse_args(args[:command_index])
            parsed.command = args[command_index]
            parsed.cargo_args = args[command_index + 1 :]
        else:
            parsed, extras = self.parser.parse_known_args(args)
            parsed.cargo_args = extras

        parsed.program_args = program_args
        return parsed

    def run(self, args: Optional[List[str]] = None) -> int:
        """
        Run CLI with given arguments.

        Args:
            args: Arguments to parse (uses sys.argv if None)

        Returns:
            Exit code (0 for success, non-zero for error)
        """
        parsed_args = self.parse_args(args)

        # Configure logging
        self._configure_logging(parsed_args)

        # Check if command specified
        if not parsed_args.command:
            self.parser.print_help()
            return 1

        # Dispatch to command handler
        try:
            return self._dispatch_command(parsed_args)
        except KeyboardInterrupt:
            logger.info("Operation cancelled by user")
            return 130  # Standard exit code for SIGINT
        except XwinKitError as e:
            logger.error(f"Error: {e}")
            if parsed_args.verbose:
                import traceback

                traceback.print_exc()
            return e.exit_code
        except Exception as e:
            logger.error(f"Error: {e}")
            if parsed_args.verbose:
                import traceback

                traceback.print_exc()
            return 1

    def _configure_logging(self, args):
        """
        Configure logging based on verbose/quiet flags.

        Args:
            args: Parsed arguments with verbose/quiet flags
        """
        if args.verbose:
            level = logging.DEBUG
            format_str = "%(levelname)s [%(name)s] %(message)s"
        elif args.quiet:
            level = logging.ERROR
            format_str = "%(levelname)s: %(message)s"
        else:
            level = logging.INFO
            format_str = "%(message)s"

        logging.basicConfig(
            level=level,
            format=format_str,
            force=True,  # Reconfigure if already configured
        )

    def _dispatch_command(self, args) -> int:
        """
        Dispatch to appropriate command handler.

        Args:
            args: Parsed arguments with command field

        Returns:
            Exit code from command handler
        """
        command_map = {
            "cache": "xwinkit.cli.commands.cache",
            "env": "xwinkit.cli.commands.env",
        }
        module_name = command_map.get(args.command, "xwinkit.cli.commands.cargo")

        import importlib

        module = importlib.import_module(module_name)
        return module.run(args)


def _first_positional(args: List[str]) -> Optional[int]:
    skip_value = False
    for index, arg in enumerate(args):
        if skip_value:
            skip_value = False
            continue
        if arg == "--config":
            skip_value = True
            continue
        if not arg.startswith("-"):
            return index
    return None


def main():
    """Main entry point for CLI."""
    cli = CLI()
    sys.exit(cli.run())


if __name__ == "__main__":
    main()
