"""
snapexport CLI entry point.

Builds the argument parser from the command classes and maps failures to
exit codes: each SnapexportError subclass carries its own, Ctrl-C is 130.
"""

import argparse
import sys
from importlib.metadata import PackageNotFoundError, version
from typing import List, Optional

from snapexport.errors import SnapexportError
from snapexport.logging_config import configure_logging
from .base import CLICommand
from .cleanup import CleanupCommand
from .config import ConfigCommand
from .download import DownloadCommand
from .export import ExportCommand
from .orphans import OrphansCommand


def _version() -> str:
    try:
        return version("snapexport")
    except PackageNotFoundError:
        return "unknown"


def default_commands() -> List[CLICommand]:
    return [
        ExportCommand(),
        DownloadCommand(),
        CleanupCommand(),
        OrphansCommand(),
        ConfigCommand(),
    ]


def create_parser(commands: Optional[List[CLICommand]] = None) -> argparse.ArgumentParser:
    """
    Create the main argument parser with subcommands.

    Args:
        commands: Command instances to register (default: all commands)

    Returns:
        Configured ArgumentParser
    """
    parser = argparse.ArgumentParser(
        prog="snapexport",
        description="snapexport - Export Compute Engine disk snapshots to local files",
        epilog="""
Examples:
  # Export a snapshot (asks before creating anything)
  snapexport export my-data-snap us-central1 --name nightly

  # Resume an interrupted download
  snapexport download nightly

  # Release whatever a session left behind
  snapexport cleanup --include-compute nightly

  # Sweep disks from sessions whose record was lost
  snapexport orphans us-central1

For more help on a specific command:
  snapexport <command> --help
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("--version", action="version", version=f"snapexport v{_version()}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(
        title="commands", description="Available commands", dest="command", required=True
    )

    for command in commands if commands is not None else default_commands():
        cmd_parser = subparsers.add_parser(
            command.name,
            help=command.help,
            description=command.description,
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        command.add_arguments(cmd_parser)
        cmd_parser.set_defaults(command_handler=command)

    return parser


def main(argv: Optional[List[str]] = None, commands: Optional[List[CLICommand]] = None) -> int:
    """
    Main CLI entry point.

    Returns:
        Exit code
    """
    parser = create_parser(commands)
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    try:
        return args.command_handler.execute(args)
    except KeyboardInterrupt:
        print("\n\nInterrupted by user", file=sys.stderr)
        return 130
    except SnapexportError as e:
        step = f" (step: {e.step})" if e.step else ""
        print(f"Error{step}: {e}", file=sys.stderr)
        if e.record_path is not None:
            print(f"Session record: {e.record_path}", file=sys.stderr)
        return e.exit_code


if __name__ == "__main__":
    sys.exit(main())
