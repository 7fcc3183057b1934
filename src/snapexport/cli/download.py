"""
Download command.

Resumes or repeats the local download of a prior export session from its
session record. Only what is missing or differs locally is fetched.
"""

from argparse import ArgumentParser, Namespace
from pathlib import Path
import sys

from .base import ConfigurableCommand
from snapexport.export.orchestrator import ExportOrchestrator
from snapexport.export.transfer import TransferOutcome
from snapexport.errors import TransferFailed
from snapexport.session.record import load_record
from snapexport.session.store import resolve_record


class DownloadCommand(ConfigurableCommand):
    """Download the artifacts of a prior session."""

    @property
    def name(self) -> str:
        return "download"

    @property
    def help(self) -> str:
        return "Resume or repeat the download of a prior export session"

    @property
    def description(self) -> str:
        return """
Download the artifacts of a prior export session using its session record.

TARGET is a record path or a session name given with 'export --name'
(resolved as <exports-dir>/<name>.state).

Examples:
  snapexport download nightly
  snapexport download ./exports/files-my-data-snap-20250101-000000-ab12cd34.state --out-dir ./restore
  snapexport download nightly --only sda1.tar.gz
        """

    def add_arguments(self, parser: ArgumentParser) -> None:
        parser.add_argument("target", type=str, help="Session name or record file")
        parser.add_argument(
            "--out-dir",
            type=Path,
            help="Download here instead of the record's local directory"
        )
        parser.add_argument(
            "--only",
            type=str,
            metavar="NAME",
            help="Download a single object (e.g. sda1.tar.gz) into a folder named after it"
        )
        self.add_config_arguments(parser)

    def execute(self, args: Namespace) -> int:
        config = self.load_config(args)
        record = load_record(resolve_record(args.target, config.state.exports_dir))
        if config.gce.project is None:
            config.gce.project = record.get("project")

        provider = self.create_provider(config)
        orchestrator = ExportOrchestrator(provider, config)
        result = orchestrator.download(record, out_dir=args.out_dir, only=args.only)

        if result.outcome == TransferOutcome.FAILED:
            print(f"Error: download failed (rc={result.return_code})", file=sys.stderr)
            return TransferFailed.exit_code
        print("Download complete.")
        return 0
