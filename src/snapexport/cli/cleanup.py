"""
Cleanup command.

Deletes the resources a session record references. Storage (objects and
bucket) is removed by default; compute only with --include-compute, since
the export already releases it right after the remote work.
"""

from argparse import ArgumentParser, Namespace

from .base import ConfigurableCommand
from snapexport.errors import ConfigurationError
from snapexport.export.orchestrator import ExportOrchestrator
from snapexport.session.record import load_record
from snapexport.session.store import resolve_record


class CleanupCommand(ConfigurableCommand):
    """Tear down a session's resources from its record."""

    @property
    def name(self) -> str:
        return "cleanup"

    @property
    def help(self) -> str:
        return "Delete the cloud resources recorded for a session"

    @property
    def description(self) -> str:
        return """
Delete the cloud resources recorded in a session record.

Every deletion is idempotent: resources that are already gone count as
deleted, so cleanup can be re-run until it reports no errors.

Examples:
  snapexport cleanup nightly
  snapexport cleanup --include-compute ./exports/files-my-data-snap-20250101-000000-ab12cd34.state
  snapexport cleanup --include-compute --keep-storage nightly
        """

    def add_arguments(self, parser: ArgumentParser) -> None:
        parser.add_argument("target", type=str, help="Session name or record file")
        parser.add_argument(
            "--include-compute",
            action="store_true",
            help="Also detach and delete the instance and disk"
        )
        parser.add_argument(
            "--keep-storage",
            action="store_true",
            help="Do not delete the bucket and its objects"
        )
        self.add_config_arguments(parser)

    def execute(self, args: Namespace) -> int:
        config = self.load_config(args)
        try:
            record_path = resolve_record(args.target, config.state.exports_dir)
        except ConfigurationError as e:
            print(f"[!] {e}")
            print("[i] Nothing to clean.")
            return 0

        record = load_record(record_path)
        if config.gce.project is None:
            config.gce.project = record.get("project")
        if not args.include_compute:
            print("Skipping compute cleanup (use --include-compute to enable).")

        provider = self.create_provider(config)
        report = ExportOrchestrator(provider, config).cleanup(
            record,
            include_compute=args.include_compute,
            keep_storage=args.keep_storage,
        )
        if not report.ok:
            for sub in report.errors:
                print(f"  {sub.step} {sub.resource}: {sub.error}")
            return self.error(f"Cleanup incomplete; re-run 'snapexport cleanup {args.target}'")
        print("Cleanup done.")
        return 0
