"""
Export command.

Clones a snapshot to a throwaway disk, extracts its filesystems on a
throwaway instance into a bucket, downloads them and releases everything.
"""

from argparse import ArgumentParser, Namespace
from pathlib import Path
from typing import Optional
import sys

from .base import ConfigurableCommand
from snapexport.cloud.base import SnapshotInfo
from snapexport.export.orchestrator import ExportOrchestrator, ExportRequest
from snapexport.naming import format_bytes
from snapexport.session.record import SessionRecord
from snapexport.session.store import forget_session


class ExportCommand(ConfigurableCommand):
    """Run a full export session."""

    @property
    def name(self) -> str:
        return "export"

    @property
    def help(self) -> str:
        return "Export the filesystems of a disk snapshot to a local directory"

    @property
    def description(self) -> str:
        return """
Export the filesystems of a Compute Engine disk snapshot.

Steps:
  1. Create a bucket, a disk from the snapshot and a worker instance
     (machine types are tried in order when capacity is short)
  2. Mount each partition read-only on the worker and upload it
     (archive mode: one tar.gz per partition; files mode: individual files)
  3. Delete the worker and the disk
  4. Download the bucket prefix locally
  5. Delete the bucket once the download verified (unless --keep-remote)

Every step is appended to a session record (<name>.state) so that
'snapexport cleanup' and 'snapexport download' can resume from it.

Examples:
  # Export with a friendly name, into ./exports/
  snapexport export my-data-snap us-central1 --name nightly

  # Files mode, keep the bucket, no prompts
  snapexport export my-data-snap europe-west1 --mode files --keep-remote -y

  # Only a small machine type
  snapexport export my-data-snap us-central1 --machine-type e2-standard-4
        """

    def add_arguments(self, parser: ArgumentParser) -> None:
        parser.add_argument("snapshot", type=str, help="Snapshot name")
        parser.add_argument("region", type=str, help="Region for the temporary resources (e.g. us-central1)")

        parser.add_argument(
            "--out-dir",
            type=Path,
            help="Parent directory for the download (default: <exports-dir>/<remote prefix>)"
        )
        parser.add_argument(
            "--name",
            type=str,
            help="Friendly session name (alias for the record and output folder)"
        )
        parser.add_argument(
            "--keep-remote",
            action="store_true",
            help="Never delete the bucket automatically"
        )
        parser.add_argument(
            "--skip-local",
            action="store_true",
            help="Do not download; leave the artifacts in the bucket"
        )
        parser.add_argument(
            "--machine-type",
            type=str,
            help="Comma-separated machine types to try in order (default: gce.machine_types)"
        )
        parser.add_argument(
            "--disk-type",
            type=str,
            help="Disk type for the snapshot clone (default: gce.disk_type)"
        )
        parser.add_argument(
            "--mode",
            choices=["archive", "files"],
            help="Payload mode (default: dispatch.mode)"
        )
        parser.add_argument(
            "-y", "--yes", "--silent",
            dest="yes",
            action="store_true",
            help="Do not ask for confirmation"
        )
        parser.add_argument(
            "--delete-state-at-end",
            action="store_true",
            help="With --yes, delete the local session record after a verified export"
        )
        self.add_config_arguments(parser)

    def _confirm_session(self, record: SessionRecord, info: Optional[SnapshotInfo]) -> bool:
        print(f"Will create temp VM/disk/bucket in '{record['project']}/{record['region']}'. Costs apply.")
        if info is not None and info.storage_bytes is not None:
            print(f"Estimated bytes: {format_bytes(info.storage_bytes)}")
        if not self.confirm("Proceed? [y/N]: "):
            print("Aborted.")
            return False
        return True

    def execute(self, args: Namespace) -> int:
        config = self.load_config(args)
        machine_types = None
        if args.machine_type:
            machine_types = [t.strip() for t in args.machine_type.split(",") if t.strip()]
        self.apply_overrides(config, {
            "gce.machine_types": machine_types,
            "gce.disk_type": args.disk_type,
            "dispatch.mode": args.mode,
        }, verbose=args.verbose)

        provider = self.create_provider(config)
        print(f"Project: {provider.project}")
        print(f"Snapshot: {args.snapshot} | Region: {args.region}")

        orchestrator = ExportOrchestrator(
            provider,
            config,
            confirm=None if args.yes else self._confirm_session,
        )
        report = orchestrator.run(ExportRequest(
            snapshot=args.snapshot,
            region=args.region,
            alias=args.name,
            out_dir=args.out_dir,
            keep_remote=args.keep_remote,
            skip_local=args.skip_local,
        ))
        if report.aborted:
            return 0

        record = report.record
        print()
        print(f"DONE. Output: {record['local_dir']}")
        print(f"State: {record.state_file}")

        if report.compute_leaked:
            print(f"Compute cleanup incomplete; storage kept. Run: "
                  f"snapexport cleanup --include-compute {record.state_file}", file=sys.stderr)
        elif report.exit_code != 0:
            print(f"Download failed; resume with: snapexport download {record.state_file}", file=sys.stderr)
        if report.exit_code != 0:
            return report.exit_code

        if report.succeeded:
            if args.yes:
                delete_state = args.delete_state_at_end
            else:
                delete_state = self.confirm("Delete local state/temp files now? [y/N]: ")
            if delete_state:
                forget_session(record, config.state.exports_dir)
                print("Deleted local state and temp files.")
        return 0
