"""
Orphan disk sweep command.

Lists unattached ``tmpdisk-*`` disks (left behind when a session record was
lost) and deletes them after two explicit confirmations.
"""

from argparse import ArgumentParser, Namespace

from .base import ConfigurableCommand
from snapexport.export.orphans import TEMP_DISK_PREFIX, delete_orphan_disks, find_orphan_disks

FIRST_CONFIRMATION = ("yes",)
SECOND_CONFIRMATION = ("delete these disks forever",)


class OrphansCommand(ConfigurableCommand):
    """Find and delete orphaned temporary disks."""

    @property
    def name(self) -> str:
        return "orphans"

    @property
    def help(self) -> str:
        return f"Delete unattached {TEMP_DISK_PREFIX}* disks left behind by lost sessions"

    @property
    def description(self) -> str:
        return f"""
Find unattached {TEMP_DISK_PREFIX}* disks in a region (or every region) and delete
them. Deleted disks cannot be recovered; you are asked twice before anything
is deleted unless --apply is given.

Examples:
  snapexport orphans us-central1
  snapexport orphans all --apply
        """

    def add_arguments(self, parser: ArgumentParser) -> None:
        parser.add_argument("region", type=str, help="Region name, or 'all'")
        parser.add_argument(
            "--apply",
            action="store_true",
            help="Delete without asking (dangerous)"
        )
        self.add_config_arguments(parser)

    def execute(self, args: Namespace) -> int:
        config = self.load_config(args)
        provider = self.create_provider(config)

        print("=" * 70)
        print(f"ORPHAN DISK CLEANUP for project: {provider.project}")
        print("=" * 70)
        print("This operation PERMANENTLY DELETES DISKS; their data cannot be recovered.")
        print()

        disks = find_orphan_disks(provider, args.region)
        if not disks:
            print(f"✓ No orphan {TEMP_DISK_PREFIX}* disks found.")
            return 0

        print(f"Detected unattached {TEMP_DISK_PREFIX}* disks:")
        print("-" * 70)
        print(f"{'NAME':<40} {'ZONE':<16} {'SIZE_GB':>7}  CREATED")
        for disk in disks:
            size = disk.size_gb if disk.size_gb is not None else "?"
            print(f"{disk.name:<40} {disk.zone:<16} {size:>7}  {disk.created or '?'}")
        print("-" * 70)
        print()

        if not args.apply:
            if not self.confirm(
                "Do you understand that ALL listed disks will be PERMANENTLY DELETED? (yes/NO): ",
                expected=FIRST_CONFIRMATION,
            ):
                print("Aborted.")
                return 0
            if not self.confirm(
                "Type 'delete these disks forever' to confirm: ",
                expected=SECOND_CONFIRMATION,
            ):
                print("Aborted.")
                return 0

        result = delete_orphan_disks(provider, disks)
        print()
        print(f"✓ Deleted {len(result.deleted)} disk(s).")
        if result.failed:
            for disk, error in result.failed:
                print(f"  ✗ {disk.name} ({disk.zone}): {error}")
            return self.error(f"{len(result.failed)} disk(s) could not be deleted")
        return 0
