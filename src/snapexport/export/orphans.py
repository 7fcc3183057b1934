"""
Sweep for temporary disks left behind by sessions whose record was lost.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Tuple

from snapexport.cloud.base import CloudProvider, DiskInfo
from snapexport.errors import CloudApiError, NoAvailableZoneError

logger = logging.getLogger(__name__)

TEMP_DISK_PREFIX = "tmpdisk-"


@dataclass
class OrphanSweepResult:
    deleted: List[DiskInfo] = field(default_factory=list)
    failed: List[Tuple[DiskInfo, str]] = field(default_factory=list)


def find_orphan_disks(provider: CloudProvider, region: str) -> List[DiskInfo]:
    """
    Unattached ``tmpdisk-*`` disks in the region's UP zones.

    Args:
        provider: Cloud provider
        region: Region name, or ``all`` for every zone
    """
    zones = provider.list_zones(None if region == "all" else region)
    if not zones:
        raise NoAvailableZoneError(f"No zones found for region '{region}'", step="list_zones")

    orphans = []
    for zone in zones:
        for disk in provider.list_disks(zone):
            if disk.name.startswith(TEMP_DISK_PREFIX) and not disk.attached:
                orphans.append(disk)
    return orphans


def delete_orphan_disks(provider: CloudProvider, disks: List[DiskInfo]) -> OrphanSweepResult:
    result = OrphanSweepResult()
    for disk in disks:
        logger.info("Deleting %s (%s GB, %s, created %s)", disk.name, disk.size_gb, disk.zone, disk.created)
        try:
            provider.delete_disk(disk.zone, disk.name)
        except CloudApiError as e:
            if not e.not_found:
                logger.warning("Could not delete %s: %s", disk.name, e)
                result.failed.append((disk, str(e)))
                continue
        result.deleted.append(disk)
    return result
