"""
Export session steps.

- provisioner: bucket, access grant, disk, instance (with fallback), attach
- dispatcher: reachability, payload shipping and the completion verdict
- teardown: idempotent release of everything a record references
- transfer: resumable download with fallback copy mechanisms
- orphans: sweep for temporary disks whose record was lost
- orchestrator: the end-to-end session
"""

from snapexport.export.provisioner import ResourceProvisioner, ProvisionStatus
from snapexport.export.dispatcher import DispatchOutcome, RemoteWorkDispatcher
from snapexport.export.teardown import TeardownReport, teardown, storage_deletion_allowed
from snapexport.export.transfer import (
    TransferDescriptor,
    TransferOutcome,
    TransferResult,
    TransferSynchronizer,
    build_mechanisms,
    fetch_single,
)
from snapexport.export.orphans import OrphanSweepResult, find_orphan_disks, delete_orphan_disks
from snapexport.export.orchestrator import ExportOrchestrator, ExportReport, ExportRequest

__all__ = [
    "ResourceProvisioner",
    "ProvisionStatus",
    "DispatchOutcome",
    "RemoteWorkDispatcher",
    "TeardownReport",
    "teardown",
    "storage_deletion_allowed",
    "TransferDescriptor",
    "TransferOutcome",
    "TransferResult",
    "TransferSynchronizer",
    "build_mechanisms",
    "fetch_single",
    "OrphanSweepResult",
    "find_orphan_disks",
    "delete_orphan_disks",
    "ExportOrchestrator",
    "ExportReport",
    "ExportRequest",
]
