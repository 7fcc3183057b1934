"""
Idempotent teardown of everything a session record references.

Order: detach disk, delete instance, delete disk, then (only when allowed)
delete the objects under the prefix and the bucket. "Not found" is success,
so running teardown again, or after a partial teardown, ends in the same
state without errors. Teardown never raises.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List

from snapexport.cloud.base import CloudProvider
from snapexport.errors import CloudApiError
from snapexport.session.record import SessionRecord, SessionStatus

logger = logging.getLogger(__name__)


@dataclass
class TeardownSubError:
    step: str
    resource: str
    error: str


@dataclass
class TeardownReport:
    deleted: List[str] = field(default_factory=list)
    absent: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    errors: List[TeardownSubError] = field(default_factory=list)
    storage_kept: bool = True

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def compute_clean(self) -> bool:
        return not any(e.step in ("delete_instance", "delete_disk") for e in self.errors)


def storage_deletion_allowed(record: SessionRecord) -> bool:
    """
    Whether the bucket may be deleted without an explicit user request.

    Remote data is the only copy until a verified local download exists, so
    anything short of that keeps it.
    """
    if record.keep_remote or record.skip_local:
        return False
    if record.failed:
        return False
    return record.reached(SessionStatus.DOWNLOADED)


def _attempt(report: TeardownReport, step: str, resource: str, call: Callable[[], None]) -> None:
    try:
        call()
    except Exception as e:
        if isinstance(e, CloudApiError) and e.not_found:
            logger.debug("%s: %s already gone", step, resource)
            report.absent.append(resource)
            return
        logger.warning("%s failed for %s: %s", step, resource, e)
        report.errors.append(TeardownSubError(step, resource, str(e)))
        return
    report.deleted.append(resource)


def teardown_compute(provider: CloudProvider, record: SessionRecord, report: TeardownReport) -> None:
    zone = record.get("zone")
    instance = record.get("instance")
    disk = record.get("disk")
    if not zone:
        # Zone is recorded before any zonal call, so nothing zonal exists
        report.skipped.extend(name for name in (instance, disk) if name)
        return

    if instance and disk:
        _attempt(report, "detach_disk", f"{instance}:{disk}",
                 lambda: provider.detach_disk(zone, instance, disk))
    if instance:
        logger.info("Delete VM %s in %s", instance, zone)
        _attempt(report, "delete_instance", instance, lambda: provider.delete_instance(zone, instance))
    if disk:
        logger.info("Delete disk %s in %s", disk, zone)
        _attempt(report, "delete_disk", disk, lambda: provider.delete_disk(zone, disk))


def teardown_storage(provider: CloudProvider, record: SessionRecord, report: TeardownReport) -> None:
    bucket = record.get("bucket")
    prefix = record.get("remote_prefix")
    if not bucket:
        return

    if prefix:
        logger.info("Delete objects gs://%s/%s", bucket, prefix)
        try:
            objects = provider.list_objects(bucket, prefix)
        except Exception as e:
            if not (isinstance(e, CloudApiError) and e.not_found):
                logger.warning("Listing gs://%s/%s failed: %s", bucket, prefix, e)
                report.errors.append(TeardownSubError("list_objects", f"gs://{bucket}/{prefix}", str(e)))
            objects = []
        for obj in objects:
            _attempt(report, "delete_object", f"gs://{bucket}/{obj.name}",
                     lambda name=obj.name: provider.delete_object(bucket, name))

    logger.info("Delete bucket gs://%s", bucket)
    errors_before = len(report.errors)
    _attempt(report, "delete_bucket", f"gs://{bucket}", lambda: provider.delete_bucket(bucket))
    report.storage_kept = len(report.errors) > errors_before


def teardown(
    provider: CloudProvider,
    record: SessionRecord,
    include_compute: bool = True,
    include_storage: bool = True,
    force_storage: bool = False,
) -> TeardownReport:
    """
    Delete the resources referenced by ``record``.

    Args:
        provider: Cloud provider bound to the record's project
        record: Session record (read only)
        include_compute: Delete instance and disk
        include_storage: Consider the bucket at all (False = compute only)
        force_storage: Delete the bucket even when the record says to keep it

    Returns:
        TeardownReport; sub-step failures are listed, never raised
    """
    report = TeardownReport()
    if include_compute:
        teardown_compute(provider, record, report)

    if include_storage and (force_storage or storage_deletion_allowed(record)):
        teardown_storage(provider, record, report)
    elif include_storage:
        logger.info("Keeping remote bucket/objects: gs://%s/%s",
                    record.get("bucket", "<none>"), record.get("remote_prefix", ""))

    if report.errors:
        logger.warning("Teardown finished with %d error(s); re-run cleanup with %s",
                       len(report.errors), record.state_file)
    else:
        logger.info("Cleanup done.")
    return report
