"""
Resource provisioning for an export session.

Creates the bucket, the bucket access grant, the disk cloned from the
snapshot, the worker instance (walking the machine-type fallback list) and
the attachment. Each step is appended to the session record as soon as it
succeeds; the zone is recorded before the first zonal call.
"""

import logging
from enum import IntEnum
from typing import List, Optional

from snapexport.cloud.base import CloudProvider, InstanceSpec
from snapexport.config.schema import GceConfig
from snapexport.errors import (
    CloudApiError,
    NoAvailableZoneError,
    ProvisioningCapacityError,
    ProvisioningError,
    ProvisioningExhausted,
)
from snapexport.session.record import SessionStatus, StateRecorder

logger = logging.getLogger(__name__)

BUCKET_ROLE = "roles/storage.objectAdmin"


class ProvisionStatus(IntEnum):
    UNPROVISIONED = 0
    CONTAINER_READY = 1
    PERMISSION_GRANTED = 2
    DEVICE_READY = 3
    INSTANCE_READY = 4
    ATTACHED = 5


class ResourceProvisioner:
    """
    Drives the provisioning steps for one session.

    Args:
        provider: Cloud provider bound to the session's project
        recorder: Recorder of the session being provisioned
        config: Compute settings (image, scopes, ssh user)
    """

    def __init__(self, provider: CloudProvider, recorder: StateRecorder, config: GceConfig):
        self.provider = provider
        self.recorder = recorder
        self.config = config
        self.status = ProvisionStatus.UNPROVISIONED
        self._service_account: Optional[str] = None

    @property
    def record(self):
        return self.recorder.record

    def _require(self, expected: ProvisionStatus, step: str) -> None:
        if self.status != expected:
            raise RuntimeError(f"Cannot run {step} from {self.status.name}")

    def _advance(self, expected: ProvisionStatus, new: ProvisionStatus, session_status: SessionStatus,
                 **fields: object) -> None:
        self._require(expected, new.name)
        self.recorder.append(status=session_status, **fields)
        self.status = new

    def select_zone(self) -> str:
        """Pick the first UP zone of the region and record it."""
        region = self.record["region"]
        zones = self.provider.list_zones(region)
        if not zones:
            raise NoAvailableZoneError(f"No UP zones in {region}", step="select_zone")
        zone = zones[0]
        self.recorder.append(zone=zone)
        logger.info("Zone: %s", zone)
        return zone

    def create_container(self) -> None:
        self._require(ProvisionStatus.UNPROVISIONED, "create_container")
        bucket = self.record["bucket"]
        logger.info("Create bucket: gs://%s", bucket)
        try:
            self.provider.create_bucket(bucket, self.record["region"])
        except CloudApiError as e:
            if not e.already_exists:
                raise ProvisioningError(f"Bucket creation failed: {e}", step="create_bucket") from e
            logger.info("Bucket gs://%s already exists; reusing it", bucket)
        self._advance(ProvisionStatus.UNPROVISIONED, ProvisionStatus.CONTAINER_READY,
                      SessionStatus.CONTAINER_READY)

    def grant_access(self) -> None:
        """Give the compute service account object access to this bucket only."""
        self._require(ProvisionStatus.CONTAINER_READY, "grant_access")
        try:
            self._service_account = self.provider.compute_service_account()
            self.provider.grant_bucket_access(
                self.record["bucket"], f"serviceAccount:{self._service_account}", BUCKET_ROLE
            )
        except CloudApiError as e:
            raise ProvisioningError(f"Granting bucket access failed: {e}", step="grant_access") from e
        self._advance(ProvisionStatus.CONTAINER_READY, ProvisionStatus.PERMISSION_GRANTED,
                      SessionStatus.PERMISSION_GRANTED, service_account=self._service_account)

    def create_device(self, disk_type: str) -> None:
        self._require(ProvisionStatus.PERMISSION_GRANTED, "create_device")
        disk = self.record["disk"]
        logger.info("Create disk %s from snapshot %s (%s)", disk, self.record["snapshot"], disk_type)
        try:
            self.provider.create_disk(self.record["zone"], disk, self.record["snapshot"], disk_type)
        except CloudApiError as e:
            raise ProvisioningError(f"Disk creation failed: {e}", step="create_disk") from e
        self._advance(ProvisionStatus.PERMISSION_GRANTED, ProvisionStatus.DEVICE_READY,
                      SessionStatus.DEVICE_READY, disk_type=disk_type)

    def _try_machine_type(self, machine_type: str, public_key: str) -> None:
        spec = InstanceSpec(
            name=self.record["instance"],
            machine_type=machine_type,
            image_family=self.config.image_family,
            image_project=self.config.image_project,
            service_account=self._service_account or self.provider.compute_service_account(),
            scopes=list(self.config.scopes),
            ssh_user=self.config.ssh_user,
            public_key=public_key,
            labels={"snapexport-session": self.record["suffix"]},
        )
        try:
            self.provider.create_instance(self.record["zone"], spec)
        except CloudApiError as e:
            if e.capacity_exhausted:
                raise ProvisioningCapacityError(machine_type, e.message) from e
            raise ProvisioningError(f"Instance creation failed on {machine_type}: {e}",
                                    step="create_instance") from e

    def create_instance(self, machine_types: List[str], public_key: str) -> str:
        """
        Create the worker, trying each machine type in order.

        Only capacity/quota rejections move on to the next type; any other
        failure aborts immediately.

        Returns:
            The machine type that was created

        Raises:
            ProvisioningExhausted: If every type was rejected for capacity
            ProvisioningError: On the first non-capacity failure
        """
        self._require(ProvisionStatus.DEVICE_READY, "create_instance")

        rejected = []
        for machine_type in machine_types:
            logger.info("Try VM type: %s", machine_type)
            try:
                self._try_machine_type(machine_type, public_key)
            except ProvisioningCapacityError as e:
                logger.warning("Capacity blocked %s; trying next (%s)", machine_type, e)
                rejected.append(str(e))
                continue
            self._advance(ProvisionStatus.DEVICE_READY, ProvisionStatus.INSTANCE_READY,
                          SessionStatus.INSTANCE_READY, machine_type=machine_type)
            return machine_type

        raise ProvisioningExhausted(
            f"No instance profile available in {self.record['zone']}: " + "; ".join(rejected),
            step="create_instance",
        )

    def attach_device(self) -> None:
        self._require(ProvisionStatus.INSTANCE_READY, "attach_device")
        disk = self.record["disk"]
        logger.info("Attach disk %s", disk)
        try:
            self.provider.attach_disk(self.record["zone"], self.record["instance"], disk, device_name=disk)
        except CloudApiError as e:
            raise ProvisioningError(f"Attaching disk failed: {e}", step="attach_disk") from e
        self._advance(ProvisionStatus.INSTANCE_READY, ProvisionStatus.ATTACHED, SessionStatus.ATTACHED)

    def provision(self, machine_types: List[str], disk_type: str, public_key: str) -> None:
        """Run every step in order."""
        if "zone" not in self.record:
            self.select_zone()
        self.create_container()
        self.grant_access()
        self.create_device(disk_type)
        self.create_instance(machine_types, public_key)
        self.attach_device()
