"""
Cloud provider interface.

Covers the three resource kinds an export session touches (bucket, disk,
instance) plus the bucket access grant. Implementations raise CloudApiError
for every API failure; callers decide which failures are tolerable
(``not_found`` on delete, ``already_exists`` on bucket creation).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional


@dataclass(frozen=True)
class SnapshotInfo:
    name: str
    disk_size_gb: Optional[int] = None
    storage_bytes: Optional[int] = None


@dataclass(frozen=True)
class ObjectInfo:
    name: str
    size: int
    md5_hash: Optional[str] = None  # base64, as reported by the storage API


@dataclass(frozen=True)
class DiskInfo:
    name: str
    zone: str
    size_gb: Optional[int] = None
    created: Optional[str] = None
    users: List[str] = field(default_factory=list)

    @property
    def attached(self) -> bool:
        return bool(self.users)


@dataclass
class InstanceSpec:
    """Everything needed to create the worker instance."""

    name: str
    machine_type: str
    image_family: str
    image_project: str
    service_account: str
    scopes: List[str]
    ssh_user: str
    public_key: str
    labels: Dict[str, str] = field(default_factory=dict)


class CloudProvider(ABC):
    """Abstract interface over the compute and storage APIs of one project."""

    project: str

    @abstractmethod
    def compute_service_account(self) -> str:
        """
        Email of the project's default compute service account.

        Returns:
            Service account email
        """
        pass

    @abstractmethod
    def describe_snapshot(self, snapshot: str) -> SnapshotInfo:
        """
        Look up size information for a snapshot.

        Args:
            snapshot: Snapshot name

        Returns:
            SnapshotInfo
        """
        pass

    @abstractmethod
    def list_zones(self, region: Optional[str] = None) -> List[str]:
        """
        List zones in state UP, sorted by name.

        Args:
            region: Restrict to this region (None = all regions)

        Returns:
            Zone names
        """
        pass

    # Storage

    @abstractmethod
    def create_bucket(self, bucket: str, location: str) -> None:
        """Create a bucket with uniform bucket-level access."""
        pass

    @abstractmethod
    def grant_bucket_access(self, bucket: str, member: str, role: str) -> None:
        """Add ``member`` to ``role`` on one bucket's IAM policy (no-op if present)."""
        pass

    @abstractmethod
    def delete_bucket(self, bucket: str) -> None:
        """Delete an empty bucket."""
        pass

    @abstractmethod
    def list_objects(self, bucket: str, prefix: str) -> List[ObjectInfo]:
        """
        List every object under ``prefix``.

        Args:
            bucket: Bucket name
            prefix: Key prefix (without trailing slash)

        Returns:
            Objects with their full names
        """
        pass

    @abstractmethod
    def get_object(self, bucket: str, name: str) -> Optional[ObjectInfo]:
        """Object metadata, or None if the object does not exist."""
        pass

    @abstractmethod
    def delete_object(self, bucket: str, name: str) -> None:
        """Delete a single object."""
        pass

    @abstractmethod
    def download_object(self, bucket: str, name: str, destination: Path, offset: int = 0) -> None:
        """
        Stream one object's content into ``destination``.

        Args:
            bucket: Bucket name
            name: Object name
            destination: Local file
            offset: Resume from this byte, appending to an existing partial file
        """
        pass

    def object_exists(self, bucket: str, name: str) -> bool:
        return self.get_object(bucket, name) is not None

    # Compute

    @abstractmethod
    def create_disk(self, zone: str, disk: str, snapshot: str, disk_type: str) -> None:
        """Create a persistent disk from a snapshot and wait for completion."""
        pass

    @abstractmethod
    def delete_disk(self, zone: str, disk: str) -> None:
        """Delete a persistent disk and wait for completion."""
        pass

    @abstractmethod
    def list_disks(self, zone: str) -> List[DiskInfo]:
        """List the disks of one zone."""
        pass

    @abstractmethod
    def create_instance(self, zone: str, spec: InstanceSpec) -> None:
        """
        Create the worker instance and wait for completion.

        Raises:
            CloudApiError: ``capacity_exhausted`` is true when the machine type
                is unavailable for quota or capacity reasons
        """
        pass

    @abstractmethod
    def delete_instance(self, zone: str, instance: str) -> None:
        """Delete an instance and wait for completion."""
        pass

    @abstractmethod
    def instance_address(self, zone: str, instance: str) -> str:
        """External IP address of a running instance."""
        pass

    @abstractmethod
    def attach_disk(self, zone: str, instance: str, disk: str, device_name: str) -> None:
        """Attach ``disk`` to ``instance`` under ``device_name``."""
        pass

    @abstractmethod
    def detach_disk(self, zone: str, instance: str, device_name: str) -> None:
        """
        Detach a disk.

        Raises:
            CloudApiError: ``not_found`` when the instance is gone or the
                device is not attached
        """
        pass
