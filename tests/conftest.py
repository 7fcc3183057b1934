"""
Shared test doubles.

FakeCloud keeps buckets, disks and instances in memory and reports missing
resources the way the real provider does (CloudApiError with ``notFound``).
FakeExecutor plays the worker: when asked to run the payload it writes
objects into FakeCloud according to a scripted behavior.
"""

import base64
import hashlib
import shlex
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Set

import pytest

from snapexport.cloud.base import CloudProvider, DiskInfo, InstanceSpec, ObjectInfo, SnapshotInfo
from snapexport.cloud.remote import ExecResult, RemoteConnectError, RemoteExecutor
from snapexport.config.schema import ExportConfig
from snapexport.errors import CloudApiError
from snapexport.session.planner import plan_session

FIXED_NOW = datetime(2025, 1, 2, 3, 4, 5)
FIXED_SUFFIX = "ab12cd34"


def not_found(what: str) -> CloudApiError:
    return CloudApiError(404, "notFound", f"{what} was not found")


def md5_of(data: bytes) -> str:
    return base64.b64encode(hashlib.md5(data).digest()).decode("ascii")


class FakeCloud(CloudProvider):
    """In-memory CloudProvider."""

    def __init__(self, project: str = "test-project", zones: Optional[Dict[str, List[str]]] = None):
        self.project = project
        self.zones = zones if zones is not None else {"us-central1": ["us-central1-b", "us-central1-a"]}
        self.snapshots = {"my-data-snap": SnapshotInfo("my-data-snap", 10, 3 * 1024 ** 3)}
        self.buckets: Dict[str, Dict[str, bytes]] = {}
        self.bucket_members: Dict[str, Set[str]] = {}
        self.disks: Dict[tuple, Dict] = {}
        self.instances: Dict[tuple, Dict] = {}
        self.capacity_blocked: Set[str] = set()
        self.failures: Dict[str, CloudApiError] = {}
        self.calls: List[tuple] = []

    def _call(self, op: str, *args) -> None:
        self.calls.append((op,) + args)
        if op in self.failures:
            raise self.failures[op]

    def ops(self) -> List[str]:
        return [c[0] for c in self.calls]

    # Project / zones / snapshots

    def compute_service_account(self) -> str:
        self._call("compute_service_account")
        return "123456-compute@developer.gserviceaccount.com"

    def describe_snapshot(self, snapshot: str) -> SnapshotInfo:
        self._call("describe_snapshot", snapshot)
        if snapshot not in self.snapshots:
            raise not_found(f"snapshot {snapshot}")
        return self.snapshots[snapshot]

    def list_zones(self, region: Optional[str] = None) -> List[str]:
        self._call("list_zones", region)
        if region is None:
            return sorted(z for zones in self.zones.values() for z in zones)
        return sorted(self.zones.get(region, []))

    # Storage

    def create_bucket(self, bucket: str, location: str) -> None:
        self._call("create_bucket", bucket)
        if bucket in self.buckets:
            raise CloudApiError(409, "conflict", f"bucket {bucket} already exists")
        self.buckets[bucket] = {}
        self.bucket_members[bucket] = set()

    def grant_bucket_access(self, bucket: str, member: str, role: str) -> None:
        self._call("grant_bucket_access", bucket, member)
        if bucket not in self.buckets:
            raise not_found(f"bucket {bucket}")
        self.bucket_members[bucket].add(member)

    def delete_bucket(self, bucket: str) -> None:
        self._call("delete_bucket", bucket)
        if bucket not in self.buckets:
            raise not_found(f"bucket {bucket}")
        if self.buckets[bucket]:
            raise CloudApiError(409, "conflict", f"bucket {bucket} is not empty")
        del self.buckets[bucket]

    def put_object(self, bucket: str, name: str, data: bytes) -> None:
        self.buckets[bucket][name] = data

    def list_objects(self, bucket: str, prefix: str) -> List[ObjectInfo]:
        self._call("list_objects", bucket, prefix)
        if bucket not in self.buckets:
            raise not_found(f"bucket {bucket}")
        start = prefix.rstrip("/") + "/"
        return [
            ObjectInfo(name, len(data), md5_of(data))
            for name, data in sorted(self.buckets[bucket].items())
            if name.startswith(start)
        ]

    def get_object(self, bucket: str, name: str) -> Optional[ObjectInfo]:
        self._call("get_object", bucket, name)
        data = self.buckets.get(bucket, {}).get(name)
        if data is None:
            return None
        return ObjectInfo(name, len(data), md5_of(data))

    def delete_object(self, bucket: str, name: str) -> None:
        self._call("delete_object", bucket, name)
        if name not in self.buckets.get(bucket, {}):
            raise not_found(f"object {name}")
        del self.buckets[bucket][name]

    def download_object(self, bucket: str, name: str, destination: Path, offset: int = 0) -> None:
        self._call("download_object", bucket, name, offset)
        data = self.buckets.get(bucket, {}).get(name)
        if data is None:
            raise not_found(f"object {name}")
        with open(destination, "ab" if offset else "wb") as f:
            f.write(data[offset:])

    # Compute

    def create_disk(self, zone: str, disk: str, snapshot: str, disk_type: str) -> None:
        self._call("create_disk", zone, disk)
        self.disks[(zone, disk)] = {"snapshot": snapshot, "type": disk_type, "users": []}

    def delete_disk(self, zone: str, disk: str) -> None:
        self._call("delete_disk", zone, disk)
        if (zone, disk) not in self.disks:
            raise not_found(f"disk {disk}")
        if self.disks[(zone, disk)]["users"]:
            raise CloudApiError(400, "resourceInUseByAnotherResource", f"disk {disk} is in use")
        del self.disks[(zone, disk)]

    def list_disks(self, zone: str) -> List[DiskInfo]:
        self._call("list_disks", zone)
        return [
            DiskInfo(name, z, 10, "2025-01-01T00:00:00Z", list(d["users"]))
            for (z, name), d in sorted(self.disks.items())
            if z == zone
        ]

    def create_instance(self, zone: str, spec: InstanceSpec) -> None:
        self._call("create_instance", zone, spec.machine_type)
        if spec.machine_type in self.capacity_blocked:
            raise CloudApiError(0, "ZONE_RESOURCE_POOL_EXHAUSTED", f"{spec.machine_type} unavailable in {zone}")
        self.instances[(zone, spec.name)] = {"spec": spec, "attached": []}

    def delete_instance(self, zone: str, instance: str) -> None:
        self._call("delete_instance", zone, instance)
        if (zone, instance) not in self.instances:
            raise not_found(f"instance {instance}")
        for disk in self.instances.pop((zone, instance))["attached"]:
            self.disks[(zone, disk)]["users"].remove(instance)

    def instance_address(self, zone: str, instance: str) -> str:
        self._call("instance_address", zone, instance)
        if (zone, instance) not in self.instances:
            raise not_found(f"instance {instance}")
        return "203.0.113.10"

    def attach_disk(self, zone: str, instance: str, disk: str, device_name: str) -> None:
        self._call("attach_disk", zone, instance, disk)
        self.instances[(zone, instance)]["attached"].append(disk)
        self.disks[(zone, disk)]["users"].append(instance)

    def detach_disk(self, zone: str, instance: str, device_name: str) -> None:
        self._call("detach_disk", zone, instance, device_name)
        vm = self.instances.get((zone, instance))
        if vm is None or device_name not in vm["attached"]:
            raise not_found(f"{device_name} on {instance}")
        vm["attached"].remove(device_name)
        self.disks[(zone, device_name)]["users"].remove(instance)

    # Helpers for assertions

    def resources(self) -> Dict[str, list]:
        return {
            "buckets": sorted(self.buckets),
            "disks": sorted(name for _, name in self.disks),
            "instances": sorted(name for _, name in self.instances),
        }


def parse_env(command: str) -> Dict[str, str]:
    env = {}
    for token in shlex.split(command):
        if "=" not in token:
            break
        key, value = token.split("=", 1)
        env[key] = value
    return env


class FakeExecutor(RemoteExecutor):
    """
    Scripted worker.

    Args:
        cloud: FakeCloud the payload writes into
        behavior: ok | partial | timeout | failed | empty
        connect_failures: Connection attempts that fail before one succeeds
    """

    ARTIFACTS = {"sda1.tar.gz": b"partition one" * 100, "sda2.tar.gz": b"partition two"}

    def __init__(self, cloud: FakeCloud, behavior: str = "ok", connect_failures: int = 0):
        self.cloud = cloud
        self.behavior = behavior
        self.connect_failures = connect_failures
        self.connect_attempts = 0
        self.uploads: List[tuple] = []
        self.commands: List[str] = []
        self.closed = False

    def connect(self, host: str) -> None:
        self.connect_attempts += 1
        if self.connect_attempts <= self.connect_failures:
            raise RemoteConnectError(f"{host}: connection refused")

    def upload(self, data: bytes, remote_path: str, mode: int = 0o755) -> None:
        self.uploads.append((remote_path, data))

    def execute(self, command: str, timeout: float) -> ExecResult:
        self.commands.append(command)
        env = parse_env(command)
        bucket, prefix = env["EXPORT_BUCKET"], env["EXPORT_PREFIX"]
        marker = env.get("EXPORT_MARKER", "_OK")

        if self.behavior in ("ok", "partial", "timeout"):
            for name, data in self.ARTIFACTS.items():
                self.cloud.put_object(bucket, f"{prefix}/{name}", data)
        if self.behavior == "ok":
            self.cloud.put_object(bucket, f"{prefix}/{marker}", b"OK\n")
            return ExecResult(0, output="[worker] done")
        if self.behavior == "timeout":
            return ExecResult(124, timed_out=True, output="[tar] +")
        if self.behavior == "partial":
            return ExecResult(1, output="tar: short read")
        if self.behavior == "failed":
            return ExecResult(11, output="[worker] no mountable filesystem")
        return ExecResult(0)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def cloud():
    """Empty in-memory cloud with one region of two UP zones."""
    return FakeCloud()


@pytest.fixture
def config(tmp_path):
    """Configuration writing under tmp_path with instant polling and API-only transfer."""
    config = ExportConfig()
    config.state.exports_dir = tmp_path / "exports"
    config.dispatch.reachability_interval = 0
    config.transfer.mechanisms = ["api"]
    return config


@pytest.fixture
def recorder(config):
    """Freshly planned session for my-data-snap in us-central1."""
    return plan_session(
        "my-data-snap",
        "us-central1",
        "test-project",
        exports_dir=config.state.exports_dir,
        now=FIXED_NOW,
        suffix=FIXED_SUFFIX,
    )
