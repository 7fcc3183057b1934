"""
Google Compute Engine / Cloud Storage provider.

Talks to the Compute Engine v1 and Cloud Storage JSON REST APIs through a
``requests`` session authorized with the ambient Google credentials
(``gcloud auth application-default login`` or a service account).
"""

import logging
import math
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional
from urllib.parse import quote

import google.auth
import requests
from google.auth.exceptions import DefaultCredentialsError
from google.auth.transport.requests import AuthorizedSession

from snapexport.errors import CloudApiError, ConfigurationError
from snapexport.retry import RetryExhausted, RetryPolicy, poll_until
from .base import CloudProvider, DiskInfo, InstanceSpec, ObjectInfo, SnapshotInfo

logger = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
DOWNLOAD_CHUNK_SIZE = 8 * 1024 * 1024


def _error_from_response(response: requests.Response) -> CloudApiError:
    """Convert a non-2xx API response into CloudApiError."""
    reason = ""
    message = response.text[:500]
    try:
        error = response.json().get("error", {})
        if isinstance(error, dict):
            message = error.get("message", message)
            details = error.get("errors") or []
            if details and isinstance(details[0], dict):
                reason = details[0].get("reason", "")
            reason = reason or error.get("status", "")
    except ValueError:
        pass
    return CloudApiError(response.status_code, reason or response.reason or "", message)


def _error_from_operation(operation: Dict[str, Any]) -> CloudApiError:
    errors = operation.get("error", {}).get("errors") or [{}]
    message = "; ".join(e.get("message", "") for e in errors if e.get("message"))
    return CloudApiError(0, errors[0].get("code", "OPERATION_FAILED"), message or str(operation.get("error")))


class GceProvider(CloudProvider):
    """
    CloudProvider backed by the GCE and GCS REST APIs.

    Args:
        project: Project ID
        session: Authorized requests session
        operation_timeout: Max seconds to wait for a zone operation
        poll_interval: Seconds between operation polls
    """

    COMPUTE_URL = "https://compute.googleapis.com/compute/v1"
    STORAGE_URL = "https://storage.googleapis.com/storage/v1"

    def __init__(
        self,
        project: str,
        session: requests.Session,
        operation_timeout: float = 600.0,
        poll_interval: float = 3.0,
    ):
        self.project = project
        self._session = session
        self._operation_policy = RetryPolicy(
            attempts=max(1, math.ceil(operation_timeout / poll_interval)),
            interval=poll_interval,
        )

    @classmethod
    def from_default_credentials(
        cls,
        project: Optional[str] = None,
        operation_timeout: float = 600.0,
        poll_interval: float = 3.0,
    ) -> "GceProvider":
        """
        Build a provider from Application Default Credentials.

        Raises:
            ConfigurationError: If no credentials are available or no project
                can be determined
        """
        try:
            credentials, default_project = google.auth.default(scopes=[CLOUD_PLATFORM_SCOPE])
        except DefaultCredentialsError as e:
            raise ConfigurationError(f"No Google credentials available: {e}")

        project = project or default_project
        if not project:
            raise ConfigurationError(
                "No project configured; set gce.project or run 'gcloud config set project <ID>'"
            )
        return cls(project, AuthorizedSession(credentials), operation_timeout, poll_interval)

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    @property
    def _project_url(self) -> str:
        return f"{self.COMPUTE_URL}/projects/{self.project}"

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        response = self._session.request(method, url, **kwargs)
        if not response.ok:
            raise _error_from_response(response)
        return response

    def _json(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        response = self._request(method, url, **kwargs)
        if not response.content:
            return {}
        return response.json()

    def _paginate(self, url: str, params: Optional[Dict[str, str]] = None) -> Iterator[Dict[str, Any]]:
        params = dict(params or {})
        while True:
            page = self._json("GET", url, params=params)
            yield from page.get("items", [])
            token = page.get("nextPageToken")
            if not token:
                return
            params["pageToken"] = token

    def _wait(self, operation: Dict[str, Any], zone: str) -> Dict[str, Any]:
        """Poll a zone operation until DONE; raise its error if it failed."""
        url = f"{self._project_url}/zones/{zone}/operations/{operation['name']}"

        def check() -> Optional[Dict[str, Any]]:
            nonlocal operation
            if operation.get("status") != "DONE":
                operation = self._json("GET", url)
            return operation if operation.get("status") == "DONE" else None

        try:
            done = poll_until(check, self._operation_policy)
        except RetryExhausted:
            raise CloudApiError(0, "OPERATION_TIMEOUT", f"operation {operation['name']} did not finish")

        if done.get("error"):
            raise _error_from_operation(done)
        return done

    def _zonal(self, method: str, zone: str, path: str, **kwargs) -> Dict[str, Any]:
        operation = self._json(method, f"{self._project_url}/zones/{zone}/{path}", **kwargs)
        return self._wait(operation, zone)

    # ------------------------------------------------------------------
    # Project / zones / snapshots
    # ------------------------------------------------------------------

    def compute_service_account(self) -> str:
        project = self._json("GET", self._project_url)
        account = project.get("defaultServiceAccount")
        if not account:
            raise CloudApiError(0, "noDefaultServiceAccount",
                                f"project {self.project} has no default compute service account")
        return account

    def describe_snapshot(self, snapshot: str) -> SnapshotInfo:
        data = self._json("GET", f"{self._project_url}/global/snapshots/{snapshot}")
        disk_size = data.get("diskSizeGb")
        storage = data.get("storageBytes")
        return SnapshotInfo(
            name=data.get("name", snapshot),
            disk_size_gb=int(disk_size) if disk_size is not None else None,
            storage_bytes=int(storage) if storage is not None else None,
        )

    def list_zones(self, region: Optional[str] = None) -> List[str]:
        zones = []
        for zone in self._paginate(f"{self._project_url}/zones"):
            if zone.get("status") != "UP":
                continue
            if region and not zone.get("region", "").endswith(f"/regions/{region}"):
                continue
            zones.append(zone["name"])
        return sorted(zones)

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    def _object_url(self, bucket: str, name: str) -> str:
        return f"{self.STORAGE_URL}/b/{bucket}/o/{quote(name, safe='')}"

    def create_bucket(self, bucket: str, location: str) -> None:
        self._json(
            "POST",
            f"{self.STORAGE_URL}/b",
            params={"project": self.project},
            json={
                "name": bucket,
                "location": location,
                "iamConfiguration": {"uniformBucketLevelAccess": {"enabled": True}},
            },
        )

    def grant_bucket_access(self, bucket: str, member: str, role: str) -> None:
        url = f"{self.STORAGE_URL}/b/{bucket}/iam"
        policy = self._json("GET", url)
        bindings = policy.setdefault("bindings", [])
        for binding in bindings:
            if binding.get("role") == role and not binding.get("condition"):
                if member in binding.setdefault("members", []):
                    return
                binding["members"].append(member)
                break
        else:
            bindings.append({"role": role, "members": [member]})
        self._json("PUT", url, json=policy)

    def delete_bucket(self, bucket: str) -> None:
        self._request("DELETE", f"{self.STORAGE_URL}/b/{bucket}")

    def list_objects(self, bucket: str, prefix: str) -> List[ObjectInfo]:
        params = {"prefix": f"{prefix.rstrip('/')}/", "fields": "items(name,size,md5Hash),nextPageToken"}
        return [
            ObjectInfo(name=item["name"], size=int(item.get("size", 0)), md5_hash=item.get("md5Hash"))
            for item in self._paginate(f"{self.STORAGE_URL}/b/{bucket}/o", params)
        ]

    def get_object(self, bucket: str, name: str) -> Optional[ObjectInfo]:
        try:
            item = self._json("GET", self._object_url(bucket, name))
        except CloudApiError as e:
            if e.not_found:
                return None
            raise
        return ObjectInfo(name=item["name"], size=int(item.get("size", 0)), md5_hash=item.get("md5Hash"))

    def delete_object(self, bucket: str, name: str) -> None:
        self._request("DELETE", self._object_url(bucket, name))

    def download_object(self, bucket: str, name: str, destination: Path, offset: int = 0) -> None:
        headers = {"Range": f"bytes={offset}-"} if offset else {}
        response = self._request(
            "GET", self._object_url(bucket, name), params={"alt": "media"}, headers=headers, stream=True
        )
        mode = "ab" if offset and response.status_code == 206 else "wb"
        with response, open(destination, mode) as f:
            for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                f.write(chunk)

    # ------------------------------------------------------------------
    # Compute
    # ------------------------------------------------------------------

    def create_disk(self, zone: str, disk: str, snapshot: str, disk_type: str) -> None:
        self._zonal("POST", zone, "disks", json={
            "name": disk,
            "sourceSnapshot": f"projects/{self.project}/global/snapshots/{snapshot}",
            "type": f"projects/{self.project}/zones/{zone}/diskTypes/{disk_type}",
            "labels": {"tool": "snapexport"},
        })

    def delete_disk(self, zone: str, disk: str) -> None:
        self._zonal("DELETE", zone, f"disks/{disk}")

    def list_disks(self, zone: str) -> List[DiskInfo]:
        return [
            DiskInfo(
                name=item["name"],
                zone=zone,
                size_gb=int(item["sizeGb"]) if "sizeGb" in item else None,
                created=item.get("creationTimestamp"),
                users=list(item.get("users", [])),
            )
            for item in self._paginate(f"{self._project_url}/zones/{zone}/disks")
        ]

    def create_instance(self, zone: str, spec: InstanceSpec) -> None:
        body = {
            "name": spec.name,
            "machineType": f"zones/{zone}/machineTypes/{spec.machine_type}",
            "labels": {"tool": "snapexport", **spec.labels},
            "disks": [{
                "boot": True,
                "autoDelete": True,
                "initializeParams": {
                    "sourceImage": f"projects/{spec.image_project}/global/images/family/{spec.image_family}",
                },
            }],
            "networkInterfaces": [{
                "network": "global/networks/default",
                "accessConfigs": [{"type": "ONE_TO_ONE_NAT", "name": "External NAT"}],
            }],
            "serviceAccounts": [{"email": spec.service_account, "scopes": spec.scopes}],
            "metadata": {"items": [
                {"key": "ssh-keys", "value": f"{spec.ssh_user}:{spec.public_key} {spec.ssh_user}"},
            ]},
        }
        self._zonal("POST", zone, "instances", json=body)

    def delete_instance(self, zone: str, instance: str) -> None:
        self._zonal("DELETE", zone, f"instances/{instance}")

    def _get_instance(self, zone: str, instance: str) -> Dict[str, Any]:
        return self._json("GET", f"{self._project_url}/zones/{zone}/instances/{instance}")

    def instance_address(self, zone: str, instance: str) -> str:
        data = self._get_instance(zone, instance)
        for interface in data.get("networkInterfaces", []):
            for access in interface.get("accessConfigs", []):
                if access.get("natIP"):
                    return access["natIP"]
        raise CloudApiError(0, "noExternalAddress", f"instance {instance} has no external IP")

    def attach_disk(self, zone: str, instance: str, disk: str, device_name: str) -> None:
        self._zonal("POST", zone, f"instances/{instance}/attachDisk", json={
            "source": f"projects/{self.project}/zones/{zone}/disks/{disk}",
            "deviceName": device_name,
            "mode": "READ_WRITE",
        })

    def detach_disk(self, zone: str, instance: str, device_name: str) -> None:
        data = self._get_instance(zone, instance)
        if not any(d.get("deviceName") == device_name for d in data.get("disks", [])):
            raise CloudApiError(404, "notFound", f"{device_name} is not attached to {instance}")
        self._zonal("POST", zone, f"instances/{instance}/detachDisk", params={"deviceName": device_name})
