"""
Tests for the REST-backed provider.

A scripted stand-in for the authorized requests session returns canned
responses in order, so these tests never touch the network.

Verifies that:
1. API errors carry status, reason and message
2. Zone listing keeps only UP zones of the requested region
3. Zonal calls wait for their operation and surface operation errors
4. Bucket access grants are idempotent
5. Downloads resume with a Range header
"""

import json

import pytest
import requests

from snapexport.cloud.base import InstanceSpec
from snapexport.cloud.gce import GceProvider
from snapexport.errors import CloudApiError

PROJECT_URL = "https://compute.googleapis.com/compute/v1/projects/test-project"


def make_response(status=200, body=None, raw=None, reason="OK"):
    response = requests.Response()
    response.status_code = status
    response.reason = reason
    response.encoding = "utf-8"
    if raw is not None:
        response._content = raw
    elif body is not None:
        response._content = json.dumps(body).encode("utf-8")
    else:
        response._content = b""
    response._content_consumed = True
    return response


class ScriptedSession:
    """Returns queued responses and records every request."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        return self.responses.pop(0)


def provider(*responses):
    session = ScriptedSession(*responses)
    return GceProvider("test-project", session, operation_timeout=0.05, poll_interval=0.01), session


def error_body(status, reason, message):
    return {"error": {"code": status, "message": message, "errors": [{"reason": reason, "message": message}]}}


class TestErrors:
    """Test API error conversion."""

    def test_structured_error(self):
        """Test that reason and message come from the error body."""
        gce, _ = provider(make_response(404, error_body(404, "notFound", "The disk was not found"), reason="Not Found"))
        with pytest.raises(CloudApiError) as exc_info:
            gce.delete_bucket("b")
        assert exc_info.value.status == 404
        assert exc_info.value.reason == "notFound"
        assert exc_info.value.not_found

    def test_unstructured_error(self):
        """Test that a non-JSON body falls back to the HTTP reason."""
        gce, _ = provider(make_response(502, raw=b"<html>bad gateway</html>", reason="Bad Gateway"))
        with pytest.raises(CloudApiError) as exc_info:
            gce.delete_bucket("b")
        assert exc_info.value.reason == "Bad Gateway"
        assert "bad gateway" in exc_info.value.message

    def test_get_missing_object_is_none(self):
        """Test that get_object maps not-found to None."""
        gce, _ = provider(make_response(404, error_body(404, "notFound", "No such object")))
        assert gce.get_object("b", "p/x") is None


class TestZones:
    """Test zone listing."""

    def test_filters_region_and_status(self):
        """Test that only UP zones of the region are returned, sorted."""
        page1 = {
            "items": [
                {"name": "us-central1-c", "status": "UP", "region": f"{PROJECT_URL}/regions/us-central1"},
                {"name": "us-central1-f", "status": "DOWN", "region": f"{PROJECT_URL}/regions/us-central1"},
            ],
            "nextPageToken": "t2",
        }
        page2 = {
            "items": [
                {"name": "us-central1-a", "status": "UP", "region": f"{PROJECT_URL}/regions/us-central1"},
                {"name": "europe-west1-b", "status": "UP", "region": f"{PROJECT_URL}/regions/europe-west1"},
            ],
        }
        gce, session = provider(make_response(body=page1), make_response(body=page2))
        assert gce.list_zones("us-central1") == ["us-central1-a", "us-central1-c"]
        assert session.requests[1][2]["params"]["pageToken"] == "t2"

    def test_all_regions(self):
        """Test that no region means every UP zone."""
        page = {"items": [
            {"name": "b-zone", "status": "UP", "region": "x/regions/b"},
            {"name": "a-zone", "status": "UP", "region": "x/regions/a"},
        ]}
        gce, _ = provider(make_response(body=page))
        assert gce.list_zones() == ["a-zone", "b-zone"]


class TestOperations:
    """Test zonal operation handling."""

    def test_waits_until_done(self):
        """Test that a pending operation is polled until DONE."""
        gce, session = provider(
            make_response(body={"name": "op-1", "status": "RUNNING"}),
            make_response(body={"name": "op-1", "status": "RUNNING"}),
            make_response(body={"name": "op-1", "status": "DONE"}),
        )
        gce.create_disk("us-central1-a", "tmpdisk-x", "snap", "pd-ssd")
        assert len(session.requests) == 3
        assert session.requests[1][1].endswith("/zones/us-central1-a/operations/op-1")
        body = session.requests[0][2]["json"]
        assert body["sourceSnapshot"] == "projects/test-project/global/snapshots/snap"
        assert body["type"].endswith("/diskTypes/pd-ssd")

    def test_operation_error(self):
        """Test that a failed operation raises with its error code."""
        gce, _ = provider(make_response(body={
            "name": "op-2",
            "status": "DONE",
            "error": {"errors": [{"code": "ZONE_RESOURCE_POOL_EXHAUSTED", "message": "no capacity"}]},
        }))
        spec = InstanceSpec("tmpvm-x", "c3-standard-8", "debian-12", "debian-cloud",
                            "sa@example.com", ["scope"], "snapexport", "ssh-rsa AAAA")
        with pytest.raises(CloudApiError) as exc_info:
            gce.create_instance("us-central1-a", spec)
        assert exc_info.value.capacity_exhausted

    def test_operation_timeout(self):
        """Test that an operation that never finishes raises."""
        running = {"name": "op-3", "status": "RUNNING"}
        gce, _ = provider(*[make_response(body=running) for _ in range(10)])
        with pytest.raises(CloudApiError) as exc_info:
            gce.delete_disk("us-central1-a", "tmpdisk-x")
        assert exc_info.value.reason == "OPERATION_TIMEOUT"


class TestInstances:
    """Test instance helpers."""

    def test_ssh_key_metadata(self):
        """Test that the session key is injected for the login user."""
        gce, session = provider(make_response(body={"name": "op", "status": "DONE"}))
        spec = InstanceSpec("tmpvm-x", "e2-standard-4", "debian-12", "debian-cloud",
                            "sa@example.com", ["scope"], "snapexport", "ssh-rsa AAAA")
        gce.create_instance("us-central1-a", spec)
        items = session.requests[0][2]["json"]["metadata"]["items"]
        assert items == [{"key": "ssh-keys", "value": "snapexport:ssh-rsa AAAA snapexport"}]

    def test_instance_address(self):
        """Test that the external NAT address is returned."""
        gce, _ = provider(make_response(body={"networkInterfaces": [
            {"accessConfigs": [{"natIP": "203.0.113.7"}]},
        ]}))
        assert gce.instance_address("z", "vm") == "203.0.113.7"

    def test_detach_not_attached(self):
        """Test that detaching a disk that is not attached reports not-found."""
        gce, session = provider(make_response(body={"disks": [{"deviceName": "boot"}]}))
        with pytest.raises(CloudApiError) as exc_info:
            gce.detach_disk("z", "vm", "tmpdisk-x")
        assert exc_info.value.not_found
        assert len(session.requests) == 1


class TestStorage:
    """Test bucket and object calls."""

    def test_grant_adds_member(self):
        """Test that the member is added to a new binding."""
        gce, session = provider(
            make_response(body={"bindings": [{"role": "roles/viewer", "members": ["user:a"]}]}),
            make_response(body={}),
        )
        gce.grant_bucket_access("b", "serviceAccount:sa", "roles/storage.objectAdmin")
        method, _, kwargs = session.requests[1]
        assert method == "PUT"
        assert {"role": "roles/storage.objectAdmin", "members": ["serviceAccount:sa"]} in kwargs["json"]["bindings"]

    def test_grant_idempotent(self):
        """Test that an existing grant is not written again."""
        gce, session = provider(make_response(body={"bindings": [
            {"role": "roles/storage.objectAdmin", "members": ["serviceAccount:sa"]},
        ]}))
        gce.grant_bucket_access("b", "serviceAccount:sa", "roles/storage.objectAdmin")
        assert [r[0] for r in session.requests] == ["GET"]

    def test_list_objects(self):
        """Test that listing parses size and checksum."""
        gce, session = provider(make_response(body={"items": [
            {"name": "p/sda1.tar.gz", "size": "42", "md5Hash": "abc=="},
        ]}))
        objects = gce.list_objects("b", "p")
        assert objects[0].size == 42
        assert objects[0].md5_hash == "abc=="
        assert session.requests[0][2]["params"]["prefix"] == "p/"

    def test_object_name_quoted(self):
        """Test that object names are URL-encoded as one path segment."""
        gce, session = provider(make_response(body={"name": "p/a b.txt", "size": "1"}))
        gce.get_object("b", "p/a b.txt")
        assert session.requests[0][1].endswith("/b/b/o/p%2Fa%20b.txt")

    def test_download_resume(self, tmp_path):
        """Test that an offset sends a Range header and appends."""
        dest = tmp_path / "x.part"
        dest.write_bytes(b"hello ")
        gce, session = provider(make_response(206, raw=b"world", reason="Partial Content"))
        gce.download_object("b", "p/x", dest, offset=6)
        assert session.requests[0][2]["headers"] == {"Range": "bytes=6-"}
        assert dest.read_bytes() == b"hello world"

    def test_download_range_ignored(self, tmp_path):
        """Test that a full response to a range request overwrites the partial file."""
        dest = tmp_path / "x.part"
        dest.write_bytes(b"stale")
        gce, _ = provider(make_response(200, raw=b"full content"))
        gce.download_object("b", "p/x", dest, offset=5)
        assert dest.read_bytes() == b"full content"
