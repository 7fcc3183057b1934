"""
Resumable download of a session's remote prefix.

Copy mechanisms are tried in order until one succeeds: ``gsutil rsync``,
``gcloud storage rsync`` and a pure-API mirror. All three are incremental, so
re-running after an interruption only fetches what is still missing and
converges on the same local tree.
"""

import base64
import hashlib
import logging
import os
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import List, Optional

from tqdm import tqdm

from snapexport.cloud.base import CloudProvider, ObjectInfo
from snapexport.errors import CloudApiError, ConfigurationError, TransferFailed
from snapexport.session.record import SessionRecord, SessionStatus

logger = logging.getLogger(__name__)

PART_SUFFIX = ".part"
ARCHIVE_SUFFIXES = (".tar.gz", ".tgz", ".tar.zst", ".tar.bz2", ".tar.xz", ".tar")


@dataclass(frozen=True)
class TransferDescriptor:
    bucket: str
    prefix: str
    local_dir: Path
    marker: str = "_OK"

    @property
    def source_url(self) -> str:
        return f"gs://{self.bucket}/{self.prefix}"

    @classmethod
    def from_record(cls, record: SessionRecord, out_dir: Optional[Path] = None,
                    marker: str = "_OK") -> "TransferDescriptor":
        """
        Build a descriptor from a record whose remote work completed.

        Raises:
            ConfigurationError: If the record lacks bucket/prefix or never
                reached ``remote_completed``
        """
        if "bucket" not in record or "remote_prefix" not in record:
            raise ConfigurationError(f"Record {record.path} is missing bucket/remote_prefix")
        if not record.reached(SessionStatus.REMOTE_COMPLETED):
            raise ConfigurationError(
                f"Remote work for {record.path} never completed (status: "
                f"{record.status.value if record.status else 'unknown'}); nothing reliable to download"
            )
        local_dir = Path(out_dir) if out_dir else Path(record.get("local_dir") or f"./exports/{record['remote_prefix']}")
        return cls(record["bucket"], record["remote_prefix"], local_dir, marker)


class TransferOutcome(str, Enum):
    COMPLETED = "completed"
    COMPLETED_WITH_WARNING = "completed_with_warning"
    FAILED = "failed"


@dataclass
class TransferResult:
    outcome: TransferOutcome
    mechanism: Optional[str] = None
    return_code: int = 0
    marker_present: bool = False

    @property
    def copied(self) -> bool:
        return self.outcome != TransferOutcome.FAILED


class CopyMechanism(ABC):
    """One way of mirroring a remote prefix into a local directory."""

    name: str = ""

    @abstractmethod
    def available(self) -> bool:
        """Whether this mechanism can run on this machine."""
        pass

    @abstractmethod
    def run(self, descriptor: TransferDescriptor) -> int:
        """
        Mirror the prefix.

        Returns:
            Return code (0 = success)
        """
        pass


class GsutilRsync(CopyMechanism):
    """``gsutil -m rsync -r [-c]``."""

    name = "gsutil"

    def __init__(self, verify_checksums: bool = True):
        self.verify_checksums = verify_checksums

    def available(self) -> bool:
        return shutil.which("gsutil") is not None

    def run(self, descriptor: TransferDescriptor) -> int:
        cmd = ["gsutil", "-m", "rsync", "-r"]
        if self.verify_checksums:
            cmd.append("-c")
        cmd += [descriptor.source_url, f"{descriptor.local_dir}/"]
        logger.debug("Running %s", " ".join(cmd))
        return subprocess.run(cmd).returncode


class GcloudRsync(CopyMechanism):
    """``gcloud storage rsync --recursive``."""

    name = "gcloud"

    def available(self) -> bool:
        if shutil.which("gcloud") is None:
            return False
        check = subprocess.run(
            ["gcloud", "storage", "rsync", "--help"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
        return check.returncode == 0

    def run(self, descriptor: TransferDescriptor) -> int:
        cmd = ["gcloud", "storage", "rsync", "--recursive", descriptor.source_url, str(descriptor.local_dir)]
        logger.debug("Running %s", " ".join(cmd))
        return subprocess.run(cmd).returncode


def md5_base64(path: Path) -> str:
    """MD5 of a file, base64-encoded the way the storage API reports it."""
    digest = hashlib.md5()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            digest.update(chunk)
    return base64.b64encode(digest.digest()).decode("ascii")


def relative_key(prefix: str, name: str) -> Optional[PurePosixPath]:
    """Object name relative to ``prefix``; None for placeholders or unsafe names."""
    rel = name[len(prefix.rstrip("/")) + 1:]
    if not rel or rel.endswith("/"):
        return None
    path = PurePosixPath(rel)
    if path.is_absolute() or ".." in path.parts:
        logger.warning("Skipping unsafe object name: %s", name)
        return None
    return path


class ApiMirror(CopyMechanism):
    """
    Mirror through the storage API.

    Files whose size (and MD5, when verifying) already match are skipped;
    downloads land in ``*.part`` files that are resumed with ranged reads and
    renamed into place once complete.
    """

    name = "api"

    def __init__(self, provider: CloudProvider, verify_checksums: bool = True, progress: bool = True):
        self.provider = provider
        self.verify_checksums = verify_checksums
        self.progress = progress

    def available(self) -> bool:
        return True

    def is_current(self, obj: ObjectInfo, dest: Path) -> bool:
        if not dest.is_file() or dest.stat().st_size != obj.size:
            return False
        if self.verify_checksums and obj.md5_hash:
            return md5_base64(dest) == obj.md5_hash
        return True

    def fetch_object(self, bucket: str, obj: ObjectInfo, dest: Path) -> bool:
        dest.parent.mkdir(parents=True, exist_ok=True)
        part = dest.with_name(dest.name + PART_SUFFIX)
        offset = part.stat().st_size if part.is_file() else 0
        if offset >= obj.size:
            offset = 0
        self.provider.download_object(bucket, obj.name, part, offset=offset)

        if part.stat().st_size != obj.size:
            logger.warning("Size mismatch for %s: got %d, expected %d", obj.name, part.stat().st_size, obj.size)
            part.unlink()
            return False
        if self.verify_checksums and obj.md5_hash and md5_base64(part) != obj.md5_hash:
            logger.warning("Checksum mismatch for %s", obj.name)
            part.unlink()
            return False
        os.replace(part, dest)
        return True

    def run(self, descriptor: TransferDescriptor) -> int:
        try:
            objects = self.provider.list_objects(descriptor.bucket, descriptor.prefix)
        except CloudApiError as e:
            logger.error("Listing %s failed: %s", descriptor.source_url, e)
            return 1

        failures = 0
        with tqdm(total=sum(o.size for o in objects), unit="B", unit_scale=True,
                  desc="Downloading", disable=not self.progress) as pbar:
            for obj in objects:
                rel = relative_key(descriptor.prefix, obj.name)
                if rel is None:
                    continue
                dest = descriptor.local_dir.joinpath(*rel.parts)
                if not self.is_current(obj, dest):
                    try:
                        if not self.fetch_object(descriptor.bucket, obj, dest):
                            failures += 1
                    except (CloudApiError, OSError) as e:
                        logger.warning("Download of %s failed: %s", obj.name, e)
                        failures += 1
                pbar.update(obj.size)
        return 1 if failures else 0


def build_mechanisms(names: List[str], provider: CloudProvider, verify_checksums: bool = True) -> List[CopyMechanism]:
    """Instantiate copy mechanisms by configured name, preserving order."""
    factories = {
        "gsutil": lambda: GsutilRsync(verify_checksums),
        "gcloud": GcloudRsync,
        "api": lambda: ApiMirror(provider, verify_checksums),
    }
    try:
        return [factories[name]() for name in names]
    except KeyError as e:
        raise ConfigurationError(f"Unknown transfer mechanism: {e.args[0]}")


class TransferSynchronizer:
    """
    Mirrors a remote prefix locally with primary/fallback mechanisms.

    Args:
        mechanisms: Copy mechanisms in order of preference
    """

    def __init__(self, mechanisms: List[CopyMechanism]):
        if not mechanisms:
            raise ValueError("at least one copy mechanism is required")
        self.mechanisms = mechanisms

    def sync(self, descriptor: TransferDescriptor) -> TransferResult:
        descriptor.local_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Download from %s → %s", descriptor.source_url, descriptor.local_dir)

        last_rc = 1
        for mechanism in self.mechanisms:
            if not mechanism.available():
                logger.info("%s not available; trying next mechanism", mechanism.name)
                continue
            try:
                last_rc = mechanism.run(descriptor)
            except OSError as e:
                logger.warning("%s could not run: %s", mechanism.name, e)
                last_rc = 1
            if last_rc == 0:
                return self._verify(descriptor, mechanism.name)
            logger.warning("%s failed (rc=%d); falling back", mechanism.name, last_rc)

        logger.error("Every transfer mechanism failed for %s", descriptor.source_url)
        return TransferResult(TransferOutcome.FAILED, return_code=last_rc)

    def _verify(self, descriptor: TransferDescriptor, mechanism: str) -> TransferResult:
        marker_present = (descriptor.local_dir / descriptor.marker).is_file()
        if not marker_present:
            logger.warning("WARNING: %s marker missing; export may be incomplete.", descriptor.marker)
            return TransferResult(TransferOutcome.COMPLETED_WITH_WARNING, mechanism, 0, False)
        return TransferResult(TransferOutcome.COMPLETED, mechanism, 0, True)


def archive_folder_name(name: str) -> str:
    """``sda1.tar.gz`` → ``sda1``."""
    base = PurePosixPath(name).name
    for suffix in ARCHIVE_SUFFIXES:
        if base.endswith(suffix):
            return base[: -len(suffix)]
    return base


def fetch_single(provider: CloudProvider, descriptor: TransferDescriptor, name: str) -> Path:
    """
    Download one object into ``<local_dir>/<archive name without suffix>/<name>``.

    An existing file of the right size is left alone.

    Raises:
        ConfigurationError: If the object does not exist
    """
    key = f"{descriptor.prefix}/{name}"
    obj = provider.get_object(descriptor.bucket, key)
    if obj is None:
        raise ConfigurationError(f"No such object: gs://{descriptor.bucket}/{key}")

    dest_dir = descriptor.local_dir / archive_folder_name(name)
    dest_dir.mkdir(parents=True, exist_ok=True)
    dest = dest_dir / PurePosixPath(name).name

    mirror = ApiMirror(provider, progress=False)
    if mirror.is_current(obj, dest):
        logger.info("Already present: %s", dest)
        return dest
    if not mirror.fetch_object(descriptor.bucket, obj, dest):
        raise TransferFailed(f"Download of gs://{descriptor.bucket}/{key} did not verify", step="download")
    return dest
