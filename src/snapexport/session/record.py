"""
Session record: the durable description of one export session.

The record is a flat mapping of string fields. It is persisted as JSON lines
by :class:`StateRecorder`, one complete object per line, so a crash can at
worst lose the line being written and never corrupt earlier entries.
"""

import json
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from snapexport.errors import ConfigurationError

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    """Lifecycle steps appended to the record as they complete."""

    PLANNED = "planned"
    CONTAINER_READY = "container_ready"
    PERMISSION_GRANTED = "permission_granted"
    DEVICE_READY = "device_ready"
    INSTANCE_READY = "instance_ready"
    ATTACHED = "attached"
    REMOTE_COMPLETED = "remote_completed"
    REMOTE_PARTIAL = "remote_partial"
    REMOTE_TIMED_OUT = "remote_timed_out"
    REMOTE_FAILED = "remote_failed"
    COMPUTE_RELEASED = "compute_released"
    DOWNLOADED = "downloaded"
    DOWNLOAD_WARNING = "download_warning"
    DOWNLOAD_FAILED = "download_failed"
    DOWNLOAD_SKIPPED = "download_skipped"
    STORAGE_RELEASED = "storage_released"
    FAILED = "failed"


FAILURE_STATUSES = frozenset({
    SessionStatus.REMOTE_PARTIAL,
    SessionStatus.REMOTE_TIMED_OUT,
    SessionStatus.REMOTE_FAILED,
    SessionStatus.DOWNLOAD_WARNING,
    SessionStatus.DOWNLOAD_FAILED,
    SessionStatus.FAILED,
})


def _truthy(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes")


class SessionRecord:
    """
    In-memory view of a session record.

    Fields are always strings; ``history`` keeps every status in the order it
    was appended so callers can ask whether a step was ever reached.
    """

    def __init__(self, fields: Optional[Dict[str, str]] = None, path: Optional[Path] = None):
        self.fields: Dict[str, str] = {}
        self.history: List[SessionStatus] = []
        self.path = path
        if fields:
            self.update(fields)

    def update(self, fields: Dict[str, object]) -> None:
        for key, value in fields.items():
            text = _stringify(value)
            self.fields[key] = text
            if key == "status":
                self.history.append(SessionStatus(text))

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self.fields.get(key)
        return value if value else default

    def __getitem__(self, key: str) -> str:
        return self.fields[key]

    def __contains__(self, key: str) -> bool:
        return bool(self.fields.get(key))

    @property
    def status(self) -> Optional[SessionStatus]:
        return self.history[-1] if self.history else None

    def reached(self, status: SessionStatus) -> bool:
        return status in self.history

    @property
    def failed(self) -> bool:
        """True once any failure status has been recorded."""
        return any(s in FAILURE_STATUSES for s in self.history)

    @property
    def keep_remote(self) -> bool:
        return _truthy(self.get("keep_remote"))

    @property
    def skip_local(self) -> bool:
        return _truthy(self.get("skip_local"))

    @property
    def state_file(self) -> Optional[Path]:
        value = self.get("state_file")
        return Path(value) if value else self.path

    def describe(self) -> str:
        return (
            f"snapshot={self.get('snapshot', '?')} zone={self.get('zone', '<none>')} "
            f"instance={self.get('instance', '<none>')} disk={self.get('disk', '<none>')} "
            f"bucket={self.get('bucket', '<none>')} prefix={self.get('remote_prefix', '<none>')}"
        )


def _stringify(value: object) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, Enum):
        return str(value.value)
    if value is None:
        return ""
    return str(value)


class StateRecorder:
    """
    Append-only, fsync'd writer for a session record file.

    Args:
        path: Record file location
        record: In-memory record kept in sync with every append
    """

    def __init__(self, path: Path, record: Optional[SessionRecord] = None):
        self.path = Path(path)
        self.record = record if record is not None else SessionRecord(path=self.path)
        self.record.path = self.path

    def create(self, fields: Dict[str, object]) -> SessionRecord:
        """Write the first entry. Refuses to overwrite an existing record."""
        if self.path.exists():
            raise ConfigurationError(f"Session record already exists: {self.path}")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._write(fields, mode="x")
        return self.record

    def append(self, **fields: object) -> SessionRecord:
        """Durably append one entry, then update the in-memory record."""
        self._drop_torn_tail()
        self._write(fields, mode="a")
        return self.record

    def _write(self, fields: Dict[str, object], mode: str) -> None:
        entry = {key: _stringify(value) for key, value in fields.items()}
        line = json.dumps(entry, sort_keys=False) + "\n"
        with open(self.path, mode, encoding="utf-8") as f:
            f.write(line)
            f.flush()
            os.fsync(f.fileno())
        self.record.update(entry)

    def _drop_torn_tail(self) -> None:
        # Complete entries end with a newline; bytes after the last one are a
        # crash mid-append and would run into the next entry
        if not self.path.is_file() or self.path.stat().st_size == 0:
            return
        with open(self.path, "rb+") as f:
            content = f.read()
            if content.endswith(b"\n"):
                return
            logger.warning("Dropping incomplete last entry in %s before appending", self.path)
            f.truncate(content.rfind(b"\n") + 1)
            f.flush()
            os.fsync(f.fileno())


def load_record(path: Path) -> SessionRecord:
    """
    Replay a record file.

    A truncated or unparsable *last* line is what a crash mid-append leaves
    behind and is skipped with a warning. Damage anywhere else is an error.

    Raises:
        ConfigurationError: If the file is missing or corrupt before its last line
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Session record not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        lines = [line for line in f.read().split("\n") if line.strip()]

    record = SessionRecord(path=path)
    for index, line in enumerate(lines):
        try:
            entry = json.loads(line)
            if not isinstance(entry, dict):
                raise ValueError(f"expected an object, got {type(entry).__name__}")
            record.update(entry)
        except ValueError as e:
            if index == len(lines) - 1:
                logger.warning("Ignoring incomplete last entry in %s: %s", path, e)
                break
            raise ConfigurationError(f"Corrupt session record {path} (line {index + 1}): {e}")
    return record
