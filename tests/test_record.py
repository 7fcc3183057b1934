"""Tests for the session record and its append-only persistence.

Verifies that:
1. Every append is replayable from disk in order
2. A crash mid-append (truncated last line) loses only that entry
3. Damage before the last line is refused
"""

import json

import pytest

from snapexport.errors import ConfigurationError
from snapexport.session.record import SessionRecord, SessionStatus, StateRecorder, load_record


class TestSessionRecord:
    """Test the in-memory record."""

    def test_fields_are_strings(self):
        """Test that values are stored as strings, booleans as 1/0."""
        record = SessionRecord({"keep_remote": True, "skip_local": False, "size": 10})
        assert record["keep_remote"] == "1"
        assert record["skip_local"] == "0"
        assert record["size"] == "10"
        assert record.keep_remote is True
        assert record.skip_local is False

    def test_status_history(self):
        """Test that every status is remembered in order."""
        record = SessionRecord({"status": SessionStatus.PLANNED})
        record.update({"status": SessionStatus.CONTAINER_READY})
        assert record.status == SessionStatus.CONTAINER_READY
        assert record.reached(SessionStatus.PLANNED)
        assert not record.reached(SessionStatus.ATTACHED)
        assert not record.failed

    def test_failed_is_sticky(self):
        """Test that a failure status keeps the record failed."""
        record = SessionRecord({"status": "remote_partial"})
        record.update({"status": "compute_released"})
        assert record.failed

    def test_empty_values_absent(self):
        """Test that empty fields read as missing."""
        record = SessionRecord({"zone": ""})
        assert "zone" not in record
        assert record.get("zone", "<none>") == "<none>"


class TestStateRecorder:
    """Test durable appends."""

    def test_create_and_append_roundtrip(self, tmp_path):
        """Test that appends replay into the same record."""
        path = tmp_path / "s.state"
        recorder = StateRecorder(path)
        recorder.create({"bucket": "b", "status": SessionStatus.PLANNED})
        recorder.append(zone="us-central1-a")
        recorder.append(status=SessionStatus.CONTAINER_READY)

        loaded = load_record(path)
        assert loaded.fields == recorder.record.fields
        assert loaded.history == [SessionStatus.PLANNED, SessionStatus.CONTAINER_READY]
        assert len(path.read_text().splitlines()) == 3

    def test_create_refuses_existing(self, tmp_path):
        """Test that a record is never overwritten."""
        path = tmp_path / "s.state"
        StateRecorder(path).create({"status": "planned"})
        with pytest.raises(ConfigurationError, match="already exists"):
            StateRecorder(path).create({"status": "planned"})

    def test_reopen_and_continue(self, tmp_path):
        """Test that a reopened recorder keeps appending to the same file."""
        path = tmp_path / "s.state"
        StateRecorder(path).create({"status": "planned"})
        reopened = StateRecorder(path, load_record(path))
        reopened.append(status="container_ready")
        assert load_record(path).status == SessionStatus.CONTAINER_READY

    def test_append_after_torn_entry(self, tmp_path):
        """Test that resuming after a crash mid-append keeps the record loadable."""
        path = tmp_path / "s.state"
        StateRecorder(path).create({"bucket": "b", "status": "planned"})
        with open(path, "a", encoding="utf-8") as f:
            f.write('{"status": "contai')

        recorder = StateRecorder(path, load_record(path))
        recorder.append(status="failed", error="boom")
        recorder.append(status="compute_released")

        record = load_record(path)
        assert record.status == SessionStatus.COMPUTE_RELEASED
        assert record["error"] == "boom"
        assert record.history == [SessionStatus.PLANNED, SessionStatus.FAILED, SessionStatus.COMPUTE_RELEASED]
        assert len(path.read_text().splitlines()) == 3


class TestLoadRecord:
    """Test crash recovery when replaying a record."""

    def test_truncated_last_line_skipped(self, tmp_path, caplog):
        """Test that a half-written last entry is ignored with a warning."""
        path = tmp_path / "s.state"
        path.write_text(
            json.dumps({"bucket": "b", "status": "planned"}) + "\n"
            + json.dumps({"zone": "us-central1-a"}) + "\n"
            + '{"status": "contai'
        )
        record = load_record(path)
        assert record["zone"] == "us-central1-a"
        assert record.status == SessionStatus.PLANNED
        assert "incomplete last entry" in caplog.text

    def test_corrupt_middle_line_rejected(self, tmp_path):
        """Test that damage before the last line is an error."""
        path = tmp_path / "s.state"
        path.write_text('{"bucket": "b"}\nnot json\n{"zone": "z"}\n')
        with pytest.raises(ConfigurationError, match="line 2"):
            load_record(path)

    def test_missing_file(self, tmp_path):
        """Test that a missing record is a configuration error."""
        with pytest.raises(ConfigurationError, match="not found"):
            load_record(tmp_path / "absent.state")
