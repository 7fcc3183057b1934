"""
Session planning: validate inputs, derive every resource name and path, and
write the initial record before any cloud call is made.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from snapexport.errors import ConfigurationError
from snapexport.naming import compose_name, random_suffix, sanitize, sanitize_alias
from .record import SessionStatus, StateRecorder
from .store import RECORD_SUFFIX

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


def plan_session(
    snapshot: str,
    region: str,
    project: str,
    exports_dir: Path,
    alias: Optional[str] = None,
    out_dir: Optional[Path] = None,
    keep_remote: bool = False,
    skip_local: bool = False,
    now: Optional[datetime] = None,
    suffix: Optional[str] = None,
) -> StateRecorder:
    """
    Plan a new export session and persist its initial record.

    Args:
        snapshot: Source snapshot name
        region: Target region (e.g. ``us-central1``)
        project: Project ID
        exports_dir: Root for records and default downloads
        alias: Optional friendly session name
        out_dir: Optional parent directory for the local download
        keep_remote: Never delete the bucket automatically
        skip_local: Do not download locally
        now: Clock override (tests)
        suffix: Disambiguation suffix override (tests)

    Returns:
        Recorder positioned on the freshly written record

    Raises:
        ConfigurationError: If a required input is empty or names collapse to nothing
    """
    snapshot = (snapshot or "").strip()
    region = (region or "").strip()
    project = (project or "").strip()
    if not snapshot:
        raise ConfigurationError("Snapshot name is required", step="plan")
    if not region:
        raise ConfigurationError("Region is required", step="plan")
    if not project:
        raise ConfigurationError(
            "No project configured; set gce.project or run 'gcloud config set project <ID>'",
            step="plan",
        )

    snap_safe = sanitize(snapshot)
    if not snap_safe:
        raise ConfigurationError(f"Snapshot name has no usable characters: {snapshot!r}", step="plan")

    timestamp = (now or datetime.now()).strftime(TIMESTAMP_FORMAT)
    suffix = suffix or random_suffix()

    bucket = compose_name("snapfiles", snap_safe, project, timestamp, suffix=suffix)
    disk = compose_name("tmpdisk", snap_safe, suffix=suffix)
    instance = compose_name("tmpvm", snap_safe, suffix=suffix)
    remote_prefix = compose_name("files", snap_safe, timestamp, suffix=suffix)

    exports_dir = Path(exports_dir)
    if out_dir is not None:
        base_name = sanitize_alias(alias or snapshot) or snap_safe
        local_dir = Path(out_dir) / base_name
        state_file = local_dir.with_name(local_dir.name + RECORD_SUFFIX)
    else:
        local_dir = exports_dir / remote_prefix
        state_file = exports_dir / f"{remote_prefix}{RECORD_SUFFIX}"

    local_dir.mkdir(parents=True, exist_ok=True)
    state_file.parent.mkdir(parents=True, exist_ok=True)

    recorder = StateRecorder(state_file)
    recorder.create({
        "project": project,
        "region": region,
        "snapshot": snapshot,
        "timestamp": timestamp,
        "suffix": suffix,
        "bucket": bucket,
        "disk": disk,
        "instance": instance,
        "remote_prefix": remote_prefix,
        "local_dir": local_dir,
        "state_file": state_file,
        "keep_remote": keep_remote,
        "skip_local": skip_local,
        "alias": alias or "",
        "status": SessionStatus.PLANNED,
    })
    logger.info("Session record: %s", state_file)
    return recorder
