"""
Session index: friendly aliases for record files and output directories.

Aliases are symlinks inside the exports directory plus one line per session
in ``sessions.tsv``. They are conveniences only; the record file itself is
always the source of truth.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from snapexport.errors import ConfigurationError
from snapexport.naming import sanitize_alias
from .record import SessionRecord

logger = logging.getLogger(__name__)

SESSIONS_INDEX = "sessions.tsv"
RECORD_SUFFIX = ".state"


def _replace_symlink(link: Path, target: Path) -> None:
    if link.is_symlink() or link.exists():
        if not link.is_symlink():
            logger.warning("Not replacing %s: exists and is not a symlink", link)
            return
        link.unlink()
    os.symlink(os.path.abspath(target), link)


def link_alias(record: SessionRecord, exports_dir: Path) -> Optional[str]:
    """
    Create alias links for a session that was given a friendly name.

    Returns:
        The sanitized alias, or None when the session has no alias
    """
    alias = record.get("alias")
    if not alias:
        return None

    name = sanitize_alias(alias)
    exports_dir = Path(exports_dir)
    exports_dir.mkdir(parents=True, exist_ok=True)

    state_file = record.state_file
    try:
        _replace_symlink(exports_dir / f"{name}{RECORD_SUFFIX}", state_file)
        local_dir = Path(record["local_dir"])
        if local_dir.resolve().parent == exports_dir.resolve():
            _replace_symlink(exports_dir / name, local_dir)
    except OSError as e:
        logger.warning("Could not create alias links for %s: %s", name, e)

    with open(exports_dir / SESSIONS_INDEX, "a", encoding="utf-8") as f:
        f.write("\t".join([
            name,
            str(state_file),
            record.get("bucket", ""),
            record.get("remote_prefix", ""),
            record.get("timestamp", ""),
        ]) + "\n")
    return name


def resolve_record(target: str, exports_dir: Path) -> Path:
    """
    Turn a record path or a session alias into a record path.

    Raises:
        ConfigurationError: If neither form resolves to an existing file
    """
    candidate = Path(target)
    if candidate.is_file():
        return candidate

    by_alias = Path(exports_dir) / f"{sanitize_alias(target)}{RECORD_SUFFIX}"
    if by_alias.is_file():
        return by_alias

    raise ConfigurationError(
        f"Could not resolve session or record file: {target} "
        f"(checked {candidate} and {by_alias})"
    )


def forget_session(record: SessionRecord, exports_dir: Path) -> None:
    """Delete the record file, its SSH key and the alias links pointing at them."""
    state_file = record.state_file
    paths = [state_file]
    if record.get("ssh_key"):
        paths.append(Path(record["ssh_key"]))
    for path in paths:
        if path.exists():
            path.unlink()

    alias = record.get("alias")
    if alias:
        name = sanitize_alias(alias)
        for link in (Path(exports_dir) / f"{name}{RECORD_SUFFIX}", Path(exports_dir) / name):
            if link.is_symlink():
                link.unlink()
    logger.info("Deleted local session state %s", state_file)
