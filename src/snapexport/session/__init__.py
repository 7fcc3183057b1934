"""
Session state for export runs.

- record: SessionRecord, SessionStatus and the append-only StateRecorder
- planner: derives names/paths and writes the initial record
- store: alias links, the sessions index and record resolution
"""

from snapexport.session.record import SessionRecord, SessionStatus, StateRecorder, load_record
from snapexport.session.planner import plan_session
from snapexport.session.store import link_alias, resolve_record, forget_session

__all__ = [
    "SessionRecord",
    "SessionStatus",
    "StateRecorder",
    "load_record",
    "plan_session",
    "link_alias",
    "resolve_record",
    "forget_session",
]
