"""
Cloud provider abstractions for snapshot export.

This module provides:
- CloudProvider: compute + storage operations on one project (GceProvider)
- RemoteExecutor: running the payload on the worker (ParamikoExecutor)
"""

from snapexport.cloud.base import CloudProvider, DiskInfo, InstanceSpec, ObjectInfo, SnapshotInfo
from snapexport.cloud.gce import GceProvider
from snapexport.cloud.remote import (
    ExecResult,
    ParamikoExecutor,
    RemoteConnectError,
    RemoteExecutor,
    generate_session_key,
)

__all__ = [
    # Provider
    "CloudProvider",
    "GceProvider",
    "DiskInfo",
    "InstanceSpec",
    "ObjectInfo",
    "SnapshotInfo",
    # Remote execution
    "RemoteExecutor",
    "ParamikoExecutor",
    "RemoteConnectError",
    "ExecResult",
    "generate_session_key",
]
