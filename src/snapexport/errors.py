"""
Exception hierarchy for snapexport.

Every fatal condition maps to a distinct process exit code so that wrapper
scripts can tell a bad invocation apart from a cloud-side failure.
"""

from pathlib import Path
from typing import Optional


class SnapexportError(Exception):
    """
    Base class for all snapexport failures.

    Args:
        message: Human-readable description
        step: Session step that failed
        record_path: Session record to resume or clean up from, once one exists
    """

    exit_code = 1

    def __init__(self, message: str, step: Optional[str] = None, record_path: Optional[Path] = None):
        super().__init__(message)
        self.step = step
        self.record_path = record_path


class ConfigurationError(SnapexportError):
    """Missing or invalid input. Raised before any cloud resource exists."""

    exit_code = 2


class NoAvailableZoneError(SnapexportError):
    """The requested region has no zone in the UP state."""

    exit_code = 3


class UnreachableError(SnapexportError):
    """The instance never accepted an SSH connection within the polling bound."""

    exit_code = 4


class ProvisioningError(SnapexportError):
    """A provisioning call failed for a reason other than capacity."""


class ProvisioningCapacityError(ProvisioningError):
    """One instance profile was rejected for quota or capacity reasons."""

    def __init__(self, machine_type: str, message: str):
        super().__init__(f"{machine_type}: {message}", step="create_instance")
        self.machine_type = machine_type


class ProvisioningExhausted(ProvisioningError):
    """Every instance profile in the fallback list was rejected for capacity."""

    exit_code = 5


class RemoteExecutionError(SnapexportError):
    """The remote payload failed, finished partially, or timed out."""

    exit_code = 6


class TransferFailed(SnapexportError):
    """No copy mechanism managed to mirror the remote prefix locally."""

    exit_code = 7


class SessionInterrupted(SnapexportError):
    """The process received SIGINT or SIGTERM while a session was running."""

    exit_code = 130


class CloudApiError(SnapexportError):
    """
    Error returned by a cloud API call.

    Args:
        status: HTTP status code (0 when the error came from a finished operation)
        reason: Provider error reason or operation error code
        message: Human-readable error message
    """

    CAPACITY_CODES = frozenset({
        "QUOTA_EXCEEDED",
        "quotaExceeded",
        "ZONE_RESOURCE_POOL_EXHAUSTED",
        "ZONE_RESOURCE_POOL_EXHAUSTED_WITH_DETAILS",
        "RESOURCE_EXHAUSTED",
    })

    def __init__(self, status: int, reason: str, message: str):
        super().__init__(f"{status} {reason}: {message}" if status else f"{reason}: {message}")
        self.status = status
        self.reason = reason
        self.message = message

    @property
    def not_found(self) -> bool:
        return self.status == 404 or self.reason in ("notFound", "RESOURCE_NOT_FOUND")

    @property
    def already_exists(self) -> bool:
        return self.status == 409 or self.reason in ("alreadyExists", "RESOURCE_ALREADY_EXISTS")

    @property
    def capacity_exhausted(self) -> bool:
        if self.reason in self.CAPACITY_CODES:
            return True
        return "quota" in self.message.lower()
