"""
Configuration schemas for snapexport using Pydantic.

Every tunable of an export session lives here; CLI flags only override
individual fields. Defaults reproduce a working setup on a fresh project.
"""

from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


DEFAULT_MACHINE_TYPES = [
    "c3-standard-8",
    "n2-standard-8",
    "e2-highcpu-8",
    "e2-standard-8",
    "e2-standard-4",
]


class GceConfig(BaseModel):
    """Compute Engine settings for the throwaway worker."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    project: Optional[str] = Field(
        default=None,
        description="Project ID (defaults to the project of the ambient Google credentials)"
    )
    machine_types: list[str] = Field(
        default_factory=lambda: list(DEFAULT_MACHINE_TYPES),
        description="Instance profiles to try in order; capacity rejections fall through to the next"
    )
    disk_type: str = Field(default="pd-ssd", description="Disk type for the disk cloned from the snapshot")
    image_family: str = Field(default="debian-12", description="Boot image family")
    image_project: str = Field(default="debian-cloud", description="Project hosting the boot image family")
    ssh_user: str = Field(default="snapexport", description="Login user injected through ssh-keys metadata")
    scopes: list[str] = Field(
        default_factory=lambda: ["https://www.googleapis.com/auth/cloud-platform"],
        description="OAuth scopes granted to the instance service account"
    )
    operation_timeout: float = Field(default=600.0, gt=0, description="Max seconds to wait for a zone operation")
    operation_poll_interval: float = Field(default=3.0, gt=0, description="Seconds between operation polls")

    @field_validator("machine_types")
    @classmethod
    def validate_machine_types(cls, v: list[str]) -> list[str]:
        v = [t.strip() for t in v if t.strip()]
        if not v:
            raise ValueError("machine_types must name at least one instance profile")
        return v


class DispatchConfig(BaseModel):
    """Remote payload dispatch settings."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    mode: Literal["archive", "files"] = Field(
        default="archive",
        description="archive: one tar.gz per partition; files: mirror individual regular files"
    )
    reachability_attempts: int = Field(default=24, ge=1, description="SSH connection attempts before giving up")
    reachability_interval: float = Field(default=5.0, ge=0, description="Seconds between SSH attempts")
    connect_timeout: float = Field(default=30.0, gt=0, description="Timeout of a single SSH connection attempt")
    remote_timeout: int = Field(default=21600, gt=0, description="Wall-clock limit for the remote payload (seconds)")


class TransferConfig(BaseModel):
    """Local download settings."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    mechanisms: list[Literal["gsutil", "gcloud", "api"]] = Field(
        default_factory=lambda: ["gsutil", "gcloud", "api"],
        description="Copy mechanisms in order of preference"
    )
    marker: str = Field(default="_OK", description="Completion marker object written last by the payload")
    verify_checksums: bool = Field(default=True, description="Compare MD5 checksums when mirroring")

    @field_validator("mechanisms")
    @classmethod
    def validate_mechanisms(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("at least one transfer mechanism is required")
        if len(set(v)) != len(v):
            raise ValueError(f"duplicate transfer mechanisms: {v}")
        return v


class StateConfig(BaseModel):
    """Where session records, aliases and default downloads live."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    exports_dir: Path = Field(default=Path("./exports"), description="Root for records and default downloads")


class ExportConfig(BaseModel):
    """Root configuration."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    gce: GceConfig = Field(default_factory=GceConfig)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    transfer: TransferConfig = Field(default_factory=TransferConfig)
    state: StateConfig = Field(default_factory=StateConfig)
