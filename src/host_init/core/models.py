from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator

from host_init.core.enums import BackoffStrategy, DistroFamily, StepStatus


USERNAME_REGEX = re.compile(r"^[a-z_][a-z0-9_-]*[$]?$")
LOG_SEPARATOR = "-" * 40


class RetryPolicy(BaseModel):
    max_retries: int = Field(default=3, ge=0, le=20)
    backoff: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    initial_wait_seconds: float = Field(default=5, ge=0)
    increment_seconds: float = Field(default=5, ge=0)


class HostDefaults(BaseModel):
    max_retries: int = Field(default=3, ge=0, le=20)
    default_timezone: str = Field(default="UTC", min_length=1)
    ssh_port_min: int = Field(default=1024, ge=1, le=65535)
    ssh_port_max: int = Field(default=65535, ge=1, le=65535)
    backup_retention_days: int = Field(default=30, ge=1)
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized == "WARN":
            normalized = "WARNING"
        if normalized not in {"DEBUG", "INFO", "WARNING", "ERROR"}:
            raise ValueError(f"Unsupported log level '{value}'.")
        return normalized

    @model_validator(mode="after")
    def validate_port_bounds(self) -> "HostDefaults":
        if self.ssh_port_min > self.ssh_port_max:
            raise ValueError("ssh_port_min must not exceed ssh_port_max.")
        return self


class HostFacts(BaseModel):
    model_config = ConfigDict(frozen=True)

    os_name: str = Field(min_length=1)
    os_id: str = ""
    family: DistroFamily = DistroFamily.OTHER
    version_id: str = ""
    version_codename: str = ""
    architecture: str = "amd64"

    @property
    def major_version(self) -> int | None:
        head = self.version_id.split(".", 1)[0]
        return int(head) if head.isdigit() else None


class ProvisionChoices(BaseModel):
    model_config = ConfigDict(frozen=True)

    timezone_mode: str = Field(default="keep", pattern=r"^(keep|detected|manual)$")
    timezone: str | None = None
    mirror: str | None = None
    remove_snap: bool = False
    create_user: bool = False
    username: str | None = None
    password: SecretStr | None = None
    ssh_public_key: str | None = None
    ssh_port: int | None = Field(default=None, ge=1, le=65535)
    install_docker: bool = False
    reinstall_docker: bool = False
    install_git: bool = False

    @field_validator("username")
    @classmethod
    def validate_username(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        if not USERNAME_REGEX.match(value):
            raise ValueError("Invalid username format. Use only lowercase letters, numbers, - and _.")
        return value

    @model_validator(mode="after")
    def validate_user_dependencies(self) -> "ProvisionChoices":
        if self.create_user and not self.username:
            raise ValueError("A username is required to create a user.")
        if self.ssh_public_key and not self.create_user:
            raise ValueError("An SSH public key can only be installed for a newly created user.")
        if self.timezone_mode == "manual" and not self.timezone:
            raise ValueError("Manual timezone mode requires a timezone name.")
        return self


class HostContext(BaseModel):
    """Immutable view of the host and the operator's choices handed to every step."""

    model_config = ConfigDict(frozen=True)

    facts: HostFacts
    choices: ProvisionChoices = Field(default_factory=ProvisionChoices)
    defaults: HostDefaults = Field(default_factory=HostDefaults)
    derived: dict[str, Any] = Field(default_factory=dict)

    def with_updates(self, updates: Mapping[str, Any]) -> "HostContext":
        if not updates:
            return self
        return self.model_copy(update={"derived": {**self.derived, **updates}})


StepOperation = Callable[[HostContext], Mapping[str, Any] | None]


@dataclass(slots=True, frozen=True)
class Step:
    name: str
    operation: StepOperation
    critical: bool = False
    description: str = ""


@dataclass(slots=True, frozen=True)
class UnitOfWork:
    """A re-invocable action captured before it runs, together with its command text."""

    command: str
    invoke: Callable[[], Any]


class ErrorRecord(BaseModel):
    step_name: str = Field(min_length=1)
    timestamp: datetime = Field(default_factory=datetime.now)
    error_code: int
    message: str = ""
    attempted_command: str = ""

    def to_log_block(self) -> str:
        return (
            f"[{self.timestamp:%Y-%m-%d %H:%M:%S}] ERROR in {self.step_name} (Code: {self.error_code})\n"
            f"Message: {self.message or 'Unknown error'}\n"
            f"Command: {self.attempted_command}\n"
            f"{LOG_SEPARATOR}\n"
        )


class StepExecutionResult(BaseModel):
    step_name: str
    status: StepStatus
    error_code: int | None = None
    message: str = ""
    retries: int = 0
    updates: dict[str, Any] = Field(default_factory=dict)


@dataclass(slots=True)
class RunSummary:
    failed_steps: list[str]
    log_file: str
    log_persisted: bool
    halted_early: bool
    results: list[StepExecutionResult] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return 1 if self.failed_steps else 0

    @property
    def succeeded(self) -> bool:
        return not self.failed_steps

    def to_dict(self) -> dict[str, object]:
        data = asdict(self)
        data["results"] = [result.model_dump(mode="json") for result in self.results]
        data["exit_code"] = self.exit_code
        return data


@dataclass(slots=True)
class HostPaths:
    sources_list: Path = Path("/etc/apt/sources.list")
    apt_backup_dir: Path = Path("/etc/apt/backups")
    apt_keyrings_dir: Path = Path("/etc/apt/keyrings")
    docker_sources_list: Path = Path("/etc/apt/sources.list.d/docker.list")
    sshd_config: Path = Path("/etc/ssh/sshd_config")
    docker_daemon_config: Path = Path("/etc/docker/daemon.json")
    home_root: Path = Path("/home")
    os_release: Path = Path("/etc/os-release")
    pam_common_password: Path = Path("/etc/pam.d/common-password")
    snap_dirs: tuple[Path, ...] = (Path("/snap"), Path("/var/snap"), Path("/var/lib/snapd"), Path("/root/snap"))
