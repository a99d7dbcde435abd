"""Deployment-related data models."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DeploymentKind(str, Enum):
    """What a history record describes."""

    DEPLOYMENT = "deployment"
    PROXY_SETUP = "proxy-setup"


class DeploymentStatus(str, Enum):
    """History record status."""

    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class PipelineState(str, Enum):
    """States of one pipeline attempt, in execution order."""

    IDLE = "idle"
    BUILDING = "building"
    PACKAGING = "packaging"
    CONNECTING = "connecting"
    TRANSFERRING = "transferring"
    INSTALLING = "installing"
    CONFIGURING_PROXY = "configuring_proxy"
    PROVISIONING_CERTIFICATE = "provisioning_certificate"
    RESTARTING = "restarting"
    HEALTH_CHECKING = "health_checking"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineState.SUCCEEDED, PipelineState.FAILED)


class DeploymentTarget(BaseModel):
    """A statically configured place a release can be deployed to."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, pattern=r"^[a-z0-9-]+$")
    domain: str = Field(..., min_length=1)
    is_production: bool = False
    host: str = ""
    username: str = "root"
    deploy_path: str = "/var/www/app"


class DeploymentHistoryRecord(CamelModel):
    """Outcome summary of one deployment or proxy-setup attempt."""

    id: UUID = Field(default_factory=uuid4)
    kind: DeploymentKind
    status: DeploymentStatus = DeploymentStatus.RUNNING
    target: str | None = None
    host: str | None = None
    domain: str | None = None
    start_time: datetime = Field(default_factory=datetime.utcnow)
    end_time: datetime | None = None
    duration: int | None = None  # seconds
    error: str | None = None


class HistoryPatch(BaseModel):
    """Fields a terminal update may set on a history record."""

    status: DeploymentStatus
    end_time: datetime | None = None
    duration: int | None = None
    error: str | None = None

    @classmethod
    def finished(
        cls,
        record: DeploymentHistoryRecord,
        status: DeploymentStatus,
        error: str | None = None,
    ) -> "HistoryPatch":
        """Build the terminal patch for a record, computing its duration."""
        now = datetime.utcnow()
        return cls(
            status=status,
            end_time=now,
            duration=int((now - record.start_time).total_seconds()),
            error=error,
        )


class DeployRequest(BaseModel):
    """Request body for starting a deployment."""

    target: str = Field(..., min_length=1)
    host: str | None = None
    username: str | None = None


class ProxySetupRequest(BaseModel):
    """Request body for one-time reverse proxy and certificate bootstrap."""

    host: str = Field(..., min_length=1)
    username: str = Field(..., min_length=1)
    domain: str = Field(..., min_length=1, pattern=r"^[A-Za-z0-9.-]+$")


class ConnectionTestRequest(BaseModel):
    """Request body for a remote connection test."""

    host: str = Field(..., min_length=1)
    username: str = Field(..., min_length=1)


class ConnectionTestResponse(BaseModel):
    """Result of a remote connection test."""

    success: bool
    message: str


class DeploymentStatusResponse(CamelModel):
    """Whether a pipeline currently holds the exclusion lock."""

    in_progress: bool
    kind: DeploymentKind | None = None
    state: PipelineState | None = None


class ResetResponse(CamelModel):
    """Response for a deployment status reset."""

    message: str = "Deployment status reset"
    in_progress: bool = False


class ErrorBody(BaseModel):
    """Error payload shared by all error responses."""

    code: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Envelope of every error response."""

    error: ErrorBody


class TargetListResponse(CamelModel):
    """Enumerated deployment targets."""

    targets: list[DeploymentTarget]


class CommandOutput(BaseModel):
    """Exit status and captured output of one remote command."""

    command: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class RemoteCredential(BaseModel):
    """Authentication material for one remote session.

    Exactly one of ``password`` or ``private_key`` must be set.
    """

    host: str = Field(..., min_length=1)
    username: str = Field(..., min_length=1)
    port: int = 22
    password: str | None = Field(default=None, repr=False)
    private_key: str | None = Field(default=None, repr=False)
    timeout: int = 30

    @model_validator(mode="after")
    def _exactly_one_secret(self) -> "RemoteCredential":
        if bool(self.password) == bool(self.private_key):
            raise ValueError("Exactly one of password or private_key must be provided")
        return self

    @property
    def auth_method(self) -> str:
        return "password" if self.password else "key"
