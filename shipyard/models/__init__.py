"""Data models for Shipyard."""

from shipyard.models.deployment import (
    CommandOutput,
    ConnectionTestRequest,
    ConnectionTestResponse,
    DeploymentHistoryRecord,
    DeploymentKind,
    DeploymentStatus,
    DeploymentStatusResponse,
    DeploymentTarget,
    DeployRequest,
    ErrorBody,
    ErrorResponse,
    HistoryPatch,
    PipelineState,
    ProxySetupRequest,
    RemoteCredential,
    ResetResponse,
    TargetListResponse,
)

__all__ = [
    # Targets and pipeline state
    "DeploymentTarget",
    "PipelineState",
    # History
    "DeploymentHistoryRecord",
    "DeploymentKind",
    "DeploymentStatus",
    "HistoryPatch",
    # Remote
    "CommandOutput",
    "RemoteCredential",
    # API schemas
    "ConnectionTestRequest",
    "ConnectionTestResponse",
    "DeploymentStatusResponse",
    "DeployRequest",
    "ErrorBody",
    "ErrorResponse",
    "ProxySetupRequest",
    "ResetResponse",
    "TargetListResponse",
]
