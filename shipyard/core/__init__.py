"""Core functionality for Shipyard."""

from shipyard.core.exceptions import (
    BuildError,
    BusyError,
    ConfigValidationError,
    HistoryRecordFinalizedError,
    HistoryRecordNotFoundError,
    InvalidRequestError,
    PipelineCancelledError,
    ProvisioningWarning,
    RemoteCommandError,
    RemoteConnectionError,
    ShipyardError,
    StageError,
    TransferError,
    UnknownTargetError,
)
from shipyard.core.events import EventKind, ProgressEvent, ProgressStream
from shipyard.core.history import (
    DeploymentHistoryStore,
    InMemoryHistoryStore,
    SqliteHistoryStore,
    get_history_store,
)
from shipyard.core.lock import DeploymentLock, Lease, get_deployment_lock

__all__ = [
    "BuildError",
    "BusyError",
    "ConfigValidationError",
    "HistoryRecordFinalizedError",
    "HistoryRecordNotFoundError",
    "InvalidRequestError",
    "PipelineCancelledError",
    "ProvisioningWarning",
    "RemoteCommandError",
    "RemoteConnectionError",
    "ShipyardError",
    "StageError",
    "TransferError",
    "UnknownTargetError",
    "EventKind",
    "ProgressEvent",
    "ProgressStream",
    "DeploymentHistoryStore",
    "InMemoryHistoryStore",
    "SqliteHistoryStore",
    "get_history_store",
    "DeploymentLock",
    "Lease",
    "get_deployment_lock",
]
