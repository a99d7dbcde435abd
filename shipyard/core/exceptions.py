"""Custom exceptions for Shipyard."""

from typing import Any


class ShipyardError(Exception):
    """Base exception for Shipyard."""

    status_code: int = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class BusyError(ShipyardError):
    """Another deployment already holds the exclusion lock."""

    status_code = 409

    def __init__(self, running_kind: str | None = None):
        details = {}
        if running_kind:
            details["running"] = running_kind
        super().__init__(
            "Deployment already in progress. Please wait or reset the deployment status.",
            details,
        )


class UnknownTargetError(ShipyardError):
    """Target name is not one of the configured deployment targets."""

    status_code = 404

    def __init__(self, target: str):
        super().__init__(f"Unknown deployment target: {target}", {"target": target})


class InvalidRequestError(ShipyardError):
    """Request cannot be acted on as given."""

    status_code = 400


class RemoteConnectionError(ShipyardError):
    """Remote session could not be established (auth, network or timeout)."""

    def __init__(self, host: str, reason: str):
        super().__init__(
            f"Connection to {host} failed: {reason}",
            {"host": host},
        )
        self.host = host
        self.reason = reason


class StageError(ShipyardError):
    """A pipeline stage failed."""

    def __init__(self, stage: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, {"stage": stage, **(details or {})})
        self.stage = stage


class RemoteCommandError(StageError):
    """A remote command exited with a non-zero status."""

    def __init__(self, stage: str, command: str, exit_code: int, stderr: str):
        super().__init__(
            stage,
            stderr.strip() or f"Command exited with status {exit_code}: {command}",
            {"command": command, "exit_code": exit_code},
        )
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr


class BuildError(StageError):
    """The local release build failed or timed out."""

    def __init__(self, message: str, output: str | None = None):
        details = {}
        if output:
            details["output"] = output
        super().__init__("building", message, details)


class TransferError(StageError):
    """A file could not be transferred to the remote host."""

    def __init__(self, local_path: str, remote_path: str, reason: str):
        super().__init__(
            "transferring",
            f"Transfer of {local_path} to {remote_path} failed: {reason}",
            {"local_path": local_path, "remote_path": remote_path},
        )


class ConfigValidationError(StageError):
    """Generated proxy configuration was rejected by the remote validator."""

    def __init__(self, output: str):
        super().__init__(
            "configuring_proxy",
            f"Nginx configuration error: {output.strip()}",
        )
        self.output = output


class PipelineCancelledError(StageError):
    """The attempt was abandoned by a reset between two stages."""

    def __init__(self, stage: str):
        super().__init__(stage, f"Deployment cancelled by reset before stage '{stage}'")


class HistoryRecordNotFoundError(ShipyardError):
    """History record does not exist."""

    status_code = 404

    def __init__(self, record_id: str):
        super().__init__(
            f"Deployment history entry not found: {record_id}",
            {"record_id": record_id},
        )


class HistoryRecordFinalizedError(ShipyardError):
    """History record already reached a terminal status."""

    status_code = 409

    def __init__(self, record_id: str, status: str):
        super().__init__(
            f"Deployment history entry {record_id} is already {status}",
            {"record_id": record_id, "status": status},
        )


class ProvisioningWarning(Exception):
    """Non-fatal provisioning failure surfaced to the operator as a warning."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)
