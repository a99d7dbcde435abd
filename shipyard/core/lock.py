"""Process-wide deployment exclusion lock.

At most one pipeline (deployment or proxy setup) may run at a time. The lock
is a single slot holding a ``Lease``; whoever holds the lease owns the right
to mutate the remote host until it releases it. Acquisition never waits: a
second caller gets ``BusyError`` immediately.

The check-and-set in ``try_acquire`` contains no ``await``, so it is atomic
with respect to other tasks on the event loop.
"""

from dataclasses import dataclass, field
from datetime import datetime
from uuid import uuid4

from shipyard.core.exceptions import BusyError, PipelineCancelledError
from shipyard.models.deployment import DeploymentKind, PipelineState
from shipyard.utils.logging import get_logger

logger = get_logger(__name__)


class CancellationToken:
    """Cooperative cancellation flag checked by the pipeline between stages."""

    def __init__(self):
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def raise_if_cancelled(self, stage: str) -> None:
        if self._cancelled:
            raise PipelineCancelledError(stage)


@dataclass
class Lease:
    """Exclusive right to run one pipeline attempt."""

    kind: DeploymentKind
    id: str = field(default_factory=lambda: uuid4().hex)
    acquired_at: datetime = field(default_factory=datetime.utcnow)
    token: CancellationToken = field(default_factory=CancellationToken)
    state: PipelineState = PipelineState.IDLE


class DeploymentLock:
    """Single-slot semaphore guarding the deployment pipeline."""

    def __init__(self):
        self._lease: Lease | None = None

    @property
    def in_progress(self) -> bool:
        return self._lease is not None

    @property
    def current(self) -> Lease | None:
        return self._lease

    def try_acquire(self, kind: DeploymentKind) -> Lease:
        """Take the lock or fail with ``BusyError`` without side effects."""
        if self._lease is not None:
            raise BusyError(self._lease.kind.value)
        self._lease = Lease(kind=kind)
        logger.info("lock.acquired", lease_id=self._lease.id, kind=kind.value)
        return self._lease

    def release(self, lease: Lease) -> bool:
        """Release the lock if ``lease`` still holds it.

        A lease that was already reset away must not free a lock that a newer
        attempt has since acquired.
        """
        if self._lease is not lease:
            logger.info("lock.release_skipped", lease_id=lease.id)
            return False
        self._lease = None
        logger.info("lock.released", lease_id=lease.id)
        return True

    def reset(self) -> Lease | None:
        """Forcibly clear the lock and signal the holder to stop between stages.

        In-flight remote commands are not interrupted; the abandoned attempt
        notices the cancellation before starting its next stage.
        """
        lease = self._lease
        self._lease = None
        if lease is not None:
            lease.token.cancel()
            logger.warning(
                "lock.reset",
                lease_id=lease.id,
                kind=lease.kind.value,
                state=lease.state.value,
            )
        return lease


# Singleton instance
_deployment_lock: DeploymentLock | None = None


def get_deployment_lock() -> DeploymentLock:
    """Get the deployment lock singleton."""
    global _deployment_lock
    if _deployment_lock is None:
        _deployment_lock = DeploymentLock()
    return _deployment_lock
