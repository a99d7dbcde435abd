"""Unit tests for the deployment exclusion lock."""

import pytest

from shipyard.core.exceptions import BusyError, PipelineCancelledError
from shipyard.core.lock import DeploymentLock
from shipyard.models.deployment import DeploymentKind


class TestDeploymentLock:
    """Tests for DeploymentLock."""

    @pytest.fixture
    def lock(self) -> DeploymentLock:
        return DeploymentLock()

    def test_acquire_and_release(self, lock: DeploymentLock):
        lease = lock.try_acquire(DeploymentKind.DEPLOYMENT)

        assert lock.in_progress
        assert lock.current is lease
        assert lock.release(lease) is True
        assert not lock.in_progress

    def test_second_acquire_is_busy(self, lock: DeploymentLock):
        lease = lock.try_acquire(DeploymentKind.DEPLOYMENT)

        with pytest.raises(BusyError) as exc_info:
            lock.try_acquire(DeploymentKind.PROXY_SETUP)

        assert exc_info.value.status_code == 409
        assert exc_info.value.details == {"running": "deployment"}
        assert lock.current is lease

    def test_reset_cancels_holder(self, lock: DeploymentLock):
        lease = lock.try_acquire(DeploymentKind.DEPLOYMENT)

        assert lock.reset() is lease
        assert not lock.in_progress
        assert lease.token.cancelled
        with pytest.raises(PipelineCancelledError):
            lease.token.raise_if_cancelled("restarting")

    def test_reset_when_free(self, lock: DeploymentLock):
        assert lock.reset() is None

    def test_stale_lease_cannot_release_newer_holder(self, lock: DeploymentLock):
        stale = lock.try_acquire(DeploymentKind.DEPLOYMENT)
        lock.reset()
        fresh = lock.try_acquire(DeploymentKind.DEPLOYMENT)

        assert lock.release(stale) is False
        assert lock.current is fresh
