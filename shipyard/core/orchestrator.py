"""Deployment Orchestrator.

Runs one pipeline at a time against a remote host and streams its progress.

Deployment pipeline:
    building -> packaging -> connecting -> transferring -> installing ->
    configuring_proxy -> provisioning_certificate -> restarting ->
    health_checking -> succeeded | failed

Proxy-setup pipeline:
    connecting -> configuring_proxy -> provisioning_certificate ->
    succeeded | failed

Stages run strictly in order; the first failure ends the attempt and no
later stage runs. Remote changes already made are left in place; the next
successful attempt overwrites them.
"""

import asyncio
from dataclasses import dataclass

from shipyard.config import Settings, settings as default_settings
from shipyard.core.events import ProgressStream
from shipyard.core.exceptions import (
    InvalidRequestError,
    ShipyardError,
    UnknownTargetError,
)
from shipyard.core.history import DeploymentHistoryStore, get_history_store
from shipyard.core.lock import DeploymentLock, get_deployment_lock
from shipyard.core.stages import PipelineContext, PipelineStages, Stage
from shipyard.models.deployment import (
    ConnectionTestResponse,
    DeploymentHistoryRecord,
    DeploymentKind,
    DeploymentStatus,
    DeploymentTarget,
    HistoryPatch,
    PipelineState,
)
from shipyard.remote.credentials import credential_from_settings
from shipyard.utils.logging import get_logger

# Final percentage of every successful attempt
COMPLETE = 100


@dataclass
class DeploymentAttempt:
    """Handle on a started pipeline."""

    record: DeploymentHistoryRecord
    stream: ProgressStream
    task: asyncio.Task

    async def wait(self) -> None:
        """Wait for the pipeline to reach a terminal state."""
        await asyncio.shield(self.task)


class DeploymentOrchestrator:
    """Sequences pipeline stages under the process-wide exclusion lock."""

    def __init__(
        self,
        lock: DeploymentLock | None = None,
        history: DeploymentHistoryStore | None = None,
        stages: PipelineStages | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or default_settings
        self.lock = lock or get_deployment_lock()
        self.history = history or get_history_store()
        self.stages = stages or PipelineStages(self.settings)
        self.logger = get_logger("orchestrator")
        self._tasks: set[asyncio.Task] = set()

    @property
    def in_progress(self) -> bool:
        return self.lock.in_progress

    @property
    def current_state(self) -> PipelineState | None:
        lease = self.lock.current
        return lease.state if lease else None

    async def deploy(
        self,
        target_name: str,
        host: str | None = None,
        username: str | None = None,
    ) -> DeploymentAttempt:
        """Start a deployment of the current source tree to a target.

        Returns as soon as the pipeline is scheduled; progress arrives on the
        attempt's stream.

        Raises:
            UnknownTargetError: If the target is not configured
            BusyError: If another pipeline is running
        """
        target = self.settings.find_target(target_name)
        if target is None:
            raise UnknownTargetError(target_name)

        host = host or target.host
        if not host:
            raise InvalidRequestError(
                f"No host configured for target '{target.name}'",
                {"target": target.name},
            )

        return await self._start(
            DeploymentKind.DEPLOYMENT,
            self.stages.deployment_pipeline(),
            host=host,
            username=username or target.username,
            domain=target.domain,
            target=target,
        )

    async def setup_proxy(self, host: str, username: str, domain: str) -> DeploymentAttempt:
        """Start a one-time reverse proxy and certificate bootstrap.

        Raises:
            BusyError: If another pipeline is running
        """
        return await self._start(
            DeploymentKind.PROXY_SETUP,
            self.stages.proxy_setup_pipeline(),
            host=host,
            username=username,
            domain=domain,
        )

    def reset(self) -> bool:
        """Clear the exclusion lock so a new attempt can start.

        The abandoned attempt is signalled to stop before its next stage;
        commands already running on the remote host are not interrupted.
        Returns whether an attempt was holding the lock.
        """
        return self.lock.reset() is not None

    async def test_connection(self, host: str, username: str) -> ConnectionTestResponse:
        """Open a session, run ``whoami`` and close it. Does not take the lock."""
        try:
            credential = credential_from_settings(host, username, self.settings)
            session = self.stages.session_factory(credential)
            async with session:
                result = await session.exec("whoami")
        except ShipyardError as e:
            return ConnectionTestResponse(success=False, message=e.message)

        if not result.ok:
            return ConnectionTestResponse(
                success=False,
                message=f"SSH test failed: {result.stderr.strip()}",
            )
        return ConnectionTestResponse(
            success=True,
            message=f"Connection successful. Connected as: {result.stdout.strip()}",
        )

    async def shutdown(self) -> None:
        """Wait for running pipelines to finish."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _start(
        self,
        kind: DeploymentKind,
        pipeline: list[Stage],
        host: str,
        username: str,
        domain: str,
        target: DeploymentTarget | None = None,
    ) -> DeploymentAttempt:
        lease = self.lock.try_acquire(kind)
        try:
            record = await self.history.create(
                kind,
                target=target.name if target else None,
                host=host,
                domain=domain,
            )
        except Exception:
            self.lock.release(lease)
            raise

        stream = ProgressStream(str(record.id), maxsize=self.settings.stream_queue_size)
        ctx = PipelineContext(
            kind=kind,
            lease=lease,
            stream=stream,
            record=record,
            host=host,
            username=username,
            domain=domain,
            target=target,
        )

        task = asyncio.create_task(self._run(pipeline, ctx), name=f"pipeline-{record.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        self.logger.info(
            "orchestrator.pipeline.accepted",
            record_id=str(record.id),
            kind=kind.value,
            host=host,
            domain=domain,
        )
        return DeploymentAttempt(record=record, stream=stream, task=task)

    async def _run(self, pipeline: list[Stage], ctx: PipelineContext) -> None:
        stream = ctx.stream
        record_id = str(ctx.record.id)
        started: list[Stage] = []
        status = DeploymentStatus.FAILED
        error: str | None = "Pipeline interrupted"
        title = "Deployment" if ctx.kind == DeploymentKind.DEPLOYMENT else "Setup"

        self.logger.info("orchestrator.pipeline.started", record_id=record_id)
        try:
            stream.log(
                "Starting deployment process..."
                if ctx.kind == DeploymentKind.DEPLOYMENT
                else "Starting nginx and SSL setup..."
            )

            for stage in pipeline:
                ctx.lease.token.raise_if_cancelled(stage.state.value)
                ctx.lease.state = stage.state
                started.append(stage)

                self.logger.info(
                    "orchestrator.stage.started",
                    record_id=record_id,
                    stage=stage.state.value,
                )
                stream.progress(stage.label, stage.percentage)
                await stage.execute(ctx)

            ctx.lease.state = PipelineState.SUCCEEDED
            stream.progress(f"{title} complete", COMPLETE)
            stream.success(self._success_message(ctx), COMPLETE)
            status, error = DeploymentStatus.SUCCESS, None

            self.logger.info(
                "orchestrator.pipeline.completed",
                record_id=record_id,
                warnings=len(ctx.warnings),
            )

        except Exception as e:
            message = e.message if isinstance(e, ShipyardError) else str(e)
            ctx.lease.state = PipelineState.FAILED
            status, error = DeploymentStatus.FAILED, message

            self.logger.error(
                "orchestrator.pipeline.failed",
                record_id=record_id,
                stage=started[-1].state.value if started else None,
                error=message,
                exc_info=not isinstance(e, ShipyardError),
            )
            stream.error(f"{title} failed: {message}")

        finally:
            await self._cleanup(started, ctx)
            await self._finish_record(ctx, status, error)
            self.lock.release(ctx.lease)
            stream.close()

    async def _cleanup(self, started: list[Stage], ctx: PipelineContext) -> None:
        for stage in reversed(started):
            if stage.cleanup is None:
                continue
            try:
                await stage.cleanup(ctx)
            except Exception as e:
                self.logger.warning(
                    "orchestrator.cleanup_failed",
                    stage=stage.state.value,
                    error=str(e),
                )

    async def _finish_record(
        self,
        ctx: PipelineContext,
        status: DeploymentStatus,
        error: str | None,
    ) -> None:
        try:
            await self.history.update(
                ctx.record.id,
                HistoryPatch.finished(ctx.record, status, error),
            )
        except Exception as e:
            self.logger.error(
                "orchestrator.history_update_failed",
                record_id=str(ctx.record.id),
                error=str(e),
            )

    def _success_message(self, ctx: PipelineContext) -> str:
        if ctx.kind == DeploymentKind.PROXY_SETUP:
            return "Nginx and SSL setup completed!"
        scheme = "https" if ctx.tls_issued else "http"
        return f"Deployment completed! Application is now live at {scheme}://{ctx.domain}"


# Singleton instance
_orchestrator: DeploymentOrchestrator | None = None


def get_orchestrator() -> DeploymentOrchestrator:
    """Get the deployment orchestrator singleton."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = DeploymentOrchestrator()
    return _orchestrator
