"""Pipeline stage descriptors for deployments and proxy setup.

A pipeline is an ordered list of ``Stage`` objects. The orchestrator drives
the list with a single loop; each stage maps to one ``PipelineState`` and
carries the cumulative progress checkpoint announced when it starts.
"""

import asyncio
import shlex
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from shipyard.config import Settings
from shipyard.core.events import ProgressStream
from shipyard.core.exceptions import ProvisioningWarning, StageError
from shipyard.core.lock import Lease
from shipyard.models.deployment import (
    DeploymentHistoryRecord,
    DeploymentKind,
    DeploymentTarget,
    PipelineState,
)
from shipyard.provisioning.certificate import CertificateProvisioner
from shipyard.provisioning.proxy import ReverseProxyProvisioner
from shipyard.release.builder import BuildResult, ReleaseBuilder
from shipyard.release.packager import ARCHIVE_NAME, ReleasePackage, ReleasePackager
from shipyard.remote.credentials import credential_from_settings
from shipyard.remote.session import RemoteSession, RemoteSessionFactory
from shipyard.utils.logging import get_logger

logger = get_logger("stages")


def _escape_env_value(value: str) -> str:
    """Quote a value for a double-quoted dotenv line."""
    return (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "")
    )


@dataclass
class PipelineContext:
    """Mutable state shared by the stages of one attempt."""

    kind: DeploymentKind
    lease: Lease
    stream: ProgressStream
    record: DeploymentHistoryRecord
    host: str
    username: str
    domain: str
    target: DeploymentTarget | None = None
    session: RemoteSession | None = None
    build: BuildResult | None = None
    package: ReleasePackage | None = None
    tls_issued: bool = False
    warnings: list[str] = field(default_factory=list)

    @property
    def deploy_path(self) -> str:
        if self.target is None:
            raise StageError("installing", "No deployment target for this attempt")
        return self.target.deploy_path

    def require_session(self) -> RemoteSession:
        if self.session is None:
            raise StageError(self.lease.state.value, "Remote session is not open")
        return self.session

    def warn(self, message: str) -> None:
        self.warnings.append(message)
        self.stream.warning(message)


StageFn = Callable[[PipelineContext], Awaitable[None]]


@dataclass(frozen=True)
class Stage:
    """One step of a pipeline.

    ``cleanup`` releases what the stage acquired. It runs after the pipeline
    ends, whatever the outcome, for every stage that started. It never undoes
    remote changes.
    """

    state: PipelineState
    label: str
    percentage: int
    execute: StageFn
    cleanup: StageFn | None = None


class PipelineStages:
    """Builds the stage lists and implements each stage."""

    def __init__(
        self,
        settings: Settings,
        session_factory: RemoteSessionFactory | None = None,
        builder: ReleaseBuilder | None = None,
        packager: ReleasePackager | None = None,
        proxy: ReverseProxyProvisioner | None = None,
        certificates: CertificateProvisioner | None = None,
    ):
        self.settings = settings
        self.session_factory = session_factory or (
            lambda credential: RemoteSession(
                credential, command_timeout=settings.ssh_command_timeout
            )
        )
        self.builder = builder or ReleaseBuilder(
            settings.source_directory,
            command=settings.build_command,
            output_dir=settings.build_output_dir,
            timeout=settings.build_timeout,
        )
        self.packager = packager or ReleasePackager(
            settings.source_directory,
            output_dir=settings.build_output_dir,
            manifest_files=settings.manifest_files,
            archive_dir=settings.archive_directory,
        )
        self.proxy = proxy or ReverseProxyProvisioner(settings.proxy_site_name)
        self.certificates = certificates or CertificateProvisioner(settings.certificate_email)

    def deployment_pipeline(self) -> list[Stage]:
        return [
            Stage(PipelineState.BUILDING, "Building frontend and backend", 10, self.build),
            Stage(
                PipelineState.PACKAGING,
                "Creating deployment archive",
                25,
                self.package,
                cleanup=self.remove_local_archive,
            ),
            Stage(
                PipelineState.CONNECTING,
                "Connecting to VPS",
                40,
                self.connect,
                cleanup=self.dispose_session,
            ),
            Stage(PipelineState.TRANSFERRING, "Transferring files to VPS", 50, self.transfer),
            Stage(PipelineState.INSTALLING, "Installing dependencies", 60, self.install),
            Stage(
                PipelineState.CONFIGURING_PROXY,
                "Configuring web server",
                70,
                self.configure_proxy,
            ),
            Stage(
                PipelineState.PROVISIONING_CERTIFICATE,
                "Installing SSL certificate",
                80,
                self.provision_certificate,
            ),
            Stage(PipelineState.RESTARTING, "Restarting application", 90, self.restart),
            Stage(PipelineState.HEALTH_CHECKING, "Verifying application health", 95, self.health_check),
        ]

    def proxy_setup_pipeline(self) -> list[Stage]:
        return [
            Stage(
                PipelineState.CONNECTING,
                "Connecting to VPS",
                10,
                self.connect,
                cleanup=self.dispose_session,
            ),
            Stage(
                PipelineState.CONFIGURING_PROXY,
                "Installing nginx and certbot",
                30,
                self.bootstrap_proxy,
            ),
            Stage(
                PipelineState.PROVISIONING_CERTIFICATE,
                "Setting up SSL certificate",
                80,
                self.provision_certificate,
            ),
        ]

    # Local stages

    async def build(self, ctx: PipelineContext) -> None:
        ctx.stream.log("Building project...")
        ctx.build = await self.builder.build()
        ctx.stream.log(f"Build completed in {ctx.build.duration_ms / 1000:.1f}s")
        if ctx.build.stderr.strip():
            ctx.stream.log(f"Build warnings: {ctx.build.stderr.strip()}")

    async def package(self, ctx: PipelineContext) -> None:
        ctx.stream.log("Preparing deployment package...")
        ctx.package = await self.packager.package()
        ctx.stream.log(f"Archive created: {ctx.package.size_bytes} bytes")
        for name in ctx.package.missing:
            ctx.warn(f"Manifest file not found, not included in archive: {name}")

    async def remove_local_archive(self, ctx: PipelineContext) -> None:
        if ctx.package is not None:
            ctx.package.remove()

    # Remote stages

    async def connect(self, ctx: PipelineContext) -> None:
        ctx.stream.log(f"Connecting to VPS at {ctx.host}...")
        credential = credential_from_settings(ctx.host, ctx.username, self.settings)
        ctx.stream.log(
            "Using SSH password authentication"
            if credential.auth_method == "password"
            else "Using SSH private key authentication"
        )
        ctx.session = self.session_factory(credential)
        await ctx.session.connect()
        ctx.stream.log("SSH connection established")

    async def dispose_session(self, ctx: PipelineContext) -> None:
        if ctx.session is not None:
            await ctx.session.dispose()

    async def transfer(self, ctx: PipelineContext) -> None:
        session = ctx.require_session()
        stage = PipelineState.TRANSFERRING.value
        if ctx.package is None:
            raise StageError(stage, "No release package to transfer")

        path = shlex.quote(ctx.deploy_path)
        await session.run(f"mkdir -p {path}", stage=stage)
        ctx.stream.log(f"Created deployment directory: {ctx.deploy_path}")

        await session.transfer(str(ctx.package.path), f"{ctx.deploy_path}/{ARCHIVE_NAME}")
        ctx.stream.log("Archive transferred to VPS")

    async def install(self, ctx: PipelineContext) -> None:
        session = ctx.require_session()
        stage = PipelineState.INSTALLING.value
        path = shlex.quote(ctx.deploy_path)

        ctx.stream.log("Extracting files on VPS...")
        await session.run(f"cd {path} && tar -xzf {ARCHIVE_NAME}", stage=stage)
        ctx.stream.log("Files extracted successfully")

        ctx.stream.log("Setting up environment configuration...")
        await session.write_file(f"{ctx.deploy_path}/.env", self._render_env())
        ctx.stream.log("Environment configuration created")

        ctx.stream.log("Installing dependencies on VPS...")
        await session.run(f"cd {path} && {self.settings.install_command}", stage=stage)
        ctx.stream.log("Dependencies installed successfully")

    def _render_env(self) -> str:
        env = {
            **self.settings.remote_env,
            "NODE_ENV": "production",
            "PORT": str(self.settings.app_port),
        }
        return "".join(f'{key}="{_escape_env_value(value)}"\n' for key, value in env.items())

    async def configure_proxy(self, ctx: PipelineContext) -> None:
        session = ctx.require_session()
        stage = PipelineState.CONFIGURING_PROXY.value
        ctx.stream.log("Setting up nginx reverse proxy...")
        if not (await session.exec("command -v nginx && command -v certbot")).ok:
            ctx.stream.log("Installing nginx and certbot...")
            await self.proxy.install_packages(session, stage)
        await self.proxy.configure(
            session,
            ctx.domain,
            self.settings.app_port,
            stage=stage,
            report=ctx.stream.log,
        )
        ctx.stream.log("Nginx configuration created and tested")

    async def bootstrap_proxy(self, ctx: PipelineContext) -> None:
        session = ctx.require_session()
        stage = PipelineState.CONFIGURING_PROXY.value
        await self.proxy.install_packages(session, stage)
        ctx.stream.log("Nginx and certbot installed")
        ctx.stream.progress("Executing nginx setup", 50)
        await self.proxy.configure(
            session,
            ctx.domain,
            self.settings.app_port,
            stage=stage,
            report=ctx.stream.log,
        )
        ctx.stream.log("Nginx configuration completed")

    async def provision_certificate(self, ctx: PipelineContext) -> None:
        session = ctx.require_session()
        ctx.stream.log("Setting up SSL certificate...")
        try:
            await self.certificates.issue(session, ctx.domain)
        except ProvisioningWarning as warning:
            ctx.warn(warning.message)
            ctx.stream.log(
                "You may need to configure DNS first and retry: "
                f"sudo certbot --nginx -d {ctx.domain} -d www.{ctx.domain}"
            )
        else:
            ctx.tls_issued = True
            ctx.stream.log("SSL certificate installed successfully")

        try:
            await self.certificates.schedule_renewal(session)
        except ProvisioningWarning as warning:
            ctx.warn(warning.message)
        else:
            ctx.stream.log("Automatic SSL renewal configured")

    async def restart(self, ctx: PipelineContext) -> None:
        session = ctx.require_session()
        stage = PipelineState.RESTARTING.value
        path = shlex.quote(ctx.deploy_path)
        name = shlex.quote(self.settings.service_name)
        script = shlex.quote(self.settings.start_script)

        ctx.stream.log("Setting up application service...")
        await session.run("command -v pm2 >/dev/null || npm install -g pm2", stage=stage)
        await session.exec(f"pm2 delete {name}")
        await session.run(
            f"cd {path} && pm2 start {script} --name {name} --update-env",
            stage=stage,
        )
        await session.run("pm2 save", stage=stage)
        ctx.stream.log("Application service started with PM2")

        await session.exec(f"rm -f {path}/{ARCHIVE_NAME}")

    async def health_check(self, ctx: PipelineContext) -> None:
        session = ctx.require_session()
        url = f"http://localhost:{self.settings.app_port}{self.settings.health_check_path}"
        command = f"curl -fsS -o /dev/null -w '%{{http_code}}' {shlex.quote(url)}"

        result = None
        for attempt in range(1, self.settings.health_check_retries + 1):
            result = await session.exec(command)
            if result.ok:
                ctx.stream.log(f"Application responded with HTTP {result.stdout.strip()}")
                return
            logger.info("stages.health_check.retry", attempt=attempt, url=url)
            if attempt < self.settings.health_check_retries:
                await asyncio.sleep(self.settings.health_check_interval)

        detail = result.stderr.strip() if result else ""
        raise StageError(
            PipelineState.HEALTH_CHECKING.value,
            f"Application did not become healthy at {url}: {detail}",
        )
