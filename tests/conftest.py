"""Pytest configuration and fixtures."""

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

from shipyard.api.deps import get_app_settings, get_deployment_orchestrator, get_history
from shipyard.config import Settings
from shipyard.core.exceptions import BuildError, RemoteCommandError, RemoteConnectionError
from shipyard.core.history import InMemoryHistoryStore
from shipyard.core.lock import DeploymentLock
from shipyard.core.orchestrator import DeploymentOrchestrator
from shipyard.core.stages import PipelineStages
from shipyard.main import app
from shipyard.models.deployment import CommandOutput, DeploymentTarget, RemoteCredential
from shipyard.release.builder import BuildResult
from shipyard.release.packager import ReleasePackager

API_TOKEN = "test-token"


@dataclass
class Hold:
    """Pauses the first command matching a pattern until released."""

    pattern: str
    reached: asyncio.Event = field(default_factory=asyncio.Event)
    release: asyncio.Event = field(default_factory=asyncio.Event)


class FakeRemoteHost:
    """Scripted remote host shared by every session opened against it.

    Commands succeed with empty output unless a response was registered for
    a substring of the command.
    """

    def __init__(self):
        self.responses: dict[str, tuple[int, str, str]] = {}
        self.sessions: list["FakeRemoteSession"] = []
        self.holds: list[Hold] = []
        self.connect_error: str | None = None

    def respond(self, pattern: str, exit_code: int = 0, stdout: str = "", stderr: str = ""):
        self.responses[pattern] = (exit_code, stdout, stderr)

    def hold(self, pattern: str) -> Hold:
        hold = Hold(pattern)
        self.holds.append(hold)
        return hold

    def session_factory(self, credential: RemoteCredential) -> "FakeRemoteSession":
        session = FakeRemoteSession(self, credential)
        self.sessions.append(session)
        return session

    @property
    def commands(self) -> list[str]:
        return [command for session in self.sessions for command in session.commands]

    @property
    def files(self) -> dict[str, str]:
        merged: dict[str, str] = {}
        for session in self.sessions:
            merged.update(session.files)
        return merged


class FakeRemoteSession:
    """In-memory stand-in for ``RemoteSession``."""

    def __init__(self, host: FakeRemoteHost, credential: RemoteCredential):
        self.remote = host
        self.credential = credential
        self.commands: list[str] = []
        self.files: dict[str, str] = {}
        self.transfers: list[tuple[str, str]] = []
        self.connected = False
        self.disposed = False

    @property
    def host(self) -> str:
        return self.credential.host

    async def __aenter__(self) -> "FakeRemoteSession":
        return await self.connect()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.dispose()

    async def connect(self) -> "FakeRemoteSession":
        if self.remote.connect_error:
            raise RemoteConnectionError(self.host, self.remote.connect_error)
        self.connected = True
        return self

    async def exec(self, command: str, timeout: int | None = None) -> CommandOutput:
        self.commands.append(command)
        for hold in list(self.remote.holds):
            if hold.pattern in command:
                self.remote.holds.remove(hold)
                hold.reached.set()
                await hold.release.wait()
        for pattern, (exit_code, stdout, stderr) in self.remote.responses.items():
            if pattern in command:
                return CommandOutput(
                    command=command, exit_code=exit_code, stdout=stdout, stderr=stderr
                )
        return CommandOutput(command=command, exit_code=0)

    async def run(self, command: str, stage: str, timeout: int | None = None) -> CommandOutput:
        result = await self.exec(command, timeout=timeout)
        if not result.ok:
            raise RemoteCommandError(stage, command, result.exit_code, result.stderr)
        return result

    async def transfer(self, local_path: str, remote_path: str) -> None:
        self.transfers.append((local_path, remote_path))

    async def write_file(self, remote_path: str, content: str) -> None:
        self.files[remote_path] = content

    async def dispose(self) -> None:
        self.connected = False
        self.disposed = True


class StubBuilder:
    """Build step that reuses a prepared output directory."""

    def __init__(self, output_dir: Path, error: str | None = None):
        self.output_dir = output_dir
        self.error = error
        self.calls = 0

    async def build(self) -> BuildResult:
        self.calls += 1
        if self.error:
            raise BuildError(self.error)
        return BuildResult(output_dir=self.output_dir, stdout="built", stderr="", duration_ms=5)


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings isolated from the environment."""
    return Settings(
        _env_file=None,
        api_tokens=[API_TOKEN],
        ssh_password="secret",
        ssh_private_key=None,
        health_check_retries=2,
        health_check_interval=0,
        manifest_files=["package.json"],
        archive_directory=str(tmp_path / "archives"),
        deployment_targets=[
            DeploymentTarget(
                name="staging",
                domain="staging.example.com",
                host="203.0.113.10",
                username="deploy",
                deploy_path="/var/www/staging",
            ),
            DeploymentTarget(
                name="production",
                domain="example.com",
                is_production=True,
                deploy_path="/var/www/production",
            ),
        ],
    )


@pytest.fixture
def source_dir(tmp_path: Path) -> Path:
    """A source tree with build output and a manifest."""
    source = tmp_path / "source"
    (source / "dist").mkdir(parents=True)
    (source / "dist" / "index.js").write_text("console.log('hello');\n")
    (source / "package.json").write_text('{"name": "demo"}\n')
    return source


@pytest.fixture
def remote_host() -> FakeRemoteHost:
    return FakeRemoteHost()


@pytest.fixture
def builder(source_dir: Path) -> StubBuilder:
    return StubBuilder(source_dir / "dist")


@pytest.fixture
def orchestrator(
    test_settings: Settings,
    remote_host: FakeRemoteHost,
    builder: StubBuilder,
    source_dir: Path,
) -> DeploymentOrchestrator:
    """Orchestrator wired to a fake remote host and fresh lock and history."""
    stages = PipelineStages(
        test_settings,
        session_factory=remote_host.session_factory,
        builder=builder,
        packager=ReleasePackager(
            source_dir,
            manifest_files=test_settings.manifest_files,
            archive_dir=test_settings.archive_directory,
        ),
    )
    return DeploymentOrchestrator(
        lock=DeploymentLock(),
        history=InMemoryHistoryStore(),
        stages=stages,
        settings=test_settings,
    )


@pytest.fixture
async def client(
    orchestrator: DeploymentOrchestrator, test_settings: Settings
) -> AsyncClient:
    """Create an async test client bound to the test orchestrator."""
    app.dependency_overrides[get_app_settings] = lambda: test_settings
    app.dependency_overrides[get_deployment_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_history] = lambda: orchestrator.history

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"Authorization": f"Bearer {API_TOKEN}"},
    ) as ac:
        yield ac

    await orchestrator.shutdown()
    app.dependency_overrides.clear()


@pytest.fixture
async def fake_session(remote_host: FakeRemoteHost) -> FakeRemoteSession:
    """A connected session against the fake host."""
    credential = RemoteCredential(host="203.0.113.10", username="root", password="secret")
    return await remote_host.session_factory(credential).connect()
