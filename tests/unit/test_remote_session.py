"""Unit tests for the Paramiko-backed remote session."""

import socket
from unittest.mock import MagicMock

import paramiko
import pytest

from shipyard.core.exceptions import RemoteCommandError, RemoteConnectionError, TransferError
from shipyard.models.deployment import RemoteCredential
from shipyard.remote.session import RemoteSession


def make_client(stdout: bytes = b"", stderr: bytes = b"", exit_code: int = 0) -> MagicMock:
    """Build a mock SSHClient whose exec_command returns fixed output."""
    client = MagicMock(spec=paramiko.SSHClient)
    out = MagicMock()
    out.read.return_value = stdout
    out.channel.recv_exit_status.return_value = exit_code
    err = MagicMock()
    err.read.return_value = stderr
    client.exec_command.return_value = (MagicMock(), out, err)
    return client


@pytest.fixture
def credential() -> RemoteCredential:
    return RemoteCredential(host="203.0.113.10", username="deploy", password="secret", timeout=5)


class TestRemoteSession:
    """Tests for RemoteSession."""

    @pytest.mark.asyncio
    async def test_connect_with_password(self, credential):
        client = make_client()
        session = RemoteSession(credential, client_factory=lambda: client)

        await session.connect()

        assert session.connected
        kwargs = client.connect.call_args.kwargs
        assert kwargs["hostname"] == "203.0.113.10"
        assert kwargs["username"] == "deploy"
        assert kwargs["password"] == "secret"
        assert kwargs["look_for_keys"] is False
        assert "pkey" not in kwargs

    @pytest.mark.asyncio
    async def test_authentication_failure(self, credential):
        client = make_client()
        client.connect.side_effect = paramiko.AuthenticationException("Authentication failed.")
        session = RemoteSession(credential, client_factory=lambda: client)

        with pytest.raises(RemoteConnectionError) as exc_info:
            await session.connect()

        assert "authentication failed" in exc_info.value.message
        assert not session.connected
        client.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_connect_timeout(self, credential):
        client = make_client()
        client.connect.side_effect = socket.timeout()
        session = RemoteSession(credential, client_factory=lambda: client)

        with pytest.raises(RemoteConnectionError) as exc_info:
            await session.connect()

        assert exc_info.value.reason == "connection timed out"

    @pytest.mark.asyncio
    async def test_unreadable_private_key(self):
        credential = RemoteCredential(host="h", username="root", private_key="not a key")
        client = make_client()
        session = RemoteSession(credential, client_factory=lambda: client)

        with pytest.raises(RemoteConnectionError):
            await session.connect()
        client.connect.assert_not_called()

    @pytest.mark.asyncio
    async def test_exec_returns_output(self, credential):
        client = make_client(stdout=b"deploy\n")
        async with RemoteSession(credential, client_factory=lambda: client) as session:
            result = await session.exec("whoami")

        assert result.ok
        assert result.stdout == "deploy\n"
        assert not session.connected
        client.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_run_raises_on_non_zero_exit(self, credential):
        client = make_client(stderr=b"npm ERR! missing script: build\n", exit_code=1)
        async with RemoteSession(credential, client_factory=lambda: client) as session:
            with pytest.raises(RemoteCommandError) as exc_info:
                await session.run("npm run build", stage="installing")

        assert exc_info.value.exit_code == 1
        assert exc_info.value.message == "npm ERR! missing script: build"
        assert exc_info.value.details["stage"] == "installing"

    @pytest.mark.asyncio
    async def test_exec_requires_connection(self, credential):
        session = RemoteSession(credential, client_factory=make_client)

        with pytest.raises(RemoteConnectionError):
            await session.exec("true")

    @pytest.mark.asyncio
    async def test_transfer_failure(self, credential):
        client = make_client()
        client.open_sftp.return_value.put.side_effect = OSError("No such file")
        async with RemoteSession(credential, client_factory=lambda: client) as session:
            with pytest.raises(TransferError):
                await session.transfer("/tmp/release.tar.gz", "/var/www/app/deployment.tar.gz")

        client.open_sftp.return_value.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_dispose_is_idempotent(self, credential):
        client = make_client()
        session = RemoteSession(credential, client_factory=lambda: client)
        await session.connect()

        await session.dispose()
        await session.dispose()

        client.close.assert_called_once()
