"""Remote command execution and file transfer over SSH, built on Paramiko.

Paramiko is blocking; every network call runs in a worker thread so the event
loop stays free to flush progress to the caller while a command runs.
"""

import asyncio
import io
import socket
from typing import Callable

import paramiko

from shipyard.core.exceptions import (
    RemoteCommandError,
    RemoteConnectionError,
    TransferError,
)
from shipyard.models.deployment import CommandOutput, RemoteCredential
from shipyard.utils.logging import get_logger

# Key classes tried in order when loading a private key from text
_KEY_TYPES: tuple[type[paramiko.PKey], ...] = (
    paramiko.Ed25519Key,
    paramiko.ECDSAKey,
    paramiko.RSAKey,
)


def load_private_key(key_text: str) -> paramiko.PKey:
    """Parse a PEM/OpenSSH private key of any supported type."""
    last_error: Exception | None = None
    for key_type in _KEY_TYPES:
        try:
            return key_type.from_private_key(io.StringIO(key_text))
        except (paramiko.SSHException, ValueError) as e:
            last_error = e
    raise paramiko.SSHException(f"Unsupported private key: {last_error}")


class RemoteSession:
    """Authenticated channel to one host, scoped to one pipeline attempt.

    Usage:
        async with RemoteSession(credential) as session:
            await session.run("nginx -t", stage="configuring_proxy")

    The session does not retry anything; failures propagate to the caller.
    """

    def __init__(
        self,
        credential: RemoteCredential,
        *,
        command_timeout: int = 600,
        client_factory: Callable[[], paramiko.SSHClient] | None = None,
    ):
        self.credential = credential
        self.command_timeout = command_timeout
        self._client_factory = client_factory or paramiko.SSHClient
        self._client: paramiko.SSHClient | None = None
        self.logger = get_logger("remote").bind(
            host=credential.host, user=credential.username
        )

    @property
    def host(self) -> str:
        return self.credential.host

    @property
    def connected(self) -> bool:
        return self._client is not None

    async def __aenter__(self) -> "RemoteSession":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.dispose()

    async def connect(self) -> "RemoteSession":
        """Open and authenticate the SSH transport.

        Raises:
            RemoteConnectionError: On authentication, network or timeout failure
        """
        if self._client is not None:
            return self
        self.logger.info("remote.connecting", auth_method=self.credential.auth_method)
        self._client = await asyncio.to_thread(self._connect_blocking)
        self.logger.info("remote.connected")
        return self

    def _connect_blocking(self) -> paramiko.SSHClient:
        client = self._client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        connect_kwargs = {
            "hostname": self.credential.host,
            "port": self.credential.port,
            "username": self.credential.username,
            "timeout": self.credential.timeout,
            "banner_timeout": self.credential.timeout,
            "auth_timeout": self.credential.timeout,
            "look_for_keys": False,
            "allow_agent": False,
        }
        try:
            if self.credential.password:
                connect_kwargs["password"] = self.credential.password
            else:
                connect_kwargs["pkey"] = load_private_key(self.credential.private_key or "")
            client.connect(**connect_kwargs)
        except paramiko.AuthenticationException as e:
            client.close()
            raise RemoteConnectionError(self.host, f"authentication failed: {e}") from e
        except (socket.timeout, TimeoutError) as e:
            client.close()
            raise RemoteConnectionError(self.host, "connection timed out") from e
        except (paramiko.SSHException, OSError) as e:
            client.close()
            raise RemoteConnectionError(self.host, str(e)) from e
        return client

    def _require_client(self) -> paramiko.SSHClient:
        if self._client is None:
            raise RemoteConnectionError(self.host, "session is not connected")
        return self._client

    async def exec(self, command: str, timeout: int | None = None) -> CommandOutput:
        """Run a command and return its exit status and output.

        A non-zero exit status is returned, not raised; see ``run``.
        """
        client = self._require_client()
        timeout = timeout or self.command_timeout
        self.logger.debug("remote.command.started", command=command)
        result = await asyncio.to_thread(self._exec_blocking, client, command, timeout)
        if not result.ok:
            self.logger.warning(
                "remote.command.failed",
                command=command,
                exit_code=result.exit_code,
                stderr=result.stderr[:500],
            )
        return result

    def _exec_blocking(
        self, client: paramiko.SSHClient, command: str, timeout: int
    ) -> CommandOutput:
        try:
            _, stdout, stderr = client.exec_command(command, timeout=timeout)
            out = stdout.read().decode("utf-8", errors="replace")
            err = stderr.read().decode("utf-8", errors="replace")
            exit_code = stdout.channel.recv_exit_status()
        except (socket.timeout, TimeoutError):
            return CommandOutput(
                command=command,
                exit_code=-1,
                stderr=f"Command timed out after {timeout} seconds",
            )
        except paramiko.SSHException as e:
            raise RemoteConnectionError(self.host, str(e)) from e
        return CommandOutput(command=command, exit_code=exit_code, stdout=out, stderr=err)

    async def run(
        self, command: str, stage: str, timeout: int | None = None
    ) -> CommandOutput:
        """Run a command and raise ``RemoteCommandError`` if it exits non-zero."""
        result = await self.exec(command, timeout=timeout)
        if not result.ok:
            raise RemoteCommandError(stage, command, result.exit_code, result.stderr)
        return result

    async def transfer(self, local_path: str, remote_path: str) -> None:
        """Copy a local file to the remote host over SFTP.

        Raises:
            TransferError: If the file cannot be read or written
        """
        client = self._require_client()
        self.logger.info("remote.transfer.started", local=local_path, remote=remote_path)
        try:
            await asyncio.to_thread(self._put_blocking, client, local_path, remote_path)
        except (OSError, paramiko.SSHException) as e:
            raise TransferError(local_path, remote_path, str(e)) from e
        self.logger.info("remote.transfer.completed", remote=remote_path)

    def _put_blocking(
        self, client: paramiko.SSHClient, local_path: str, remote_path: str
    ) -> None:
        sftp = client.open_sftp()
        try:
            sftp.put(local_path, remote_path)
        finally:
            sftp.close()

    async def write_file(self, remote_path: str, content: str) -> None:
        """Write text content to a remote file over SFTP."""
        client = self._require_client()
        try:
            await asyncio.to_thread(self._write_blocking, client, remote_path, content)
        except (OSError, paramiko.SSHException) as e:
            raise TransferError("<memory>", remote_path, str(e)) from e

    def _write_blocking(
        self, client: paramiko.SSHClient, remote_path: str, content: str
    ) -> None:
        sftp = client.open_sftp()
        try:
            sftp.putfo(io.BytesIO(content.encode("utf-8")), remote_path)
        finally:
            sftp.close()

    async def dispose(self) -> None:
        """Close the channel. Safe to call any number of times."""
        client, self._client = self._client, None
        if client is None:
            return
        await asyncio.to_thread(client.close)
        self.logger.info("remote.disposed")


RemoteSessionFactory = Callable[[RemoteCredential], RemoteSession]
