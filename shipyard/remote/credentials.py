"""Build remote credentials from environment-provided secrets."""

from shipyard.config import Settings, settings as default_settings
from shipyard.core.exceptions import RemoteConnectionError
from shipyard.models.deployment import RemoteCredential


def credential_from_settings(
    host: str,
    username: str,
    settings: Settings | None = None,
) -> RemoteCredential:
    """Create a fresh credential for one session.

    Password authentication wins when both a password and a key are
    configured. Credentials are never cached between attempts.

    Raises:
        RemoteConnectionError: If no secret is configured
    """
    settings = settings or default_settings
    common = {
        "host": host,
        "username": username,
        "port": settings.ssh_port,
        "timeout": settings.ssh_connect_timeout,
    }
    if settings.ssh_password:
        return RemoteCredential(password=settings.ssh_password, **common)
    if settings.private_key_text:
        return RemoteCredential(private_key=settings.private_key_text, **common)
    raise RemoteConnectionError(
        host,
        "No SSH credentials provided. Please set SSH_PASSWORD or SSH_PRIVATE_KEY",
    )
