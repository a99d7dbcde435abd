"""Remote host access."""

from shipyard.remote.credentials import credential_from_settings
from shipyard.remote.session import RemoteSession, RemoteSessionFactory, load_private_key

__all__ = [
    "RemoteSession",
    "RemoteSessionFactory",
    "credential_from_settings",
    "load_private_key",
]
