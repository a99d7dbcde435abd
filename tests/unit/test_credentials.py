"""Unit tests for building credentials from settings."""

import pytest

from shipyard.config import Settings
from shipyard.core.exceptions import RemoteConnectionError
from shipyard.remote.credentials import credential_from_settings


def make_settings(**kwargs) -> Settings:
    values = {"ssh_password": None, "ssh_private_key": None}
    values.update(kwargs)
    return Settings(_env_file=None, **values)


class TestCredentialFromSettings:
    """Tests for credential_from_settings."""

    def test_password_preferred(self):
        settings = make_settings(ssh_password="pw", ssh_private_key="KEY")
        credential = credential_from_settings("h", "root", settings)

        assert credential.auth_method == "password"
        assert credential.private_key is None

    def test_private_key_newlines_restored(self):
        settings = make_settings(ssh_private_key="-----BEGIN KEY-----\\nabc\\n-----END KEY-----")
        credential = credential_from_settings("h", "root", settings)

        assert credential.auth_method == "key"
        assert credential.private_key == "-----BEGIN KEY-----\nabc\n-----END KEY-----"

    def test_port_and_timeout_from_settings(self):
        settings = make_settings(ssh_password="pw", ssh_port=2222, ssh_connect_timeout=7)
        credential = credential_from_settings("h", "root", settings)

        assert credential.port == 2222
        assert credential.timeout == 7

    def test_no_secret_configured(self):
        with pytest.raises(RemoteConnectionError) as exc_info:
            credential_from_settings("h", "root", make_settings())

        assert "Please set SSH_PASSWORD or SSH_PRIVATE_KEY" in exc_info.value.message
