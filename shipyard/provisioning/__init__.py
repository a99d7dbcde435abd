"""Reverse proxy and TLS certificate provisioning on the remote host."""

from shipyard.provisioning.certificate import CertificateProvisioner, CertificateResult
from shipyard.provisioning.proxy import (
    ProxyConfigResult,
    ReverseProxyProvisioner,
    render_nginx_config,
)

__all__ = [
    "CertificateProvisioner",
    "CertificateResult",
    "ProxyConfigResult",
    "ReverseProxyProvisioner",
    "render_nginx_config",
]
