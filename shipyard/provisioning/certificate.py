"""TLS certificate provisioning with certbot."""

import shlex
from dataclasses import dataclass

from shipyard.core.exceptions import ProvisioningWarning
from shipyard.remote.session import RemoteSession
from shipyard.utils.logging import get_logger

RENEWAL_TIMER = "certbot.timer"


@dataclass
class CertificateResult:
    """A certificate issued and bound to nginx."""

    domains: list[str]
    output: str


class CertificateProvisioner:
    """Requests certificates remotely and keeps them renewed.

    Issuance failures raise ``ProvisioningWarning`` rather than a stage error:
    DNS may not point at the host yet, and a site without TLS is still
    reachable.
    """

    def __init__(self, email: str | None = None):
        self.email = email
        self.logger = get_logger("provisioning.certificate")

    def build_command(self, domain: str) -> str:
        email = self.email or f"admin@{domain}"
        return (
            f"certbot --nginx -d {shlex.quote(domain)} -d {shlex.quote('www.' + domain)} "
            f"--non-interactive --agree-tos --email {shlex.quote(email)} --redirect"
        )

    async def issue(self, session: RemoteSession, domain: str) -> CertificateResult:
        """Request a certificate for ``domain`` and ``www.domain``.

        Raises:
            ProvisioningWarning: If the certificate authority client fails
        """
        result = await session.exec(self.build_command(domain))
        if not result.ok:
            self.logger.warning(
                "certificate.issue_failed",
                domain=domain,
                exit_code=result.exit_code,
            )
            raise ProvisioningWarning(
                f"SSL certificate setup warning: {result.stderr.strip() or result.stdout.strip()}"
            )
        self.logger.info("certificate.issued", domain=domain)
        return CertificateResult(domains=[domain, f"www.{domain}"], output=result.stdout)

    async def schedule_renewal(self, session: RemoteSession) -> None:
        """Enable the systemd renewal timer. No local state tracks renewal.

        Raises:
            ProvisioningWarning: If the timer cannot be enabled
        """
        result = await session.exec(
            f"systemctl enable {RENEWAL_TIMER} && systemctl start {RENEWAL_TIMER}"
        )
        if not result.ok:
            raise ProvisioningWarning(
                f"Automatic SSL renewal could not be enabled: {result.stderr.strip()}"
            )
        self.logger.info("certificate.renewal_scheduled")
