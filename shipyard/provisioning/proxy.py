"""Nginx reverse proxy provisioning.

A generated configuration is never activated unless ``nginx -t`` accepts it.
The candidate replaces the site file only for the duration of the check; on
rejection the previous file (or its absence) is restored and nginx is not
reloaded, so the running proxy keeps serving the old configuration.
"""

import shlex
from dataclasses import dataclass
from typing import Callable

from shipyard.core.exceptions import ConfigValidationError
from shipyard.remote.session import RemoteSession
from shipyard.utils.logging import get_logger

SITES_AVAILABLE = "/etc/nginx/sites-available"
SITES_ENABLED = "/etc/nginx/sites-enabled"
LETSENCRYPT_LIVE = "/etc/letsencrypt/live"

PROXY_PACKAGES = ("nginx", "certbot", "python3-certbot-nginx")

_SECURITY_HEADERS = """\
    add_header X-Frame-Options "SAMEORIGIN" always;
    add_header X-XSS-Protection "1; mode=block" always;
    add_header X-Content-Type-Options "nosniff" always;
    add_header Referrer-Policy "no-referrer-when-downgrade" always;
    add_header Content-Security-Policy "default-src 'self' http: https: data: blob: 'unsafe-inline'" always;

    gzip on;
    gzip_vary on;
    gzip_min_length 1024;
    gzip_types text/plain text/css text/xml text/javascript application/javascript application/xml+rss application/json;
"""

_LOCATIONS = """\
    location / {{
        proxy_pass http://localhost:{port};
        proxy_http_version 1.1;
        proxy_set_header Upgrade $http_upgrade;
        proxy_set_header Connection 'upgrade';
        proxy_set_header Host $host;
        proxy_set_header X-Real-IP $remote_addr;
        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
        proxy_set_header X-Forwarded-Proto $scheme;
        proxy_cache_bypass $http_upgrade;
        proxy_buffering off;
        proxy_read_timeout 86400;
    }}

    location ~* \\.(jpg|jpeg|png|gif|ico|css|js)$ {{
        proxy_pass http://localhost:{port};
        expires 1y;
        add_header Cache-Control "public, immutable";
    }}
"""


def render_nginx_config(domain: str, upstream_port: int, tls: bool = True) -> str:
    """Render the site configuration for ``domain`` and its www alias.

    With ``tls`` the plaintext server only redirects to HTTPS and the HTTPS
    server uses the Let's Encrypt certificate for the domain. Without it (no
    certificate issued yet) the site is served over HTTP and the certificate
    client later adds TLS and the redirect itself.
    """
    server_names = f"{domain} www.{domain}"
    body = _SECURITY_HEADERS + "\n" + _LOCATIONS.format(port=upstream_port)

    if not tls:
        return (
            "server {\n"
            "    listen 80;\n"
            f"    server_name {server_names};\n\n"
            f"{body}"
            "}\n"
        )

    cert_dir = f"{LETSENCRYPT_LIVE}/{domain}"
    return (
        "server {\n"
        "    listen 80;\n"
        f"    server_name {server_names};\n\n"
        "    # Redirect HTTP to HTTPS\n"
        "    return 301 https://$server_name$request_uri;\n"
        "}\n\n"
        "server {\n"
        "    listen 443 ssl http2;\n"
        f"    server_name {server_names};\n\n"
        f"    ssl_certificate {cert_dir}/fullchain.pem;\n"
        f"    ssl_certificate_key {cert_dir}/privkey.pem;\n\n"
        f"{body}"
        "}\n"
    )


@dataclass
class ProxyConfigResult:
    """Outcome of an applied proxy configuration."""

    site_path: str
    tls: bool
    validation_output: str


class ReverseProxyProvisioner:
    """Installs, validates and activates the nginx site for a domain."""

    def __init__(self, site_name: str = "shipyard"):
        self.site_name = site_name
        self.logger = get_logger("provisioning.proxy")

    @property
    def site_path(self) -> str:
        return f"{SITES_AVAILABLE}/{self.site_name}"

    @property
    def enabled_path(self) -> str:
        return f"{SITES_ENABLED}/{self.site_name}"

    async def install_packages(self, session: RemoteSession, stage: str) -> None:
        """Install nginx and the certificate client."""
        packages = " ".join(PROXY_PACKAGES)
        await session.run(
            f"DEBIAN_FRONTEND=noninteractive apt-get update && "
            f"DEBIAN_FRONTEND=noninteractive apt-get install -y {packages}",
            stage=stage,
        )

    async def has_certificate(self, session: RemoteSession, domain: str) -> bool:
        result = await session.exec(
            f"test -f {shlex.quote(f'{LETSENCRYPT_LIVE}/{domain}/fullchain.pem')}"
        )
        return result.ok

    async def configure(
        self,
        session: RemoteSession,
        domain: str,
        upstream_port: int,
        stage: str,
        report: Callable[[str], object] | None = None,
    ) -> ProxyConfigResult:
        """Write the site, validate it and reload nginx only when it is valid.

        Raises:
            ConfigValidationError: If ``nginx -t`` rejects the configuration
            RemoteCommandError: If any other remote command fails
        """
        report = report or (lambda message: None)

        tls = await self.has_certificate(session, domain)
        config = render_nginx_config(domain, upstream_port, tls=tls)

        site = shlex.quote(self.site_path)
        candidate = shlex.quote(f"{self.site_path}.candidate")
        backup = shlex.quote(f"{self.site_path}.previous")
        enabled = shlex.quote(self.enabled_path)

        await session.write_file(f"{self.site_path}.candidate", config)
        report(f"Nginx configuration written for {domain} (tls={'on' if tls else 'pending'})")

        had_previous = (await session.exec(f"test -f {site}")).ok
        if had_previous:
            await session.run(f"cp -f {site} {backup}", stage=stage)
        had_link = (await session.exec(f"test -L {enabled}")).ok

        # From the swap until validation passes, any failure puts the old site back
        try:
            await session.run(f"mv -f {candidate} {site}", stage=stage)
            await session.run(f"ln -sf {site} {enabled}", stage=stage)

            validation = await session.exec("nginx -t")
            if not validation.ok:
                self.logger.error(
                    "proxy.validation_failed",
                    domain=domain,
                    output=validation.stderr[:500],
                )
                raise ConfigValidationError(validation.stderr or validation.stdout)
        except BaseException:
            await self._restore(session, had_previous, had_link)
            raise
        report("Nginx configuration validated")

        # Only after validation: drop the distribution default site and go live
        await session.run(f"rm -f {SITES_ENABLED}/default", stage=stage)
        await session.run("systemctl reload-or-restart nginx", stage=stage)
        await session.run("systemctl enable nginx", stage=stage)
        if had_previous:
            await session.exec(f"rm -f {backup}")
        report("Nginx reloaded")

        self.logger.info("proxy.configured", domain=domain, tls=tls)
        return ProxyConfigResult(
            site_path=self.site_path,
            tls=tls,
            validation_output=validation.stderr,
        )

    async def _restore(
        self, session: RemoteSession, had_previous: bool, had_link: bool
    ) -> None:
        """Put back the site as it was before the swap.

        Failures are logged, not raised, so the error that triggered the
        restore is the one reported.
        """
        site = shlex.quote(self.site_path)
        commands = [f"rm -f {shlex.quote(self.site_path + '.candidate')}"]
        if had_previous:
            commands.append(f"mv -f {shlex.quote(self.site_path + '.previous')} {site}")
        else:
            commands.append(f"rm -f {site}")
        if not had_link:
            commands.append(f"rm -f {shlex.quote(self.enabled_path)}")

        for command in commands:
            try:
                result = await session.exec(command)
            except Exception as e:
                self.logger.error("proxy.restore_failed", command=command, error=str(e))
                return
            if not result.ok:
                self.logger.error(
                    "proxy.restore_failed",
                    command=command,
                    exit_code=result.exit_code,
                    stderr=result.stderr[:500],
                )
        self.logger.warning("proxy.restored", site=self.site_path)
