"""Application configuration using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from shipyard.models.deployment import DeploymentTarget

# Load .env file and override existing env vars
load_dotenv(override=True)


def _default_targets() -> list[DeploymentTarget]:
    return [
        DeploymentTarget(
            name="staging",
            domain="staging.example.com",
            deploy_path="/var/www/staging",
        ),
        DeploymentTarget(
            name="production",
            domain="example.com",
            is_production=True,
            deploy_path="/var/www/production",
        ),
    ]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Bearer tokens accepted by the capability check
    api_tokens: list[str] = Field(default_factory=list)

    # Remote credentials
    ssh_password: str | None = None
    ssh_private_key: str | None = None
    ssh_port: int = 22
    ssh_connect_timeout: int = 30
    ssh_command_timeout: int = 600

    # Local release build
    build_command: str = "npm run build"
    build_timeout: int = 900
    source_directory: str = "."
    build_output_dir: str = "dist"
    manifest_files: list[str] = Field(
        default_factory=lambda: ["package.json", "package-lock.json"]
    )
    archive_directory: str | None = None

    # Remote service
    app_port: int = 3000
    service_name: str = "shipyard-app"
    install_command: str = "npm ci --omit=dev"
    start_script: str = "dist/index.js"
    health_check_path: str = "/"
    health_check_retries: int = Field(default=5, ge=1)
    health_check_interval: float = Field(default=2.0, ge=0)
    remote_env: dict[str, str] = Field(default_factory=dict)

    # Reverse proxy and certificates
    proxy_site_name: str = "shipyard"
    certificate_email: str | None = None

    # Deployment targets
    deployment_targets: list[DeploymentTarget] = Field(default_factory=_default_targets)

    # History persistence (in-memory when unset)
    history_db_path: str | None = None

    # Progress streaming
    stream_queue_size: int = 1000

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["console", "json"] = "console"
    log_directory: str = "logs"
    log_file_name: str = "shipyard.log"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"

    @property
    def private_key_text(self) -> str | None:
        """Private key with escaped newlines from single-line env values restored."""
        if not self.ssh_private_key:
            return None
        return self.ssh_private_key.replace("\\n", "\n")

    def find_target(self, name: str) -> DeploymentTarget | None:
        """Look up a configured deployment target by name."""
        for target in self.deployment_targets:
            if target.name == name:
                return target
        return None


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
