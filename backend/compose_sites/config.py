from functools import lru_cache
import logging
import os
import sys
from pydantic_settings import BaseSettings, SettingsConfigDict

from compose_sites.utils.path_utils import resolve_local_path


logger = logging.getLogger(__name__)


class ConfigurationError(RuntimeError):
    """Raised when required configuration is missing or invalid."""
    pass


class Settings(BaseSettings):
    """Application configuration pulled from environment variables or .env file."""

    ssh_host: str = ""
    ssh_user: str = "root"
    ssh_port: int = 22
    ssh_key_path: str = ""
    ssh_known_hosts: str | None = None
    ssh_timeout: int = 30

    log_ssh_commands: bool = True

    # Host ports handed out to sites when none is requested
    auto_port_range_start: int = 30000
    auto_port_range_end: int = 39999

    # Webserver vhost locations on the managed server
    nginx_vhost_dir: str = "/etc/nginx/sites-available"
    nginx_enabled_dir: str = "/etc/nginx/sites-enabled"
    caddy_vhost_dir: str = "/etc/caddy/sites-available"

    # Database settings
    sqlite_db_path: str = "compose_sites.db"
    audit_max_output_length: int = 10000

    # Environment (development, staging, production)
    environment: str = "development"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    def validate_required(self) -> list[str]:
        """Validate required configuration settings.

        Returns a list of error messages for invalid settings.
        """
        errors: list[str] = []
        warnings: list[str] = []

        if not self.ssh_host:
            errors.append("SSH_HOST is required but not set")

        if not self.ssh_user:
            errors.append("SSH_USER is required but not set")

        key_path = resolve_local_path(self.ssh_key_path)
        if not key_path:
            errors.append("SSH_KEY_PATH is required but not set")
        else:
            if not os.path.exists(key_path):
                errors.append(f"SSH key file not found: {key_path}")
            elif not os.access(key_path, os.R_OK):
                errors.append(f"SSH key file not readable: {key_path}")

        if not 1 <= self.auto_port_range_start <= self.auto_port_range_end <= 65535:
            errors.append(
                "AUTO_PORT_RANGE_START/AUTO_PORT_RANGE_END must describe a valid port range "
                f"(got {self.auto_port_range_start}-{self.auto_port_range_end})"
            )

        if self.environment.lower() == "production" and not self.ssh_known_hosts:
            warnings.append(
                "SSH_KNOWN_HOSTS is not set in production, falling back to ~/.ssh/known_hosts"
            )

        for warning in warnings:
            logger.warning(f"Config warning: {warning}")

        return errors


def validate_config_on_startup(settings: Settings) -> None:
    """Validate configuration and exit if critical settings are missing."""
    errors = settings.validate_required()

    if errors:
        logger.error("Configuration validation failed:")
        for error in errors:
            logger.error(f"  - {error}")
        print("\nConfiguration Error:", file=sys.stderr)
        print("The following required settings are missing or invalid:", file=sys.stderr)
        for error in errors:
            print(f"  - {error}", file=sys.stderr)
        print("\nPlease check your .env file or environment variables.", file=sys.stderr)
        raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")

    logger.info("Configuration validated successfully")


@lru_cache
def get_settings() -> Settings:
    return Settings()
