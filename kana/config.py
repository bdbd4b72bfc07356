from functools import lru_cache
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from kana.schemas.site import SiteOptions
from kana.utils.path_utils import resolve_local_path
from kana.validators import ValidationError, validate_domain


logger = logging.getLogger(__name__)


class ConfigurationError(RuntimeError):
    """Raised when required configuration is missing or invalid."""
    pass


class Settings(BaseSettings):
    """Static configuration pulled from KANA_* environment variables or a .env file."""

    app_directory: str = "~/.config/kana"
    app_domain: str = "sites.kana.li"

    # Certificate material produced by the certificate provisioner
    root_cert: str = "kana.root.pem"
    site_cert: str = "kana.site.pem"
    site_key: str = "kana.site.key"

    # WordPress admin account used by `core install`
    admin_username: str = "admin"
    admin_password: str = "password"
    admin_email: str = "admin@sites.kana.li"

    # Site option defaults, overridden by .kana.json and command flags
    default_type: str = "site"
    default_php: str = "8.1"
    default_xdebug: bool = False
    default_local: bool = False
    default_plugins: list[str] = []

    # Docker daemon
    docker_start_retries: int = 12
    docker_start_interval: float = 5.0
    log_timeout: float = 10.0
    exec_timeout: float = 300.0

    # Readiness polling
    verify_attempts: int = 30
    verify_interval: float = 1.0

    proxy_image: str = "traefik:2.9"

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="KANA_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @property
    def app_path(self) -> Path:
        return Path(resolve_local_path(self.app_directory))

    @property
    def certs_directory(self) -> Path:
        return self.app_path / "certs"

    @property
    def sites_directory(self) -> Path:
        return self.app_path / "sites"

    @property
    def proxy_directory(self) -> Path:
        return self.app_path / "config" / "traefik"

    @property
    def root_cert_path(self) -> Path:
        return self.certs_directory / self.root_cert

    def validate_required(self) -> list[str]:
        """Validate configuration settings.

        Returns a list of error messages for invalid settings.
        """
        errors: list[str] = []
        warnings: list[str] = []

        if not self.app_directory:
            errors.append("KANA_APP_DIRECTORY is required but not set")

        if not self.app_domain:
            errors.append("KANA_APP_DOMAIN is required but not set")
        else:
            try:
                validate_domain(self.app_domain)
            except ValidationError as e:
                errors.append(f"KANA_APP_DOMAIN is invalid: {e}")

        if self.docker_start_retries < 1:
            errors.append("KANA_DOCKER_START_RETRIES must be at least 1")

        if self.verify_attempts < 1:
            errors.append("KANA_VERIFY_ATTEMPTS must be at least 1")

        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            errors.append(f"KANA_LOG_LEVEL '{self.log_level}' is not a known logging level")

        if not self.admin_password:
            warnings.append("KANA_ADMIN_PASSWORD is empty, WordPress install will fail")

        cert_path = self.root_cert_path
        if cert_path.exists() and not os.access(cert_path, os.R_OK):
            errors.append(f"Root certificate not readable: {cert_path}")

        for warning in warnings:
            logger.warning(f"Config warning: {warning}")

        return errors


def validate_config_on_startup(settings: Settings) -> None:
    """Validate configuration and raise if critical settings are missing."""
    errors = settings.validate_required()

    if errors:
        logger.error("Configuration validation failed:")
        for error in errors:
            logger.error(f"  - {error}")
        print("\nConfiguration Error:", file=sys.stderr)
        for error in errors:
            print(f"  - {error}", file=sys.stderr)
        raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")

    logger.debug("Configuration validated successfully")


@lru_cache
def get_settings() -> Settings:
    return Settings()


SITE_OPTIONS_FILE = ".kana.json"


def load_site_options(
    working_directory: Path,
    settings: Settings,
    overrides: dict[str, Any] | None = None,
) -> SiteOptions:
    """Merge option defaults, the working directory's .kana.json and explicit overrides.

    Later sources win. Overrides set to None are ignored so unset command
    flags never mask file values.
    """
    merged: dict[str, Any] = {
        "type": settings.default_type,
        "php": settings.default_php,
        "xdebug": settings.default_xdebug,
        "local": settings.default_local,
        "plugins": list(settings.default_plugins),
    }

    options_file = working_directory / SITE_OPTIONS_FILE
    if options_file.is_file():
        try:
            file_options = json.loads(options_file.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {options_file}: {e}") from e
        if not isinstance(file_options, dict):
            raise ConfigurationError(f"{options_file} must contain a JSON object")
        merged.update(file_options)

    for key, value in (overrides or {}).items():
        if value is not None:
            merged[key] = value

    try:
        return SiteOptions.model_validate(merged)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid site options: {e}") from e
