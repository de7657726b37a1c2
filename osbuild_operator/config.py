"""Configuration objects for osbuild-operator.

The operator is configured from environment variables so that it can be
deployed as a container with settings supplied by the deployment manifest.
Settings are parsed and validated with pydantic-settings.
"""

import logging
from pathlib import Path
from typing import Any, Literal, get_args

from pydantic import (
    Field,
    PositiveFloat,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import InputException

_LOGGER = logging.getLogger(__name__)

DEFAULT_REPOSITORIES_DIR = Path("/etc/osbuild/repositories")
DEFAULT_REQUEUE_SHORT = 10.0
DEFAULT_REQUEUE_LONG = 120.0

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LOG_LEVELS: tuple[str, ...] = get_args(LogLevel)


class OperatorConfig(BaseSettings):
    """Settings shared by all controllers of the operator."""

    model_config = SettingsConfigDict(
        env_ignore_empty=True,
        extra="ignore",
        populate_by_name=True,
    )

    composer_url: str = Field(
        default="http://localhost:8080",
        description="Base URL of the osbuild composer service",
    )
    composer_timeout: PositiveFloat = Field(
        default=30.0,
        description="Timeout in seconds for each request to the composer",
    )

    # Mutual TLS
    composer_ca_file: Path | None = None
    composer_cert_file: Path | None = None
    composer_key_file: Path | None = None

    repositories_dir: Path = Field(
        default=DEFAULT_REPOSITORIES_DIR,
        description="Directory of `<distribution>.json` default repository files",
    )

    requeue_short: PositiveFloat = Field(
        default=DEFAULT_REQUEUE_SHORT, validation_alias="REQUEUE_SHORT_SECONDS"
    )
    requeue_long: PositiveFloat = Field(
        default=DEFAULT_REQUEUE_LONG, validation_alias="REQUEUE_LONG_SECONDS"
    )
    max_concurrent_reconciles: int = Field(default=1, ge=1)

    working_namespace: str | None = Field(
        default=None,
        description="Only manage objects in this namespace, or all when unset",
    )

    log_level: LogLevel = "INFO"

    @field_validator("log_level", mode="before")
    @classmethod
    def upper_log_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.upper()
        return value

    @model_validator(mode="after")
    def check_client_cert(self) -> "OperatorConfig":
        if bool(self.composer_cert_file) != bool(self.composer_key_file):
            raise ValueError(
                "COMPOSER_CERT_FILE and COMPOSER_KEY_FILE must be set together"
            )
        return self

    @classmethod
    def from_env(cls) -> "OperatorConfig":
        """Build the configuration from environment variables."""
        try:
            config = cls()
        except ValidationError as err:
            raise InputException(f"Invalid operator configuration: {err}") from err
        _LOGGER.debug("Loaded operator config: %s", config)
        return config
