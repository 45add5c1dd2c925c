"""Configuration management with validation.

Configuration is loaded once from the environment and validated at
construction time, so a misconfigured controller fails at startup rather
than halfway through a reconciliation.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from enum import Enum


class BackendErrorPolicy(str, Enum):
    """How backend errors are classified."""

    ALWAYS_RETRY = "always-retry"
    STATUS_CODE = "status-code"


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_FINALIZER = "functions.ibmcloud.ibm.com"
DEFAULT_CREDENTIALS_SECRET = "seed-defaults-owprops"
DEFAULT_API_GROUP = "ibmcloud.ibm.com"
DEFAULT_API_VERSION = "v1alpha1"

DEFAULT_REQUEST_TIMEOUT_SECONDS = 30
MIN_REQUEST_TIMEOUT_SECONDS = 1
MAX_REQUEST_TIMEOUT_SECONDS = 300

# Input validation patterns
VALID_FINALIZER_PATTERN = r"^[a-z0-9]([-a-z0-9.]*[a-z0-9])?(/[-a-zA-Z0-9_.]+)?$"
VALID_SECRET_NAME_PATTERN = r"^[a-z0-9]([-a-z0-9.]{0,251}[a-z0-9])?$"
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Config:
    """Controller configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Finalizer token owned by this controller
    finalizer: str = DEFAULT_FINALIZER

    # Secret used when a Rule does not name one in contextFrom
    default_credentials_secret: str = DEFAULT_CREDENTIALS_SECRET

    # Custom resource coordinates
    api_group: str = DEFAULT_API_GROUP
    api_version: str = DEFAULT_API_VERSION

    # Backend
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS
    backend_error_policy: BackendErrorPolicy = BackendErrorPolicy.ALWAYS_RETRY

    # Logging
    log_level: str = "INFO"
    enable_json_logging: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.finalizer:
            errors.append("RULE_FINALIZER is required")
        elif not re.match(VALID_FINALIZER_PATTERN, self.finalizer):
            errors.append(f"RULE_FINALIZER is not a qualified name: {self.finalizer}")

        if not self.default_credentials_secret:
            errors.append("DEFAULT_CREDENTIALS_SECRET is required")
        elif not re.match(VALID_SECRET_NAME_PATTERN, self.default_credentials_secret):
            errors.append(
                f"DEFAULT_CREDENTIALS_SECRET is not a valid object name: "
                f"{self.default_credentials_secret}"
            )

        if not self.api_group:
            errors.append("API_GROUP is required")
        if not self.api_version:
            errors.append("API_VERSION is required")

        if not (
            MIN_REQUEST_TIMEOUT_SECONDS
            <= self.request_timeout_seconds
            <= MAX_REQUEST_TIMEOUT_SECONDS
        ):
            errors.append(
                f"WHISK_REQUEST_TIMEOUT must be between {MIN_REQUEST_TIMEOUT_SECONDS} "
                f"and {MAX_REQUEST_TIMEOUT_SECONDS} seconds"
            )

        if self.log_level not in VALID_LOG_LEVELS:
            errors.append(f"LOG_LEVEL must be one of {list(VALID_LOG_LEVELS)}: {self.log_level}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def api_version_string(self) -> str:
        """Group/version string used in manifests."""
        return f"{self.api_group}/{self.api_version}"

    @property
    def logging_level(self) -> int:
        return logging.getLevelName(self.log_level)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            RULE_FINALIZER: Finalizer token (default: functions.ibmcloud.ibm.com)
            DEFAULT_CREDENTIALS_SECRET: Fallback credentials secret
                (default: seed-defaults-owprops)
            API_GROUP: Custom resource group (default: ibmcloud.ibm.com)
            API_VERSION: Custom resource version (default: v1alpha1)
            WHISK_REQUEST_TIMEOUT: Backend request timeout in seconds (default: 30)
            BACKEND_ERROR_POLICY: always-retry or status-code (default: always-retry)
            LOG_LEVEL: Root log level (default: INFO)
            ENABLE_JSON_LOGGING: Emit JSON log lines (default: true)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        def get_policy(value: str | None) -> BackendErrorPolicy:
            if not value:
                return BackendErrorPolicy.ALWAYS_RETRY
            try:
                return BackendErrorPolicy(value)
            except ValueError as e:
                valid = [p.value for p in BackendErrorPolicy]
                raise ConfigurationError(
                    f"BACKEND_ERROR_POLICY must be one of {valid}: {value}"
                ) from e

        return cls(
            finalizer=os.environ.get("RULE_FINALIZER", DEFAULT_FINALIZER),
            default_credentials_secret=os.environ.get(
                "DEFAULT_CREDENTIALS_SECRET", DEFAULT_CREDENTIALS_SECRET
            ),
            api_group=os.environ.get("API_GROUP", DEFAULT_API_GROUP),
            api_version=os.environ.get("API_VERSION", DEFAULT_API_VERSION),
            request_timeout_seconds=get_int(
                "WHISK_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT_SECONDS
            ),
            backend_error_policy=get_policy(os.environ.get("BACKEND_ERROR_POLICY")),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            enable_json_logging=get_bool("ENABLE_JSON_LOGGING", True),
        )
