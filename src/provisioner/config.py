"""Configuration management with validation.

Connection settings are parsed and validated at the boundary so that a
malformed connection string fails before any call reaches the account.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from urllib.parse import urlparse


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Throttling retry policy handed to the Cosmos client
DEFAULT_RETRY_COUNT = 9
DEFAULT_RETRY_INTERVAL_SECONDS = 30
MAX_RETRY_COUNT = 100
MAX_RETRY_INTERVAL_SECONDS = 600

# Size limits for files read from disk
MAX_CONFIG_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max configuration document
MAX_SCRIPT_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max stored procedure body

# Connection string segments
ACCOUNT_ENDPOINT_PREFIX = "AccountEndpoint="
ACCOUNT_KEY_PREFIX = "AccountKey="
CONNECTION_STRING_SEPARATOR = ";"

CONNECTION_STRING_ENV_VAR = "COSMOS_CONNECTION_STRING"


def parse_connection_string(connection_string: str) -> tuple[str, str]:
    """Split a connection string into account endpoint and account key.

    Args:
        connection_string: ``AccountEndpoint=...;AccountKey=...;`` style string.

    Returns:
        Tuple of (endpoint, key).

    Raises:
        ConfigurationError: If either segment is missing or empty.
    """
    endpoint = ""
    key = ""

    for segment in (connection_string or "").split(CONNECTION_STRING_SEPARATOR):
        segment = segment.strip()
        if segment.startswith(ACCOUNT_ENDPOINT_PREFIX):
            endpoint = segment[len(ACCOUNT_ENDPOINT_PREFIX) :].strip()
        elif segment.startswith(ACCOUNT_KEY_PREFIX):
            # Keys are base64 and may end in '=' padding, keep everything after the prefix
            key = segment[len(ACCOUNT_KEY_PREFIX) :].strip()

    if not endpoint or not key:
        raise ConfigurationError(
            "Invalid Cosmos DB connection string: "
            f"'{ACCOUNT_ENDPOINT_PREFIX}' and '{ACCOUNT_KEY_PREFIX}' segments are required"
        )

    return endpoint, key


@dataclass(frozen=True)
class ConnectionSettings:
    """Account connection and throttling retry policy.

    All fields are validated at construction time. Invalid settings
    raise ConfigurationError immediately rather than failing at runtime.
    """

    endpoint: str
    key: str = field(repr=False)

    # Throttling retries are absorbed by the client, never by the reconciler
    retry_count: int = DEFAULT_RETRY_COUNT
    retry_interval_seconds: int = DEFAULT_RETRY_INTERVAL_SECONDS

    def __post_init__(self) -> None:
        errors: list[str] = []

        if not self.endpoint:
            errors.append("Account endpoint is required")
        else:
            parsed = urlparse(self.endpoint)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                errors.append(f"Account endpoint must be an http(s) URL: {self.endpoint}")

        if not self.key:
            errors.append("Account key is required")

        if not (0 <= self.retry_count <= MAX_RETRY_COUNT):
            errors.append(f"Retry count must be between 0 and {MAX_RETRY_COUNT}")

        if not (0 <= self.retry_interval_seconds <= MAX_RETRY_INTERVAL_SECONDS):
            errors.append(
                f"Retry interval must be between 0 and {MAX_RETRY_INTERVAL_SECONDS} seconds"
            )

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def account_host(self) -> str:
        """Host name of the account, safe to log."""
        return urlparse(self.endpoint).netloc

    @classmethod
    def from_connection_string(
        cls,
        connection_string: str,
        *,
        retry_count: int = DEFAULT_RETRY_COUNT,
        retry_interval_seconds: int = DEFAULT_RETRY_INTERVAL_SECONDS,
    ) -> ConnectionSettings:
        """Build settings from a connection string.

        Raises:
            ConfigurationError: If the connection string or retry policy is invalid.
        """
        endpoint, key = parse_connection_string(connection_string)
        return cls(
            endpoint=endpoint,
            key=key,
            retry_count=retry_count,
            retry_interval_seconds=retry_interval_seconds,
        )

    @classmethod
    def from_env(cls) -> ConnectionSettings:
        """Load settings from environment variables.

        Environment Variables:
            COSMOS_CONNECTION_STRING: Account connection string (required)
            COSMOS_RETRY_COUNT: Retries on throttled requests (default: 9)
            COSMOS_RETRY_INTERVAL: Max retry wait in seconds (default: 30)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None or value == "":
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        connection_string = os.environ.get(CONNECTION_STRING_ENV_VAR, "")
        if not connection_string:
            raise ConfigurationError(f"{CONNECTION_STRING_ENV_VAR} is required")

        return cls.from_connection_string(
            connection_string,
            retry_count=get_int("COSMOS_RETRY_COUNT", DEFAULT_RETRY_COUNT),
            retry_interval_seconds=get_int("COSMOS_RETRY_INTERVAL", DEFAULT_RETRY_INTERVAL_SECONDS),
        )
