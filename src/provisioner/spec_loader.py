"""Configuration document loading with validation.

SECURITY: All file operations enforce size limits to prevent DoS attacks
via large files. Input validation is performed at the boundary.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from .config import MAX_CONFIG_FILE_SIZE_BYTES
from .models import DeploymentConfig

logger = logging.getLogger(__name__)


class ConfigLoadError(Exception):
    """Raised when the configuration document cannot be loaded or parsed."""

    pass


def load_config(config_path: Path) -> DeploymentConfig:
    """Load and parse a configuration document.

    ``.json`` documents are parsed as JSON, anything else as YAML.

    Args:
        config_path: Path to the configuration document.

    Returns:
        Parsed configuration. Structural validation (duplicates, partition
        keys) is left to ``validate_config``.

    Raises:
        ConfigLoadError: If the document cannot be read or parsed.
    """
    if not config_path.exists():
        raise ConfigLoadError(f"Configuration file not found: {config_path}")

    # SECURITY: Check file size before reading to prevent DoS
    try:
        file_size = config_path.stat().st_size
    except OSError as e:
        raise ConfigLoadError(f"Failed to stat configuration file {config_path}: {e}") from e

    if file_size > MAX_CONFIG_FILE_SIZE_BYTES:
        raise ConfigLoadError(
            f"Configuration file exceeds maximum size of {MAX_CONFIG_FILE_SIZE_BYTES} bytes: "
            f"{config_path}"
        )

    try:
        content = config_path.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigLoadError(f"Failed to read configuration file {config_path}: {e}") from e

    if config_path.suffix.lower() == ".json":
        try:
            raw_data = json.loads(content)
        except json.JSONDecodeError as e:
            raise ConfigLoadError(f"Invalid JSON in {config_path}: {e}") from e
    else:
        try:
            raw_data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ConfigLoadError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise ConfigLoadError(f"Configuration file must contain a mapping: {config_path}")

    try:
        config = DeploymentConfig.model_validate(raw_data)
    except ValidationError as e:
        # Format Pydantic validation errors for readability
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            msg = error["msg"]
            errors.append(f"  - {loc}: {msg}")

        error_list = "\n".join(errors)
        raise ConfigLoadError(f"Validation failed for {config_path}:\n{error_list}") from e

    logger.info(
        "Loaded configuration from %s",
        config_path,
        extra={
            "databases": len(config.databases),
            "collections": config.collection_count(),
        },
    )
    return config
