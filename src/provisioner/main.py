"""Request execution and logging setup for the provisioner.

The command line builds exactly one request variant; ``execute`` dispatches
on it once and returns the process exit code:

    0  success
    1  configuration, validation, lookup, or apply failure
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime

from .config import ConfigurationError
from .gateway import CosmosGateway
from .models import (
    GrantPermissionRequest,
    ListPermissionsRequest,
    ProvisionRequest,
    Request,
    ValidateConfigRequest,
    validate_config,
)
from .permissions import PermissionArgumentError, PermissionWorkflow
from .reconciler import Reconciler
from .security import redact_connection_string
from .spec_loader import ConfigLoadError, load_config

logger = logging.getLogger(__name__)

_STANDARD_RECORD_FIELDS = frozenset(
    (
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    )
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": redact_connection_string(record.getMessage()),
            "logger": record.name,
        }

        # Add extra fields from the record
        for key, value in record.__dict__.items():
            if key not in _STANDARD_RECORD_FIELDS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: str = "INFO", log_format: str = "json") -> None:
    """Configure logging on stdout.

    Args:
        level: Root log level name.
        log_format: ``json`` for structured output, ``text`` for humans.
    """
    handler = logging.StreamHandler(sys.stdout)
    if log_format == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s")
        )

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    # Reduce noise from Azure SDK
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


async def run_provision(request: ProvisionRequest) -> int:
    """Load, validate, and apply a configuration document."""
    try:
        config = load_config(request.config_file)
    except ConfigLoadError as e:
        logger.error("Failed to load configuration", extra={"error": str(e)})
        return 1

    report = validate_config(config)
    if not report.ok:
        logger.error(
            "Configuration validation failed, nothing applied",
            extra={"errors": report.errors, "config_file": str(request.config_file)},
        )
        return 1

    logger.info(
        "Validated configuration, proceeding with deployment",
        extra={
            "account": request.connection.account_host,
            "allow_update": request.allow_update,
        },
    )

    async with CosmosGateway(request.connection) as gateway:
        reconciler = Reconciler(
            gateway,
            allow_update=request.allow_update,
            script_root=request.config_file.resolve().parent,
        )
        result = await reconciler.apply(config)

    for failure in result.failures:
        logger.warning(
            "Entity not converged",
            extra={"kind": failure.kind.value, "entity": failure.name, "detail": failure.detail},
        )

    return 0 if result.success else 1


async def run_grant_permission(request: GrantPermissionRequest) -> int:
    """Create or rotate one permission."""
    async with CosmosGateway(request.connection) as gateway:
        permission = await PermissionWorkflow(gateway).create_or_update_permission(
            request.resource_link,
            request.permission_mode,
            request.database,
            request.user_name,
            resource_partition_key=request.resource_partition_key,
        )

    if permission is None:
        return 1

    logger.info(
        "Permission in place",
        extra={
            "permission_id": permission.get("id"),
            "permission_mode": permission.get("permissionMode"),
            "resource_link": permission.get("resource"),
        },
    )
    return 0


async def run_list_permissions(request: ListPermissionsRequest) -> int:
    """Print a user's permissions as JSON lines on stdout."""
    async with CosmosGateway(request.connection) as gateway:
        permissions = await PermissionWorkflow(gateway).list_permissions(
            request.database, request.user_name
        )

    if permissions is None:
        return 1

    for permission in permissions:
        # Resource tokens are credentials, never print them
        visible = {k: v for k, v in permission.items() if k != "_token"}
        print(json.dumps(visible, default=str))
    return 0


def run_validate(request: ValidateConfigRequest) -> int:
    """Validate a configuration document without contacting the account."""
    try:
        config = load_config(request.config_file)
    except ConfigLoadError as e:
        logger.error("Failed to load configuration", extra={"error": str(e)})
        return 1

    report = validate_config(config)
    if report.ok:
        logger.info(
            "Configuration is valid",
            extra={"config_file": str(request.config_file), "warnings": len(report.warnings)},
        )
        return 0
    return 1


async def execute(request: Request) -> int:
    """Run one request and return the process exit code."""
    try:
        match request:
            case ProvisionRequest():
                return await run_provision(request)
            case GrantPermissionRequest():
                return await run_grant_permission(request)
            case ListPermissionsRequest():
                return await run_list_permissions(request)
            case ValidateConfigRequest():
                return run_validate(request)
            case _:
                raise TypeError(f"Unsupported request: {type(request).__name__}")

    except (ConfigurationError, PermissionArgumentError) as e:
        logger.error("Invalid arguments", extra={"error": str(e)})
        return 1

    except Exception as e:
        # Unexpected error - log with full traceback for debugging
        logger.exception("Provisioner failed unexpectedly", extra={"error": str(e)})
        return 1
