"""Cosmos DB provisioner CLI (cosmos-provision).

Usage:
    cosmos-provision provision --config-file cosmos.json --update
    cosmos-provision grant-permission --database orders --user svc \\
        --resource-link dbs/orders/colls/items --permission-mode Read
    cosmos-provision list-permissions --database orders --user svc
    cosmos-provision validate --config-file cosmos.json

The connection string is read from --connection-string or the
COSMOS_CONNECTION_STRING environment variable.
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click

from .config import (
    CONNECTION_STRING_ENV_VAR,
    DEFAULT_RETRY_COUNT,
    DEFAULT_RETRY_INTERVAL_SECONDS,
    ConfigurationError,
    ConnectionSettings,
)
from .main import execute, setup_logging
from .models import (
    GrantPermissionRequest,
    ListPermissionsRequest,
    PermissionMode,
    ProvisionRequest,
    Request,
    ValidateConfigRequest,
)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
LOG_FORMATS = ("json", "text")


def connection_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by every command that talks to the account."""
    func = click.option(
        "--retry-interval",
        envvar="COSMOS_RETRY_INTERVAL",
        type=click.IntRange(min=0),
        default=DEFAULT_RETRY_INTERVAL_SECONDS,
        show_default=True,
        help="Max wait in seconds across throttling retries",
    )(func)
    func = click.option(
        "--retry-count",
        envvar="COSMOS_RETRY_COUNT",
        type=click.IntRange(min=0),
        default=DEFAULT_RETRY_COUNT,
        show_default=True,
        help="Retries on throttled requests",
    )(func)
    func = click.option(
        "--connection-string",
        "-c",
        envvar=CONNECTION_STRING_ENV_VAR,
        required=True,
        help=f"Account connection string (or set {CONNECTION_STRING_ENV_VAR})",
    )(func)
    return func


def build_connection(
    connection_string: str, retry_count: int, retry_interval: int
) -> ConnectionSettings:
    """Parse connection settings.

    Raises:
        click.ClickException: If the connection string or retry policy is invalid.
    """
    try:
        return ConnectionSettings.from_connection_string(
            connection_string,
            retry_count=retry_count,
            retry_interval_seconds=retry_interval,
        )
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


def run_request(request: Request) -> None:
    """Execute a request and exit with its status code."""
    sys.exit(asyncio.run(execute(request)))


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="cosmos-provision")
@click.option("--log-level", type=click.Choice(LOG_LEVELS), default="INFO", show_default=True)
@click.option("--log-format", type=click.Choice(LOG_FORMATS), default="json", show_default=True)
def cli(log_level: str, log_format: str) -> None:
    """Declarative provisioning for Cosmos DB accounts.

    \b
    Quick Start:
        cosmos-provision validate -f cosmos.json
        cosmos-provision provision -f cosmos.json --update
    """
    setup_logging(level=log_level, log_format=log_format)


@cli.command()
@connection_options
@click.option(
    "--config-file",
    "-f",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="Configuration document (JSON or YAML)",
)
@click.option(
    "--update/--no-update",
    default=False,
    show_default=True,
    help="Update resources that already exist",
)
def provision(
    connection_string: str,
    retry_count: int,
    retry_interval: int,
    config_file: Path,
    update: bool,
) -> None:
    """Create or update databases, collections, stored procedures and users."""
    connection = build_connection(connection_string, retry_count, retry_interval)
    run_request(
        ProvisionRequest(connection=connection, config_file=config_file, allow_update=update)
    )


@cli.command("grant-permission")
@connection_options
@click.option("--database", "-d", required=True, help="Database holding the user")
@click.option("--user", "-u", "user_name", required=True, help="User to grant to")
@click.option("--resource-link", "-r", required=True, help="Link of the resource to scope to")
@click.option(
    "--permission-mode",
    "-m",
    type=click.Choice([m.value for m in PermissionMode], case_sensitive=False),
    required=True,
    help="Access level",
)
@click.option("--resource-partition-key", default=None, help="Partition key value to scope to")
def grant_permission(
    connection_string: str,
    retry_count: int,
    retry_interval: int,
    database: str,
    user_name: str,
    resource_link: str,
    permission_mode: str,
    resource_partition_key: str | None,
) -> None:
    """Create a permission for a user, or update its mode."""
    connection = build_connection(connection_string, retry_count, retry_interval)
    run_request(
        GrantPermissionRequest(
            connection=connection,
            database=database,
            user_name=user_name,
            resource_link=resource_link,
            permission_mode=PermissionMode.parse(permission_mode),
            resource_partition_key=resource_partition_key,
        )
    )


@cli.command("list-permissions")
@connection_options
@click.option("--database", "-d", required=True, help="Database holding the user")
@click.option("--user", "-u", "user_name", required=True, help="User to list")
def list_permissions(
    connection_string: str,
    retry_count: int,
    retry_interval: int,
    database: str,
    user_name: str,
) -> None:
    """Print a user's permissions as JSON lines."""
    connection = build_connection(connection_string, retry_count, retry_interval)
    run_request(
        ListPermissionsRequest(connection=connection, database=database, user_name=user_name)
    )


@cli.command()
@click.option(
    "--config-file",
    "-f",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="Configuration document (JSON or YAML)",
)
def validate(config_file: Path) -> None:
    """Validate a configuration document without contacting the account."""
    run_request(ValidateConfigRequest(config_file=config_file))


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
