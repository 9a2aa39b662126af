"""Tests for the cosmos-provision command line."""

from __future__ import annotations

import json
import logging
from collections.abc import Generator
from pathlib import Path

import pytest
from click.testing import CliRunner
from conftest import TEST_CONNECTION_STRING
from cosmos_mock import MockCosmosContext

from provisioner.cli import cli


@pytest.fixture(autouse=True)
def restore_logging() -> Generator[None, None, None]:
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "cosmos.json"
    path.write_text(
        json.dumps(
            {
                "databases": [
                    {
                        "name": "orders",
                        "collections": [{"name": "items", "resourceUnits": 400}],
                        "users": [{"name": "svc"}],
                    }
                ]
            }
        )
    )
    return path


class TestCli:
    """Tests for CLI commands."""

    def test_help(self) -> None:
        result = CliRunner().invoke(cli, ["--help"])

        assert result.exit_code == 0
        for command in ("provision", "grant-permission", "list-permissions", "validate"):
            assert command in result.output

    def test_version(self) -> None:
        result = CliRunner().invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_validate(self, config_file: Path) -> None:
        result = CliRunner().invoke(cli, ["validate", "--config-file", str(config_file)])

        assert result.exit_code == 0

    def test_validate_invalid_document(self, tmp_path: Path) -> None:
        path = tmp_path / "cosmos.json"
        path.write_text(json.dumps({"databases": [{"name": "a"}, {"name": "a"}]}))

        result = CliRunner().invoke(cli, ["validate", "-f", str(path)])

        assert result.exit_code == 1

    def test_provision(self, config_file: Path) -> None:
        with MockCosmosContext() as ctx:
            result = CliRunner().invoke(
                cli,
                [
                    "provision",
                    "--connection-string",
                    TEST_CONNECTION_STRING,
                    "--config-file",
                    str(config_file),
                    "--retry-count",
                    "2",
                ],
            )

            assert result.exit_code == 0, result.output
            assert ctx.state.create_count == 3
            assert ctx.clients[0].options["retry_total"] == 2

    def test_provision_connection_string_from_env(self, config_file: Path) -> None:
        with MockCosmosContext() as ctx:
            result = CliRunner().invoke(
                cli,
                ["provision", "-f", str(config_file), "--update"],
                env={"COSMOS_CONNECTION_STRING": TEST_CONNECTION_STRING},
            )

            assert result.exit_code == 0, result.output
            assert ctx.state.calls_of("create_database") == ["orders"]

    def test_malformed_connection_string(self, config_file: Path) -> None:
        """Test a malformed connection string fails before any remote call."""
        with MockCosmosContext() as ctx:
            result = CliRunner().invoke(
                cli,
                ["provision", "-c", "AccountEndpoint=https://a/;", "-f", str(config_file)],
            )

            assert result.exit_code == 1
            assert "AccountKey=" in result.output
            assert ctx.clients == []

    def test_missing_connection_string(self, config_file: Path) -> None:
        result = CliRunner().invoke(
            cli, ["provision", "-f", str(config_file)], env={"COSMOS_CONNECTION_STRING": ""}
        )

        assert result.exit_code == 2

    def test_grant_permission_case_insensitive_mode(self) -> None:
        with MockCosmosContext() as ctx:
            ctx.state.add_user("orders", "svc")

            result = CliRunner().invoke(
                cli,
                [
                    "grant-permission",
                    "-c",
                    TEST_CONNECTION_STRING,
                    "--database",
                    "orders",
                    "--user",
                    "svc",
                    "--resource-link",
                    "dbs/orders/colls/items",
                    "--permission-mode",
                    "all",
                    "--resource-partition-key",
                    "tenant-1",
                ],
            )

            assert result.exit_code == 0, result.output
            (permission,) = ctx.state.user("orders", "svc").permissions.values()
            assert permission["permissionMode"] == "All"
            assert permission["resourcePartitionKey"] == ["tenant-1"]

    def test_grant_permission_invalid_mode(self) -> None:
        result = CliRunner().invoke(
            cli,
            [
                "grant-permission",
                "-c",
                TEST_CONNECTION_STRING,
                "-d",
                "orders",
                "-u",
                "svc",
                "-r",
                "dbs/orders/colls/items",
                "-m",
                "Write",
            ],
        )

        assert result.exit_code == 2

    def test_list_permissions(self) -> None:
        with MockCosmosContext() as ctx:
            ctx.state.add_user("orders", "svc")
            ctx.state.add_permission(
                "orders",
                "svc",
                {"id": "p1", "permissionMode": "Read", "resource": "dbs/orders/colls/items"},
            )

            result = CliRunner().invoke(
                cli,
                [
                    "--log-level",
                    "ERROR",
                    "list-permissions",
                    "-c",
                    TEST_CONNECTION_STRING,
                    "-d",
                    "orders",
                    "-u",
                    "svc",
                ],
            )

            assert result.exit_code == 0, result.output
            listed = [json.loads(line) for line in result.output.splitlines()]
            assert [p["id"] for p in listed] == ["p1"]
