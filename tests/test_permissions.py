"""Tests for granting and listing user permissions."""

from __future__ import annotations

import logging
import uuid

import pytest
from cosmos_mock import MockCosmosContext

from provisioner.config import ConnectionSettings
from provisioner.gateway import CosmosGateway
from provisioner.models import PermissionMode
from provisioner.permissions import PermissionArgumentError, PermissionWorkflow

LINK = "dbs/orders/colls/items"


async def _grant(
    settings: ConnectionSettings,
    mode: PermissionMode,
    *,
    database: str = "orders",
    user_name: str = "svc",
    resource_link: str = LINK,
    resource_partition_key: str | None = None,
) -> dict | None:
    async with CosmosGateway(settings) as gateway:
        return await PermissionWorkflow(gateway).create_or_update_permission(
            resource_link,
            mode,
            database,
            user_name,
            resource_partition_key=resource_partition_key,
        )


class TestCreateOrUpdatePermission:
    """Tests for PermissionWorkflow.create_or_update_permission."""

    @pytest.mark.asyncio
    async def test_creates_permission(self, connection_settings: ConnectionSettings) -> None:
        """Test a new permission gets a fresh id and the requested mode."""
        with MockCosmosContext() as ctx:
            ctx.state.add_user("orders", "svc")

            permission = await _grant(connection_settings, PermissionMode.READ)

            assert permission is not None
            uuid.UUID(permission["id"])
            assert permission["permissionMode"] == "Read"
            assert permission["resource"] == LINK
            assert "resourcePartitionKey" not in permission
            assert len(ctx.state.user("orders", "svc").permissions) == 1

    @pytest.mark.asyncio
    async def test_scoped_to_partition_key(self, connection_settings: ConnectionSettings) -> None:
        with MockCosmosContext() as ctx:
            ctx.state.add_user("orders", "svc")

            permission = await _grant(
                connection_settings, PermissionMode.ALL, resource_partition_key="tenant-1"
            )

            assert permission is not None
            assert permission["resourcePartitionKey"] == ["tenant-1"]

    @pytest.mark.asyncio
    async def test_same_mode_is_noop(self, connection_settings: ConnectionSettings) -> None:
        """Test granting the same mode twice changes nothing."""
        with MockCosmosContext() as ctx:
            ctx.state.add_user("orders", "svc")

            first = await _grant(connection_settings, PermissionMode.READ)
            second = await _grant(connection_settings, PermissionMode.READ)

            assert first is not None and second is not None
            assert second["id"] == first["id"]
            assert ctx.state.calls_of("create_permission") == [f"orders/svc/{first['id']}"]
            assert ctx.state.calls_of("replace_permission") == []

    @pytest.mark.asyncio
    async def test_mode_change_replaces_in_place(
        self, connection_settings: ConnectionSettings
    ) -> None:
        """Test a different mode replaces the permission and keeps its id."""
        with MockCosmosContext() as ctx:
            ctx.state.add_user("orders", "svc")

            first = await _grant(connection_settings, PermissionMode.READ)
            second = await _grant(connection_settings, PermissionMode.ALL)

            assert first is not None and second is not None
            assert second["id"] == first["id"]
            assert second["permissionMode"] == "All"
            assert ctx.state.calls_of("replace_permission") == [f"orders/svc/{first['id']}"]
            permissions = ctx.state.user("orders", "svc").permissions
            assert len(permissions) == 1
            assert permissions[first["id"]]["permissionMode"] == "All"

    @pytest.mark.asyncio
    async def test_missing_user(
        self, connection_settings: ConnectionSettings, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test a missing user returns None and is audited."""
        with MockCosmosContext() as ctx:
            ctx.state.add_database("orders")

            with caplog.at_level(logging.INFO):
                permission = await _grant(connection_settings, PermissionMode.READ)

            assert permission is None
            assert ctx.state.calls == []
            audits = [r for r in caplog.records if getattr(r, "security_audit", False)]
            assert audits[-1].result == "not_found"

    @pytest.mark.asyncio
    async def test_missing_database(self, connection_settings: ConnectionSettings) -> None:
        with MockCosmosContext() as ctx:
            permission = await _grant(connection_settings, PermissionMode.READ)

            assert permission is None
            assert ctx.state.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "kwargs",
        [{"resource_link": ""}, {"database": " "}, {"user_name": ""}],
    )
    async def test_blank_arguments_rejected(
        self, connection_settings: ConnectionSettings, kwargs: dict[str, str]
    ) -> None:
        with MockCosmosContext() as ctx:
            with pytest.raises(PermissionArgumentError):
                await _grant(connection_settings, PermissionMode.READ, **kwargs)

            assert ctx.clients == []


class TestListPermissions:
    """Tests for PermissionWorkflow.list_permissions."""

    @pytest.mark.asyncio
    async def test_lists_permissions(self, connection_settings: ConnectionSettings) -> None:
        with MockCosmosContext() as ctx:
            ctx.state.add_user("orders", "svc")
            ctx.state.add_permission(
                "orders", "svc", {"id": "p1", "permissionMode": "Read", "resource": LINK}
            )
            ctx.state.add_permission(
                "orders",
                "svc",
                {"id": "p2", "permissionMode": "All", "resource": "dbs/orders/colls/lines"},
            )

            async with CosmosGateway(connection_settings) as gateway:
                permissions = await PermissionWorkflow(gateway).list_permissions("orders", "svc")

            assert permissions is not None
            assert sorted(p["id"] for p in permissions) == ["p1", "p2"]

    @pytest.mark.asyncio
    async def test_missing_user(self, connection_settings: ConnectionSettings) -> None:
        with MockCosmosContext() as ctx:
            ctx.state.add_database("orders")

            async with CosmosGateway(connection_settings) as gateway:
                permissions = await PermissionWorkflow(gateway).list_permissions("orders", "svc")

            assert permissions is None
