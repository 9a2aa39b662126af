"""Grant or rotate a single resource-scoped permission for an existing user.

Runs independently of the bulk reconciliation pass. A missing database or
user is a soft failure (logged, nothing returned); remote errors propagate
to the caller.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from .gateway import CosmosGateway
from .models import PermissionMode, to_cosmos_permission_mode
from .security import log_security_audit_event

logger = logging.getLogger(__name__)


class PermissionArgumentError(ValueError):
    """Raised when a required permission argument is blank."""

    pass


def _require(value: str | None, argument: str) -> None:
    if value is None or not value.strip():
        logger.error("Invalid permission argument", extra={"argument": argument})
        raise PermissionArgumentError(f"{argument} must not be blank")


class PermissionWorkflow:
    """Permission operations for users provisioned by the reconciler."""

    def __init__(self, gateway: CosmosGateway) -> None:
        self._gateway = gateway

    async def _find_user(self, database: str, user_name: str) -> dict[str, Any] | None:
        db = await self._gateway.find_database(database)
        if db is None:
            logger.error("Database not found", extra={"database": database})
            return None

        logger.info("Checking user", extra={"database": database, "user": user_name})
        user = await self._gateway.find_user(database, user_name)
        if user is None:
            logger.error(
                "User does not exist in database",
                extra={"database": database, "user": user_name},
            )
            return None

        return user

    async def create_or_update_permission(
        self,
        resource_link: str,
        permission_mode: PermissionMode,
        database: str,
        user_name: str,
        resource_partition_key: str | None = None,
    ) -> dict[str, Any] | None:
        """Ensure ``user_name`` holds ``permission_mode`` on ``resource_link``.

        - No permission on the link: a new one is created with a fresh id.
        - Permission with the same mode: returned unchanged.
        - Permission with another mode: its mode is replaced, id kept.

        Args:
            resource_link: Link of the resource the permission is scoped to.
            permission_mode: Access level to grant.
            database: Database holding the user.
            user_name: User to grant the permission to.
            resource_partition_key: Optional partition key value to scope to.

        Returns:
            The permission as stored, or None if the database or user does
            not exist.

        Raises:
            PermissionArgumentError: If resource_link, database or user_name is blank.
        """
        _require(resource_link, "resource_link")
        _require(database, "database")
        _require(user_name, "user_name")

        mode = to_cosmos_permission_mode(permission_mode)

        user = await self._find_user(database, user_name)
        if user is None:
            log_security_audit_event(
                "permission_grant",
                database=database,
                user_name=user_name,
                resource_link=resource_link,
                action="none",
                result="not_found",
                permission_mode=mode,
            )
            return None

        logger.info(
            "Checking permission",
            extra={"database": database, "user": user_name, "resource_link": resource_link},
        )
        existing = await self._gateway.find_permission(database, user_name, resource_link)

        if existing is None:
            body: dict[str, Any] = {
                "id": str(uuid.uuid4()),
                "permissionMode": mode,
                "resource": resource_link,
            }
            if resource_partition_key:
                logger.info("Scoping permission to resource partition key")
                body["resourcePartitionKey"] = [resource_partition_key]

            permission = await self._gateway.create_permission(database, user_name, body)
            action = "create"
        elif existing.get("permissionMode") == mode:
            logger.info(
                "Permission already exists",
                extra={"database": database, "user": user_name, "resource_link": resource_link},
            )
            log_security_audit_event(
                "permission_grant",
                database=database,
                user_name=user_name,
                resource_link=resource_link,
                action="none",
                result="unchanged",
                permission_mode=mode,
            )
            return existing
        else:
            logger.info(
                "Permission exists with another mode, replacing it",
                extra={
                    "database": database,
                    "user": user_name,
                    "resource_link": resource_link,
                    "from_mode": existing.get("permissionMode"),
                    "to_mode": mode,
                },
            )
            permission = await self._gateway.replace_permission(
                database, user_name, {**existing, "permissionMode": mode}
            )
            action = "replace"

        log_security_audit_event(
            "permission_grant",
            database=database,
            user_name=user_name,
            resource_link=resource_link,
            action=action,
            result="success",
            permission_mode=mode,
        )
        return permission

    async def list_permissions(self, database: str, user_name: str) -> list[dict[str, Any]] | None:
        """List every permission held by a user.

        Returns:
            The user's permissions, or None if the database or user does not exist.

        Raises:
            PermissionArgumentError: If database or user_name is blank.
        """
        _require(database, "database")
        _require(user_name, "user_name")

        user = await self._find_user(database, user_name)
        if user is None:
            return None

        return await self._gateway.list_permissions(database, user_name)
