"""Remote resource gateway over the Azure Cosmos DB async client.

The gateway owns a single CosmosClient, created lazily on first use and
reused for every call of a run. Entities are exchanged as the plain dicts
the service returns, looked up by logical id.

Lookups return zero-or-one match. Transport and service errors
(CosmosHttpResponseError, AzureError) propagate unchanged, except on
stored procedure deletion, which reports service errors as a False
result. Throttling is absorbed by the client's own retry policy.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterable
from typing import Any

from azure.cosmos import PartitionKey
from azure.cosmos.aio import CosmosClient, ContainerProxy, DatabaseProxy, UserProxy
from azure.cosmos.exceptions import CosmosHttpResponseError, CosmosResourceNotFoundError

from .config import ConnectionSettings
from .security import mask_secret

logger = logging.getLogger(__name__)

_BY_ID_QUERY = "SELECT * FROM root r WHERE r.id = @id"
_BY_RESOURCE_QUERY = "SELECT * FROM root r WHERE r.resource = @resource"


async def _first(items: AsyncIterable[dict[str, Any]]) -> dict[str, Any] | None:
    async for item in items:
        return item
    return None


def partition_key_paths(definition: dict[str, Any] | None) -> list[str]:
    """Partition key paths of a container definition.

    Legacy non-partitioned containers report a system key; those count as
    having no partition key.
    """
    if not definition:
        return []
    partition_key = definition.get("partitionKey") or {}
    if partition_key.get("systemKey"):
        return []
    return list(partition_key.get("paths") or [])


def _to_partition_key(definition: dict[str, Any]) -> PartitionKey | None:
    paths = partition_key_paths(definition)
    if not paths:
        return None
    partition_key = definition["partitionKey"]
    return PartitionKey(
        path=paths[0] if len(paths) == 1 else paths,
        kind=partition_key.get("kind", "Hash"),
        version=partition_key.get("version", 2),
    )


def _permission_to_dict(permission: Any) -> dict[str, Any]:
    # create/replace return a Permission object, queries return dicts
    if isinstance(permission, dict):
        return permission
    return dict(permission.properties)


class CosmosGateway:
    """Find/create/replace/delete account resources by logical id.

    Usage:
        async with CosmosGateway(settings) as gateway:
            database = await gateway.find_database("orders")
    """

    def __init__(self, settings: ConnectionSettings) -> None:
        self._settings = settings
        self._client: CosmosClient | None = None

    def connect(self) -> CosmosClient:
        """Return the client, creating it on first use."""
        if self._client is None:
            logger.info(
                "Creating Cosmos DB client",
                extra={
                    "account": self._settings.account_host,
                    "account_key": mask_secret(self._settings.key),
                    "retry_count": self._settings.retry_count,
                    "retry_interval_seconds": self._settings.retry_interval_seconds,
                },
            )
            self._client = CosmosClient(
                self._settings.endpoint,
                credential=self._settings.key,
                retry_total=self._settings.retry_count,
                retry_backoff_max=self._settings.retry_interval_seconds,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def __aenter__(self) -> CosmosGateway:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Proxies
    # -------------------------------------------------------------------------

    def _database(self, database: str) -> DatabaseProxy:
        return self.connect().get_database_client(database)

    def _container(self, database: str, collection: str) -> ContainerProxy:
        return self._database(database).get_container_client(collection)

    def _user(self, database: str, user: str) -> UserProxy:
        return self._database(database).get_user_client(user)

    # -------------------------------------------------------------------------
    # Databases
    # -------------------------------------------------------------------------

    async def find_database(self, name: str) -> dict[str, Any] | None:
        return await _first(
            self.connect().query_databases(
                query=_BY_ID_QUERY, parameters=[{"name": "@id", "value": name}]
            )
        )

    async def create_database(self, name: str) -> dict[str, Any]:
        proxy = await self.connect().create_database(name)
        return await proxy.read()

    # -------------------------------------------------------------------------
    # Collections and throughput offers
    # -------------------------------------------------------------------------

    async def find_collection(self, database: str, name: str) -> dict[str, Any] | None:
        return await _first(
            self._database(database).query_containers(
                query=_BY_ID_QUERY, parameters=[{"name": "@id", "value": name}]
            )
        )

    async def create_collection(
        self, database: str, definition: dict[str, Any], throughput: int
    ) -> dict[str, Any]:
        """Create a container with throughput provisioned at creation time."""
        proxy = await self._database(database).create_container(
            definition["id"],
            _to_partition_key(definition),
            indexing_policy=definition.get("indexingPolicy"),
            default_ttl=definition.get("defaultTtl"),
            offer_throughput=throughput,
        )
        return await proxy.read()

    async def replace_collection(self, database: str, definition: dict[str, Any]) -> dict[str, Any]:
        """Replace a container definition.

        The replace is a full-body write: partition key, indexing policy and
        default TTL are all taken from ``definition``.
        """
        # System keys of legacy containers are sent back as read
        partition_key = _to_partition_key(definition) or definition.get("partitionKey")
        proxy = await self._database(database).replace_container(
            definition["id"],
            partition_key,
            indexing_policy=definition.get("indexingPolicy"),
            default_ttl=definition.get("defaultTtl"),
        )
        return await proxy.read()

    async def find_offer(self, database: str, collection: str) -> int | None:
        """Current dedicated throughput of a container, None if it has no offer."""
        try:
            throughput = await self._container(database, collection).get_throughput()
        except (CosmosResourceNotFoundError, IndexError):
            # Depending on the SDK release an empty offer feed surfaces as a 404
            # or as an IndexError from indexing the empty result
            logger.debug(
                "Collection has no dedicated throughput offer",
                extra={"database": database, "collection": collection},
            )
            return None
        return throughput.offer_throughput

    async def replace_offer(self, database: str, collection: str, throughput: int) -> int:
        result = await self._container(database, collection).replace_throughput(throughput)
        return result.offer_throughput

    # -------------------------------------------------------------------------
    # Stored procedures
    # -------------------------------------------------------------------------

    async def find_stored_procedure(
        self, database: str, collection: str, sproc_id: str
    ) -> dict[str, Any] | None:
        return await _first(
            self._container(database, collection).scripts.query_stored_procedures(
                query=_BY_ID_QUERY, parameters=[{"name": "@id", "value": sproc_id}]
            )
        )

    async def create_stored_procedure(
        self, database: str, collection: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        return await self._container(database, collection).scripts.create_stored_procedure(body)

    async def replace_stored_procedure(
        self, database: str, collection: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        return await self._container(database, collection).scripts.replace_stored_procedure(
            body["id"], body
        )

    async def delete_stored_procedure(self, database: str, collection: str, sproc_id: str) -> bool:
        """Delete a stored procedure.

        Returns:
            True if the service confirmed the deletion, False for any
            service error response (not found included). Transport errors
            propagate.
        """
        try:
            await self._container(database, collection).scripts.delete_stored_procedure(sproc_id)
        except CosmosHttpResponseError as e:
            logger.warning(
                "Stored procedure deletion was not confirmed",
                extra={
                    "database": database,
                    "collection": collection,
                    "stored_procedure": sproc_id,
                    "status_code": e.status_code,
                },
            )
            return False
        return True

    # -------------------------------------------------------------------------
    # Users and permissions
    # -------------------------------------------------------------------------

    async def find_user(self, database: str, name: str) -> dict[str, Any] | None:
        return await _first(
            self._database(database).query_users(
                query=_BY_ID_QUERY, parameters=[{"name": "@id", "value": name}]
            )
        )

    async def create_user(self, database: str, name: str) -> dict[str, Any]:
        proxy = await self._database(database).create_user({"id": name})
        return await proxy.read()

    async def replace_user(self, database: str, user: dict[str, Any]) -> dict[str, Any]:
        proxy = await self._database(database).replace_user(user["id"], user)
        return await proxy.read()

    async def find_permission(
        self, database: str, user: str, resource_link: str
    ) -> dict[str, Any] | None:
        return await _first(
            self._user(database, user).query_permissions(
                query=_BY_RESOURCE_QUERY,
                parameters=[{"name": "@resource", "value": resource_link}],
            )
        )

    async def list_permissions(self, database: str, user: str) -> list[dict[str, Any]]:
        return [p async for p in self._user(database, user).list_permissions()]

    async def create_permission(
        self, database: str, user: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        permission = await self._user(database, user).create_permission(body)
        return _permission_to_dict(permission)

    async def replace_permission(
        self, database: str, user: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        permission = await self._user(database, user).replace_permission(body["id"], body)
        return _permission_to_dict(permission)
