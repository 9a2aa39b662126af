"""Cosmos DB API Mock for Integration Testing.

This module provides a mock implementation of the azure.cosmos.aio client
that enables integration testing without a live account.

Key Features:
- In-memory databases, collections, offers, stored procedures, users and permissions
- Ordered log of every mutating call
- Per-operation error injection

Usage:
    from cosmos_mock import MockCosmosContext

    with MockCosmosContext() as ctx:
        async with CosmosGateway(settings) as gateway:
            await Reconciler(gateway).apply(config)

        assert ctx.state.create_count == 3
"""

from .client import MockCosmosClient, MockPermission, MockThroughputProperties
from .context import MockCosmosContext
from .state import MockAccountState, MockCollection, MockDatabase, MockUser, server_error

__all__ = [
    "MockAccountState",
    "MockCollection",
    "MockCosmosClient",
    "MockCosmosContext",
    "MockDatabase",
    "MockPermission",
    "MockThroughputProperties",
    "MockUser",
    "server_error",
]
