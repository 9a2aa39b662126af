"""Reconciliation of a Cosmos DB account against a configuration document.

For each entity the reconciler compares the desired definition with what
exists on the account and decides to create, update, skip, or reject:

    Database          absent -> create, present -> reuse
    Collection        absent -> create, present -> skip or update
    Stored procedure  absent -> create, present -> skip, replace, or
                      delete-then-create on partitioned collections
    User              absent -> create, present -> skip or replace

Within a database all collections (and their stored procedures) are
reconciled before any user. Databases follow the order of the document.
Every remote call is awaited before the next one is issued.

ERROR POLICY: the first fatal error (partition key change, unreadable
stored procedure script, remote error) aborts the remaining run. Nothing
already applied is rolled back. A stored procedure whose deletion does not
succeed is recorded as a failure and the run continues.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from azure.core.exceptions import AzureError, HttpResponseError

from .config import MAX_SCRIPT_FILE_SIZE_BYTES
from .gateway import CosmosGateway, partition_key_paths
from .models import (
    CollectionSpec,
    DatabaseSpec,
    DeploymentConfig,
    UserSpec,
    build_collection_definition,
)

logger = logging.getLogger(__name__)


class ReconciliationError(Exception):
    """Raised when an entity cannot be converged; aborts the run."""

    pass


class PartitionKeyChangeError(ReconciliationError):
    """Raised when an update would change an existing partition key."""

    pass


class StoredProcedureScriptError(ReconciliationError):
    """Raised when a stored procedure script cannot be read."""

    pass


class EntityKind(str, Enum):
    DATABASE = "database"
    COLLECTION = "collection"
    STORED_PROCEDURE = "storedProcedure"
    USER = "user"


class ReconcileAction(str, Enum):
    """What the reconciler did with an entity."""

    CREATED = "created"
    UPDATED = "updated"
    REPLACED = "replaced"  # deleted and recreated
    REUSED = "reused"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class EntityOutcome:
    """Action taken for one entity, addressed as ``db/collection/sproc``."""

    kind: EntityKind
    name: str
    action: ReconcileAction
    detail: str | None = None


@dataclass
class ReconcileResult:
    """Result of one reconciliation pass."""

    allow_update: bool = False
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    outcomes: list[EntityOutcome] = field(default_factory=list)
    error: Exception | None = None

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        """True when no fatal error interrupted the run."""
        return self.error is None

    @property
    def failures(self) -> list[EntityOutcome]:
        return [o for o in self.outcomes if o.action is ReconcileAction.FAILED]

    def count(self, action: ReconcileAction) -> int:
        return sum(1 for o in self.outcomes if o.action is action)

    def record(
        self,
        kind: EntityKind,
        name: str,
        action: ReconcileAction,
        detail: str | None = None,
    ) -> None:
        self.outcomes.append(EntityOutcome(kind=kind, name=name, action=action, detail=detail))


class Reconciler:
    """Converges an account toward a configuration document.

    Args:
        gateway: Connected (or lazily connecting) resource gateway.
        allow_update: Update entities that already exist. When False,
            existing entities are returned unchanged.
        script_root: Directory relative stored procedure paths resolve
            against. Defaults to the working directory.
    """

    def __init__(
        self,
        gateway: CosmosGateway,
        *,
        allow_update: bool = False,
        script_root: Path | None = None,
    ) -> None:
        self._gateway = gateway
        self._allow_update = allow_update
        self._script_root = script_root

    @property
    def allow_update(self) -> bool:
        return self._allow_update

    async def apply(self, config: DeploymentConfig) -> ReconcileResult:
        """Apply a validated configuration document.

        The document must already have passed ``validate_config``.

        Returns:
            ReconcileResult; ``error`` holds the fatal error that stopped
            the run, if any.
        """
        result = ReconcileResult(allow_update=self._allow_update)

        logger.info(
            "Starting reconciliation",
            extra={
                "databases": len(config.databases),
                "allow_update": self._allow_update,
            },
        )

        try:
            for database in config.databases:
                await self._reconcile_database(database, result)

        except PartitionKeyChangeError as e:
            logger.error("Partition key change rejected", extra={"error": str(e)})
            result.error = e
        except ReconciliationError as e:
            logger.error("Reconciliation failed", extra={"error": str(e)})
            result.error = e
        except HttpResponseError as e:
            logger.error(
                "Cosmos DB API error",
                extra={"error": str(e), "status_code": e.status_code},
            )
            result.error = e
        except AzureError as e:
            logger.error("Azure error", extra={"error": str(e)})
            result.error = e
        except Exception as e:
            logger.exception("Unexpected error during reconciliation")
            result.error = e

        result.end_time = datetime.now(UTC)
        self._log_result(result)
        return result

    # -------------------------------------------------------------------------
    # Databases
    # -------------------------------------------------------------------------

    async def _reconcile_database(self, spec: DatabaseSpec, result: ReconcileResult) -> None:
        database = await self._ensure_database(spec.name, result)

        for collection in spec.collections:
            await self._reconcile_collection(database["id"], collection, result)

        # Users only after every collection of the database is in place
        for user in spec.users:
            await self._reconcile_user(database["id"], user, result)

    async def _ensure_database(self, name: str, result: ReconcileResult) -> dict[str, Any]:
        logger.info("Checking database", extra={"database": name})
        existing = await self._gateway.find_database(name)

        if existing is not None:
            logger.info("Database exists", extra={"database": name})
            result.record(EntityKind.DATABASE, name, ReconcileAction.REUSED)
            return existing

        logger.info("Database does not exist, creating it", extra={"database": name})
        created = await self._gateway.create_database(name)
        result.record(EntityKind.DATABASE, name, ReconcileAction.CREATED)
        return created

    # -------------------------------------------------------------------------
    # Collections
    # -------------------------------------------------------------------------

    async def _reconcile_collection(
        self, database: str, spec: CollectionSpec, result: ReconcileResult
    ) -> None:
        collection = await self._apply_collection(database, spec, result)

        for script_path in spec.stored_procedures:
            await self._reconcile_stored_procedure(database, collection, script_path, result)

    async def _apply_collection(
        self, database: str, spec: CollectionSpec, result: ReconcileResult
    ) -> dict[str, Any]:
        name = f"{database}/{spec.name}"
        desired = build_collection_definition(spec)

        logger.info("Checking collection", extra={"database": database, "collection": spec.name})
        existing = await self._gateway.find_collection(database, spec.name)

        if existing is None:
            logger.info(
                "Collection does not exist, creating it",
                extra={
                    "database": database,
                    "collection": spec.name,
                    "partition_key": partition_key_paths(desired),
                    "resource_units": spec.resource_units,
                },
            )
            created = await self._gateway.create_collection(database, desired, spec.resource_units)
            result.record(EntityKind.COLLECTION, name, ReconcileAction.CREATED)
            return created

        if not self._allow_update:
            logger.info(
                "Collection exists, skipping update",
                extra={"database": database, "collection": spec.name},
            )
            result.record(EntityKind.COLLECTION, name, ReconcileAction.SKIPPED)
            return existing

        existing_paths = partition_key_paths(existing)
        desired_paths = partition_key_paths(desired)
        if existing_paths != desired_paths:
            raise PartitionKeyChangeError(
                f"Partition key of collection '{name}' cannot be changed "
                f"(existing {existing_paths}, desired {desired_paths})"
            )

        logger.info(
            "Collection exists, updating indexing policy",
            extra={"database": database, "collection": spec.name},
        )
        updated_definition = dict(existing)
        updated_definition["indexingPolicy"] = desired["indexingPolicy"]
        updated = await self._gateway.replace_collection(database, updated_definition)

        # Throughput lives on a separate offer, updated after the definition
        current_throughput = await self._gateway.find_offer(database, spec.name)
        if current_throughput is not None:
            logger.info(
                "Updating collection throughput",
                extra={
                    "database": database,
                    "collection": spec.name,
                    "from_resource_units": current_throughput,
                    "to_resource_units": spec.resource_units,
                },
            )
            await self._gateway.replace_offer(database, spec.name, spec.resource_units)

        result.record(EntityKind.COLLECTION, name, ReconcileAction.UPDATED)
        return updated

    # -------------------------------------------------------------------------
    # Stored procedures
    # -------------------------------------------------------------------------

    def _read_script(self, script_path: str) -> str:
        path = Path(script_path)
        if not path.is_absolute() and self._script_root is not None:
            path = self._script_root / path

        if not path.is_file():
            raise StoredProcedureScriptError(f"Invalid file path for the stored procedure: {path}")

        try:
            if path.stat().st_size > MAX_SCRIPT_FILE_SIZE_BYTES:
                raise StoredProcedureScriptError(
                    f"Stored procedure script exceeds maximum size of "
                    f"{MAX_SCRIPT_FILE_SIZE_BYTES} bytes: {path}"
                )
            return path.read_text(encoding="utf-8-sig")
        except (OSError, UnicodeDecodeError) as e:
            raise StoredProcedureScriptError(
                f"Failed to read stored procedure script {path}: {e}"
            ) from e

    async def _reconcile_stored_procedure(
        self,
        database: str,
        collection: dict[str, Any],
        script_path: str,
        result: ReconcileResult,
    ) -> None:
        collection_id = collection["id"]
        sproc_id = Path(script_path).stem
        name = f"{database}/{collection_id}/{sproc_id}"
        sproc = {"id": sproc_id, "body": self._read_script(script_path)}

        logger.info(
            "Checking stored procedure",
            extra={"collection": collection_id, "stored_procedure": sproc_id},
        )
        existing = await self._gateway.find_stored_procedure(database, collection_id, sproc_id)

        if existing is None:
            logger.info(
                "Stored procedure does not exist, creating it",
                extra={"collection": collection_id, "stored_procedure": sproc_id},
            )
            await self._gateway.create_stored_procedure(database, collection_id, sproc)
            result.record(EntityKind.STORED_PROCEDURE, name, ReconcileAction.CREATED)
            return

        if not self._allow_update:
            logger.info(
                "Stored procedure exists, skipping update",
                extra={"collection": collection_id, "stored_procedure": sproc_id},
            )
            result.record(EntityKind.STORED_PROCEDURE, name, ReconcileAction.SKIPPED)
            return

        if not partition_key_paths(collection):
            logger.info(
                "Stored procedure exists, replacing it",
                extra={"collection": collection_id, "stored_procedure": sproc_id},
            )
            await self._gateway.replace_stored_procedure(
                database, collection_id, {**existing, "body": sproc["body"]}
            )
            result.record(EntityKind.STORED_PROCEDURE, name, ReconcileAction.UPDATED)
            return

        # Partitioned collections do not take in-place script updates
        logger.info(
            "Stored procedure exists on a partitioned collection, deleting it",
            extra={"collection": collection_id, "stored_procedure": sproc_id},
        )
        deleted = await self._gateway.delete_stored_procedure(database, collection_id, sproc_id)
        if not deleted:
            logger.error(
                "Stored procedure deletion failed, not recreating it",
                extra={"collection": collection_id, "stored_procedure": sproc_id},
            )
            result.record(
                EntityKind.STORED_PROCEDURE,
                name,
                ReconcileAction.FAILED,
                detail="deletion did not succeed",
            )
            return

        logger.info(
            "Recreating stored procedure",
            extra={"collection": collection_id, "stored_procedure": sproc_id},
        )
        await self._gateway.create_stored_procedure(database, collection_id, sproc)
        result.record(EntityKind.STORED_PROCEDURE, name, ReconcileAction.REPLACED)

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    async def _reconcile_user(self, database: str, spec: UserSpec, result: ReconcileResult) -> None:
        name = f"{database}/{spec.name}"
        log_extra = {"database": database, "user": spec.name}

        logger.info("Checking user", extra=log_extra)
        existing = await self._gateway.find_user(database, spec.name)

        if existing is None:
            logger.info("User does not exist, creating it", extra=log_extra)
            await self._gateway.create_user(database, spec.name)
            result.record(EntityKind.USER, name, ReconcileAction.CREATED)
        elif self._allow_update:
            logger.info("User exists, replacing it", extra=log_extra)
            await self._gateway.replace_user(database, existing)
            result.record(EntityKind.USER, name, ReconcileAction.UPDATED)
        else:
            logger.info("User exists, skipping update", extra=log_extra)
            result.record(EntityKind.USER, name, ReconcileAction.SKIPPED)

    def _log_result(self, result: ReconcileResult) -> None:
        extra = {
            "allow_update": result.allow_update,
            "duration_seconds": result.duration_seconds,
            "created_count": result.count(ReconcileAction.CREATED),
            "updated_count": result.count(ReconcileAction.UPDATED),
            "replaced_count": result.count(ReconcileAction.REPLACED),
            "skipped_count": result.count(ReconcileAction.SKIPPED),
            "reused_count": result.count(ReconcileAction.REUSED),
            "failed_count": len(result.failures),
        }

        if result.error is not None:
            extra["error"] = str(result.error)
            extra["error_type"] = type(result.error).__name__
            logger.error("Reconciliation aborted", extra=extra)
        elif result.failures:
            logger.warning("Reconciliation completed with failures", extra=extra)
        else:
            logger.info("Reconciliation completed", extra=extra)
