"""Pydantic models for the desired account topology.

These models provide:
1. Type-safe parsing of the configuration document
2. A structural validator that reports every violation, not just the first
3. Clean transformation to Cosmos DB resource definitions
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, Field, field_validator, model_validator

from .config import ConnectionSettings

logger = logging.getLogger(__name__)

# Below this throughput the service may provision a partitioned collection
# as a single partition
MIN_PARTITIONED_RESOURCE_UNITS = 2500

DEFAULT_RESOURCE_UNITS = 400


class IndexingMode(str, Enum):
    """Indexing modes accepted in the configuration document."""

    NONE = "none"
    CONSISTENT = "consistent"
    LAZY = "lazy"


class PermissionMode(str, Enum):
    """Access level granted by a permission."""

    READ = "Read"
    ALL = "All"

    @classmethod
    def parse(cls, value: str) -> PermissionMode:
        """Parse a permission mode case-insensitively.

        Raises:
            ValueError: If the value is not a known mode.
        """
        for mode in cls:
            if mode.value.lower() == str(value).strip().lower():
                return mode
        valid = [m.value for m in cls]
        raise ValueError(f"permission mode must be one of {valid}: {value}")


# =============================================================================
# Protocol field mapping
# =============================================================================

_COSMOS_INDEXING_MODES: dict[IndexingMode, str] = {
    IndexingMode.NONE: "none",
    IndexingMode.CONSISTENT: "consistent",
    IndexingMode.LAZY: "lazy",
}

_COSMOS_PERMISSION_MODES: dict[PermissionMode, str] = {
    PermissionMode.READ: "Read",
    PermissionMode.ALL: "All",
}


def to_cosmos_indexing_mode(mode: IndexingMode) -> str:
    """Translate a configured indexing mode to the service's value."""
    return _COSMOS_INDEXING_MODES[mode]


def to_cosmos_permission_mode(mode: PermissionMode) -> str:
    """Translate a permission mode to the service's value."""
    return _COSMOS_PERMISSION_MODES[mode]


# =============================================================================
# Desired state
# =============================================================================


class BaseConfigModel(BaseModel):
    """Base for configuration models.

    Keys are matched case-insensitively against field names and aliases,
    so camelCase, snake_case and PascalCase documents all load.
    """

    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}

    @model_validator(mode="before")
    @classmethod
    def normalize_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        known: dict[str, str] = {}
        for name, info in cls.model_fields.items():
            known[name.lower()] = name
            if info.alias:
                known[info.alias.lower()] = info.alias

        return {
            known.get(k.lower(), k) if isinstance(k, str) else k: v for k, v in data.items()
        }


class UserSpec(BaseConfigModel):
    """Database user."""

    name: Annotated[str, Field(min_length=1, max_length=255)]


class CollectionSpec(BaseConfigModel):
    """Collection (container) with partitioning, TTL and indexing policy."""

    name: Annotated[str, Field(min_length=1, max_length=255)]
    resource_units: int = Field(DEFAULT_RESOURCE_UNITS, alias="resourceUnits", gt=0)
    partitioned: bool = False
    partition_key: str = Field("", alias="partitionKey")

    # Seconds; zero or negative disables expiry
    ttl: int = 0

    indexing_mode: IndexingMode = Field(IndexingMode.CONSISTENT, alias="indexingMode")
    included_paths: list[str] = Field(default_factory=list, alias="includedPaths")
    range_index_included_paths: list[str] = Field(
        default_factory=list, alias="rangeIndexIncludedPaths"
    )
    excluded_paths: list[str] = Field(default_factory=list, alias="excludedPaths")

    # File paths, read when the collection is applied
    stored_procedures: list[str] = Field(default_factory=list, alias="storedProcedures")

    @field_validator("partition_key", mode="before")
    @classmethod
    def none_as_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator(
        "included_paths",
        "range_index_included_paths",
        "excluded_paths",
        "stored_procedures",
        mode="before",
    )
    @classmethod
    def none_as_empty_list(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("indexing_mode", mode="before")
    @classmethod
    def parse_indexing_mode(cls, v: Any) -> Any:
        # Numeric modes: 0=None, 1=Consistent, 2=Lazy
        if isinstance(v, int) and not isinstance(v, bool):
            ordered = list(IndexingMode)
            if 0 <= v < len(ordered):
                return ordered[v]
            raise ValueError(f"indexingMode must be one of {[m.value for m in IndexingMode]}")
        if isinstance(v, str):
            return v.strip().lower()
        return v


class DatabaseSpec(BaseConfigModel):
    """Database with its collections and users."""

    name: Annotated[str, Field(min_length=1, max_length=255)]
    collections: list[CollectionSpec] = Field(default_factory=list)
    users: list[UserSpec] = Field(default_factory=list)

    @field_validator("collections", "users", mode="before")
    @classmethod
    def none_as_empty_list(cls, v: Any) -> Any:
        return [] if v is None else v


class DeploymentConfig(BaseConfigModel):
    """Root of the configuration document."""

    databases: list[DatabaseSpec] = Field(default_factory=list)

    @field_validator("databases", mode="before")
    @classmethod
    def none_as_empty_list(cls, v: Any) -> Any:
        return [] if v is None else v

    def collection_count(self) -> int:
        return sum(len(db.collections) for db in self.databases)


# =============================================================================
# Structural validation
# =============================================================================


@dataclass
class ValidationReport:
    """Outcome of validating a configuration document."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def _duplicates(names: list[str]) -> list[str]:
    return sorted(name for name, count in Counter(names).items() if count > 1)


def validate_config(config: DeploymentConfig) -> ValidationReport:
    """Validate a configuration document.

    Every check runs regardless of earlier failures so the caller sees the
    complete list of problems. Names are compared case-sensitively.

    Returns:
        ValidationReport; ``ok`` is False if the document must not be applied.
    """
    report = ValidationReport()

    for database in config.databases:
        for collection in database.collections:
            if collection.partitioned and not collection.partition_key:
                report.errors.append(
                    f"Partition key is mandatory for partitioned collection '{collection.name}'"
                )

            if not collection.partitioned and collection.partition_key:
                report.errors.append(
                    f"Partition key is specified for non-partitioned collection "
                    f"'{collection.name}'"
                )

            under_provisioned = collection.resource_units < MIN_PARTITIONED_RESOURCE_UNITS
            if collection.partitioned and under_provisioned:
                report.warnings.append(
                    f"Collection '{collection.name}' is partitioned with "
                    f"{collection.resource_units} RUs; below {MIN_PARTITIONED_RESOURCE_UNITS} RUs "
                    f"it may be deployed as a single-partition collection"
                )

    duplicate_databases = _duplicates([db.name for db in config.databases])
    if duplicate_databases:
        report.errors.append(f"Duplicate databases not permitted: {duplicate_databases}")

    duplicate_collections = _duplicates(
        [c.name for db in config.databases for c in db.collections]
    )
    if duplicate_collections:
        report.errors.append(f"Duplicate collections not permitted: {duplicate_collections}")

    duplicate_users = _duplicates([u.name for db in config.databases for u in db.users])
    if duplicate_users:
        report.errors.append(f"Duplicate users not permitted: {duplicate_users}")

    for error in report.errors:
        logger.error("Configuration validation error", extra={"error": error})
    for warning in report.warnings:
        logger.warning("Configuration advisory", extra={"warning": warning})

    return report


# =============================================================================
# Resource definitions
# =============================================================================


def build_indexing_policy(collection: CollectionSpec) -> dict[str, Any]:
    """Build the indexing policy for a collection.

    Range-indexed paths get a maximum-precision range index over strings.
    Mode ``none`` carries no paths since the service rejects them.
    """
    mode = to_cosmos_indexing_mode(collection.indexing_mode)

    if collection.indexing_mode is IndexingMode.NONE:
        return {"indexingMode": mode, "automatic": False}

    included: list[dict[str, Any]] = [{"path": path} for path in collection.included_paths]
    included.extend(
        {
            "path": path,
            "indexes": [{"kind": "Range", "dataType": "String", "precision": -1}],
        }
        for path in collection.range_index_included_paths
    )

    return {
        "indexingMode": mode,
        "automatic": True,
        "includedPaths": included,
        "excludedPaths": [{"path": path} for path in collection.excluded_paths],
    }


def build_collection_definition(collection: CollectionSpec) -> dict[str, Any]:
    """Convert a collection spec to a Cosmos container definition."""
    definition: dict[str, Any] = {
        "id": collection.name,
        "indexingPolicy": build_indexing_policy(collection),
    }

    if collection.ttl > 0:
        definition["defaultTtl"] = collection.ttl

    if collection.partitioned and collection.partition_key:
        definition["partitionKey"] = {"paths": [collection.partition_key], "kind": "Hash"}

    return definition


# =============================================================================
# Requests
# =============================================================================
# One variant per CLI mode, chosen once at the command-line boundary.


@dataclass(frozen=True)
class ProvisionRequest:
    """Apply a configuration document to an account."""

    connection: ConnectionSettings
    config_file: Path
    allow_update: bool = False


@dataclass(frozen=True)
class GrantPermissionRequest:
    """Create or update one resource-scoped permission for a user."""

    connection: ConnectionSettings
    database: str
    user_name: str
    resource_link: str
    permission_mode: PermissionMode
    resource_partition_key: str | None = None


@dataclass(frozen=True)
class ListPermissionsRequest:
    """List the permissions held by a user."""

    connection: ConnectionSettings
    database: str
    user_name: str


@dataclass(frozen=True)
class ValidateConfigRequest:
    """Validate a configuration document without contacting the account."""

    config_file: Path


Request = ProvisionRequest | GrantPermissionRequest | ListPermissionsRequest | ValidateConfigRequest
