# =============================================================================
# core/services/rule_store.py - Versioned Rule Persistence
# =============================================================================
# A RuleStore keeps every version of every custom rule and the execution
# history. Writers use optimistic concurrency:
#
#   upsert_version(key, version, expected_latest)
#
# succeeds only when the key's current latest version equals expected_latest;
# it then demotes that version and inserts the new one as latest, atomically.
# Otherwise it raises VersionConflictError carrying the actual latest version.
#
# Implementations:
#   InMemoryRuleStore   per-key asyncio locks (tests, single process)
#   SupabaseRuleStore   create_custom_rule_version() Postgres function via RPC
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any

from app.exceptions import RuleNotFoundError, VersionConflictError
from core.models import CustomRuleVersion, RuleExecutionResult, RuleKey
from lib.supabase_client import (
    EXECUTIONS_TABLE,
    SupabaseClient,
    SupabaseClientError,
)

logger = logging.getLogger(__name__)


class RuleStore(ABC):
    """Persistence contract for versioned custom rules."""

    @abstractmethod
    async def upsert_version(
        self, key: RuleKey, version: CustomRuleVersion, expected_latest: int
    ) -> CustomRuleVersion:
        """Insert `version` as the new latest if the current latest is `expected_latest` (0 = none)."""

    @abstractmethod
    async def latest_version(self, key: RuleKey) -> CustomRuleVersion | None:
        """Latest version of a key, or None if the key has no versions."""

    @abstractmethod
    async def list_latest(self, owner_id: str, profile_id: str) -> list[CustomRuleVersion]:
        """Active latest versions of every rule in a profile."""

    @abstractmethod
    async def record_execution(self, result: RuleExecutionResult) -> None:
        """Append one execution result to the history."""

    @abstractmethod
    async def deactivate(self, key: RuleKey) -> None:
        """Soft-delete every version of a key."""


# =============================================================================
# In-memory Store
# =============================================================================

class InMemoryRuleStore(RuleStore):
    """
    Process-local RuleStore.

    Each key has its own lock, so writers on different rules never wait on
    each other.
    """

    def __init__(self):
        self._versions: dict[RuleKey, list[CustomRuleVersion]] = defaultdict(list)
        self._locks: dict[RuleKey, asyncio.Lock] = defaultdict(asyncio.Lock)
        self.executions: list[RuleExecutionResult] = []

    def versions(self, key: RuleKey) -> list[CustomRuleVersion]:
        """All versions of a key, oldest first."""
        return list(self._versions.get(key, []))

    async def upsert_version(
        self, key: RuleKey, version: CustomRuleVersion, expected_latest: int
    ) -> CustomRuleVersion:
        async with self._locks[key]:
            history = self._versions[key]
            current = max((v.version for v in history), default=0)
            if current != expected_latest:
                raise VersionConflictError(str(key), expected_latest, current)
            if version.version <= current:
                raise VersionConflictError(str(key), version.version - 1, current)

            # Demote and insert under the same lock
            self._versions[key] = [
                v.model_copy(update={"is_latest_version": False}) if v.is_latest_version else v
                for v in history
            ]
            stored = version.model_copy(update={"is_latest_version": True})
            self._versions[key].append(stored)

        logger.debug(f"Stored version {stored.version} of {key}")
        return stored

    async def latest_version(self, key: RuleKey) -> CustomRuleVersion | None:
        for v in reversed(self._versions.get(key, [])):
            if v.is_latest_version:
                return v
        return None

    async def list_latest(self, owner_id: str, profile_id: str) -> list[CustomRuleVersion]:
        latest = [
            v
            for key, history in self._versions.items()
            if key.owner_id == owner_id and key.profile_id == profile_id
            for v in history
            if v.is_latest_version and v.is_active
        ]
        return sorted(latest, key=lambda v: (v.schema_name, v.table_name, v.rule_id))

    async def record_execution(self, result: RuleExecutionResult) -> None:
        self.executions.append(result)

    async def deactivate(self, key: RuleKey) -> None:
        async with self._locks[key]:
            history = self._versions.get(key)
            if not history:
                raise RuleNotFoundError(str(key))
            self._versions[key] = [v.model_copy(update={"is_active": False}) for v in history]
        logger.info(f"Deactivated rule {key}")


# =============================================================================
# Supabase Store
# =============================================================================

def version_to_row(version: CustomRuleVersion) -> dict[str, Any]:
    """Flatten a version into a custom_rules row."""
    return {
        "owner_id": version.owner_id,
        "profile_id": version.profile_id,
        "schema_name": version.schema_name,
        "table_name": version.table_name,
        "rule_id": version.rule_id,
        "version": version.version,
        "is_active": version.is_active,
        "name": version.name,
        "dimension": version.dimension.value,
        "column_name": version.column,
        "condition": version.condition,
        "description": version.description,
        "severity": version.severity.value,
        "expected_pass_rate": version.expected_pass_rate,
        "source": version.source.value,
        "change_reason": version.change_reason,
        "notes": version.notes,
    }


def row_to_version(row: dict[str, Any]) -> CustomRuleVersion:
    """Build a version from a custom_rules row."""
    data = dict(row)
    data["column"] = data.pop("column_name", None)
    # The row id doubles as the candidate id
    data["id"] = str(data.get("id") or data["rule_id"])
    return CustomRuleVersion.model_validate(data)


class SupabaseRuleStore(RuleStore):
    """
    RuleStore backed by the custom_rules table.

    supabase-py is synchronous, so every call runs in a worker thread.
    """

    async def upsert_version(
        self, key: RuleKey, version: CustomRuleVersion, expected_latest: int
    ) -> CustomRuleVersion:
        try:
            row = await asyncio.to_thread(
                SupabaseClient.create_rule_version, version_to_row(version), expected_latest
            )
        except SupabaseClientError as e:
            if e.code != "VERSION_CONFLICT":
                raise
            latest = await self.latest_version(key)
            raise VersionConflictError(
                str(key), expected_latest, latest.version if latest else 0
            ) from e
        return row_to_version(row)

    async def latest_version(self, key: RuleKey) -> CustomRuleVersion | None:
        row = await asyncio.to_thread(
            SupabaseClient.fetch_latest_version,
            key.owner_id,
            key.profile_id,
            key.schema_name,
            key.table_name,
            key.rule_id,
        )
        return row_to_version(row) if row else None

    async def list_latest(self, owner_id: str, profile_id: str) -> list[CustomRuleVersion]:
        rows = await asyncio.to_thread(SupabaseClient.fetch_latest_rules, owner_id, profile_id)
        return [row_to_version(row) for row in rows]

    async def record_execution(self, result: RuleExecutionResult) -> None:
        row = result.model_dump(mode="json", exclude={"table"})
        row["table_name"] = result.table
        await asyncio.to_thread(SupabaseClient.insert_rows, EXECUTIONS_TABLE, [row])

    async def deactivate(self, key: RuleKey) -> None:
        touched = await asyncio.to_thread(
            SupabaseClient.deactivate_rule,
            key.owner_id,
            key.profile_id,
            key.schema_name,
            key.table_name,
            key.rule_id,
        )
        if not touched:
            raise RuleNotFoundError(str(key))
        logger.info(f"Deactivated rule {key} ({touched} versions)")
