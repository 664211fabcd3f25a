# =============================================================================
# lib/supabase_client.py - Supabase Client Wrapper
# =============================================================================
# This module provides a typed wrapper for the Supabase tables that hold
# long-lived state:
# - custom_rules        versioned user rules (one latest version per key)
# - rule_executions     execution history
# - table_metrics       append-only table metric facts
# - column_metrics      append-only column metric facts
#
# It implements the singleton pattern to reuse a single client connection.
# Creating a rule version goes through the `create_custom_rule_version`
# Postgres function (lib/sql/rule_versioning.sql) so that flipping the old
# latest flag and inserting the new row happen in one transaction.
#
# Usage:
#   from lib.supabase_client import SupabaseClient
#   rows = SupabaseClient.fetch_latest_rules(owner_id, profile_id)
# =============================================================================

from __future__ import annotations

import logging
from typing import Any

from supabase import Client, create_client

from app.config import settings

# Set up logging for this module
logger = logging.getLogger(__name__)

RULES_TABLE = "custom_rules"
EXECUTIONS_TABLE = "rule_executions"
TABLE_METRICS_TABLE = "table_metrics"
COLUMN_METRICS_TABLE = "column_metrics"
CREATE_VERSION_FUNCTION = "create_custom_rule_version"

# Raised by create_custom_rule_version when the expected latest version moved
VERSION_CONFLICT_MARKER = "version_conflict"

# A duplicate (key, version) or second latest row from a concurrent writer
UNIQUE_VIOLATION_MARKERS = ("23505", "duplicate key value")


class SupabaseClientError(Exception):
    """
    Error during Supabase operations.

    Provides actionable error messages: errors should tell HOW to fix, not
    just WHAT failed.
    """

    def __init__(
        self,
        message: str,
        code: str = "SUPABASE_ERROR",
        suggestion: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.details = details or {}

    def __str__(self) -> str:
        result = f"[{self.code}] {self.message}"
        if self.suggestion:
            result += f" Suggestion: {self.suggestion}"
        return result


class SupabaseClient:
    """
    Typed wrapper for Supabase operations.

    Implements singleton pattern - one client instance is shared across the
    application. All methods are class methods for easy access without
    instantiation.

    Example:
        latest = SupabaseClient.fetch_latest_version(
            owner_id="u1", profile_id="p1",
            schema_name="public", table_name="orders", rule_id="R1",
        )
    """

    _instance: Client | None = None

    @classmethod
    def get_client(cls) -> Client:
        """
        Get or create the singleton Supabase client.

        Uses the service_role key, which bypasses Row Level Security.

        Raises:
            SupabaseClientError: If Supabase is not configured or creation fails
        """
        if cls._instance is None:
            if not settings.supabase_configured:
                raise SupabaseClientError(
                    message="Supabase is not configured",
                    code="CLIENT_NOT_CONFIGURED",
                    suggestion="Set SUPABASE_URL and SUPABASE_SERVICE_KEY in your .env file",
                )
            try:
                cls._instance = create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_KEY)
                logger.info("Supabase client initialized successfully")
            except Exception as e:
                raise SupabaseClientError(
                    message=f"Failed to create Supabase client: {e}",
                    code="CLIENT_INIT_FAILED",
                    suggestion="Check SUPABASE_URL and SUPABASE_SERVICE_KEY in your .env file",
                ) from e
        return cls._instance

    # -------------------------------------------------------------------------
    # Rule Versions
    # -------------------------------------------------------------------------

    @classmethod
    def fetch_latest_version(
        cls,
        owner_id: str,
        profile_id: str,
        schema_name: str,
        table_name: str,
        rule_id: str,
    ) -> dict[str, Any] | None:
        """
        Fetch the latest version row of one rule key.

        Returns:
            Row dict, or None if the rule has no versions

        Raises:
            SupabaseClientError: If the query fails
        """
        client = cls.get_client()
        try:
            response = (
                client.table(RULES_TABLE)
                .select("*")
                .eq("owner_id", owner_id)
                .eq("profile_id", profile_id)
                .eq("schema_name", schema_name)
                .eq("table_name", table_name)
                .eq("rule_id", rule_id)
                .order("version", desc=True)
                .limit(1)
                .execute()
            )
            rows = response.data or []
            return rows[0] if rows else None
        except Exception as e:
            raise SupabaseClientError(
                message=f"Failed to fetch rule version: {e}",
                code="FETCH_RULE_FAILED",
                details={"rule_id": rule_id, "table": f"{schema_name}.{table_name}"},
            ) from e

    @classmethod
    def create_rule_version(cls, row: dict[str, Any], expected_latest: int) -> dict[str, Any]:
        """
        Atomically insert a new rule version and demote the previous latest.

        Args:
            row: Column values of the new version (version included)
            expected_latest: Version the caller believes is current (0 for none)

        Returns:
            The inserted row

        Raises:
            SupabaseClientError: code VERSION_CONFLICT when another writer won,
                                 RPC_FAILED for anything else
        """
        client = cls.get_client()
        try:
            response = client.rpc(
                CREATE_VERSION_FUNCTION,
                {"new_row": row, "expected_latest": expected_latest},
            ).execute()
        except Exception as e:
            message = str(e)
            if VERSION_CONFLICT_MARKER in message or any(m in message for m in UNIQUE_VIOLATION_MARKERS):
                raise SupabaseClientError(
                    message=f"Rule version conflict: {e}",
                    code="VERSION_CONFLICT",
                    details={"rule_id": row.get("rule_id"), "expected_latest": expected_latest},
                ) from e
            raise SupabaseClientError(
                message=f"Failed to create rule version: {e}",
                code="RPC_FAILED",
                suggestion=f"Check that the {CREATE_VERSION_FUNCTION} function is installed",
                details={"rule_id": row.get("rule_id")},
            ) from e

        data = response.data
        if isinstance(data, list):
            data = data[0] if data else None
        if not data:
            raise SupabaseClientError(message="Version insert returned no data", code="INSERT_NO_DATA")
        return data

    @classmethod
    def fetch_latest_rules(cls, owner_id: str, profile_id: str) -> list[dict[str, Any]]:
        """Fetch every active latest-version rule of an owner's profile."""
        client = cls.get_client()
        try:
            response = (
                client.table(RULES_TABLE)
                .select("*")
                .eq("owner_id", owner_id)
                .eq("profile_id", profile_id)
                .eq("is_latest_version", True)
                .eq("is_active", True)
                .order("schema_name")
                .order("table_name")
                .order("rule_id")
                .execute()
            )
            return response.data or []
        except Exception as e:
            raise SupabaseClientError(
                message=f"Failed to fetch latest rules: {e}",
                code="FETCH_RULES_FAILED",
                details={"owner_id": owner_id, "profile_id": profile_id},
            ) from e

    @classmethod
    def deactivate_rule(
        cls,
        owner_id: str,
        profile_id: str,
        schema_name: str,
        table_name: str,
        rule_id: str,
    ) -> int:
        """Soft-delete every version of a rule. Returns the number of rows touched."""
        client = cls.get_client()
        try:
            response = (
                client.table(RULES_TABLE)
                .update({"is_active": False})
                .eq("owner_id", owner_id)
                .eq("profile_id", profile_id)
                .eq("schema_name", schema_name)
                .eq("table_name", table_name)
                .eq("rule_id", rule_id)
                .execute()
            )
            return len(response.data or [])
        except Exception as e:
            raise SupabaseClientError(
                message=f"Failed to deactivate rule: {e}",
                code="DEACTIVATE_RULE_FAILED",
                details={"rule_id": rule_id},
            ) from e

    # -------------------------------------------------------------------------
    # Append-only Inserts
    # -------------------------------------------------------------------------

    @classmethod
    def insert_rows(cls, table: str, rows: list[dict[str, Any]]) -> int:
        """
        Insert rows into an append-only table.

        Returns:
            Number of rows inserted

        Raises:
            SupabaseClientError: If the insert fails
        """
        if not rows:
            return 0
        client = cls.get_client()
        try:
            response = client.table(table).insert(rows).execute()
            inserted = len(response.data or [])
            logger.debug(f"Inserted {inserted} rows into {table}")
            return inserted
        except Exception as e:
            raise SupabaseClientError(
                message=f"Failed to insert into {table}: {e}",
                code="INSERT_FAILED",
                details={"table": table, "rows": len(rows)},
            ) from e
