# =============================================================================
# lib/metadata_reader.py - Metadata Reader (SQLAlchemy)
# =============================================================================
# The capability the profiler uses to look at a live database:
#
#   list_tables()                      -> [TableMetadata]
#   list_columns(table)                -> [ColumnMetadata]
#   sample_rows(table, limit)          -> [dict]
#   column_aggregates(table, column)   -> ColumnAggregates
#
# MetadataReader is the abstract contract; SqlAlchemyMetadataReader implements
# it over any SQLAlchemy engine. Blocking driver calls run in a worker thread
# and every call carries a timeout. Failures are translated into
# ConnectivityError (retryable) or SchemaNotFoundError (skip the table).
#
# Usage:
#   reader = SqlAlchemyMetadataReader.from_url("postgresql+psycopg://...")
#   tables = await reader.list_tables()
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, TypeVar

from sqlalchemy import column as sa_column
from sqlalchemy import create_engine, distinct, func, inspect, literal_column, select, text
from sqlalchemy import table as sa_table
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, DisconnectionError, InterfaceError, NoSuchTableError, OperationalError, SQLAlchemyError

from app.config import settings
from app.exceptions import ConnectivityError, DQScopeException, SchemaNotFoundError
from core.models import ColumnAggregates, ColumnMetadata, TableMetadata, TableType

# Set up logging for this module
logger = logging.getLogger(__name__)

T = TypeVar("T")

SYSTEM_SCHEMAS = {"information_schema", "pg_catalog", "pg_toast", "sys", "mysql", "performance_schema"}

# Driver messages that mean "the object is not there"
_MISSING_OBJECT_MARKERS = (
    "no such table",
    "no such column",
    "does not exist",
    "undefined table",
    "unknown column",
    "unknown table",
    "invalid object name",
)


# =============================================================================
# Error Translation
# =============================================================================

def translate_db_error(
    exc: Exception,
    table: str,
    column: str | None = None,
) -> DQScopeException | None:
    """
    Map a SQLAlchemy/driver error onto the error taxonomy.

    Returns None when the error is neither a connectivity problem nor a
    missing object, so callers can decide (e.g. treat it as a SqlFault).
    """
    if isinstance(exc, NoSuchTableError):
        return SchemaNotFoundError(table, column)
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return ConnectivityError(
            f"Query against {table} timed out",
            details={"table": table, "column": column},
        )
    if isinstance(exc, DisconnectionError) or (
        isinstance(exc, DBAPIError) and exc.connection_invalidated
    ):
        return ConnectivityError(f"Connection lost while reading {table}: {exc}", details={"table": table})

    message = str(getattr(exc, "orig", None) or exc).lower()
    if any(marker in message for marker in _MISSING_OBJECT_MARKERS):
        return SchemaNotFoundError(table, column, reason=str(getattr(exc, "orig", None) or exc))
    if isinstance(exc, (OperationalError, InterfaceError)):
        return ConnectivityError(f"Database error while reading {table}: {exc}", details={"table": table})
    return None


async def run_blocking(fn: Callable[..., T], *args: Any, timeout: float) -> T:
    """Run a blocking call in a worker thread with a timeout."""
    return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=timeout)


# =============================================================================
# Contract
# =============================================================================

class MetadataReader(ABC):
    """Capability that yields metadata and samples from the target database."""

    @abstractmethod
    async def list_tables(self) -> list[TableMetadata]:
        ...

    @abstractmethod
    async def list_columns(self, table: TableMetadata) -> list[ColumnMetadata]:
        ...

    @abstractmethod
    async def sample_rows(self, table: TableMetadata, limit: int) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    async def column_aggregates(self, table: TableMetadata, column: ColumnMetadata) -> ColumnAggregates:
        ...


# =============================================================================
# SQLAlchemy Implementation
# =============================================================================

class SqlAlchemyMetadataReader(MetadataReader):
    """
    MetadataReader backed by SQLAlchemy's inspector and Core queries.

    Args:
        engine: Engine connected to the database to profile
        schemas: Schemas to read (default: every non-system schema)
        timeout: Seconds allowed per call (default: QUERY_TIMEOUT_SECONDS)
    """

    def __init__(
        self,
        engine: Engine,
        schemas: list[str] | None = None,
        timeout: float | None = None,
    ):
        self.engine = engine
        self.schemas = schemas
        self.timeout = timeout or settings.QUERY_TIMEOUT_SECONDS

    @classmethod
    def from_url(cls, url: str | None = None, **kwargs: Any) -> "SqlAlchemyMetadataReader":
        """Create a reader from a database URL (default: DATABASE_URL)."""
        url = url or settings.DATABASE_URL
        if not url:
            raise ConnectivityError(
                "No database URL configured",
                details={"setting": "DATABASE_URL"},
            )
        return cls(create_engine(url, pool_pre_ping=True), **kwargs)

    async def _call(self, fn: Callable[..., T], *args: Any, table: str, column: str | None = None) -> T:
        try:
            return await run_blocking(fn, *args, timeout=self.timeout)
        except (SQLAlchemyError, asyncio.TimeoutError) as e:
            translated = translate_db_error(e, table, column)
            if translated is None:
                raise ConnectivityError(
                    f"Unexpected database error reading {table}: {e}",
                    details={"table": table, "column": column},
                ) from e
            raise translated from e

    # -------------------------------------------------------------------------
    # Tables
    # -------------------------------------------------------------------------

    async def list_tables(self) -> list[TableMetadata]:
        tables = await self._call(self._list_tables_sync, table="<catalog>")
        logger.info(f"Found {len(tables)} tables")
        return tables

    def _list_tables_sync(self) -> list[TableMetadata]:
        inspector = inspect(self.engine)
        schemas = self.schemas or [
            s for s in inspector.get_schema_names()
            if s not in SYSTEM_SCHEMAS and not s.startswith("pg_")
        ]
        tables: list[TableMetadata] = []
        with self.engine.connect() as conn:
            for schema in schemas:
                for name in inspector.get_table_names(schema=schema):
                    columns = inspector.get_columns(name, schema=schema)
                    pk = inspector.get_pk_constraint(name, schema=schema) or {}
                    tables.append(TableMetadata(
                        schema_name=schema,
                        name=name,
                        table_type=TableType.BASE,
                        column_count=len(columns),
                        estimated_row_count=self._estimate_rows(conn, schema, name),
                        has_primary_key=bool(pk.get("constrained_columns")),
                    ))
                for name in inspector.get_view_names(schema=schema):
                    tables.append(TableMetadata(
                        schema_name=schema,
                        name=name,
                        table_type=TableType.VIEW,
                        column_count=len(inspector.get_columns(name, schema=schema)),
                    ))
        return tables

    def _estimate_rows(self, conn, schema: str, name: str) -> int:
        if self.engine.dialect.name == "postgresql":
            estimate = conn.execute(
                text(
                    "SELECT c.reltuples::bigint FROM pg_class c "
                    "JOIN pg_namespace n ON n.oid = c.relnamespace "
                    "WHERE n.nspname = :schema AND c.relname = :name"
                ),
                {"schema": schema, "name": name},
            ).scalar()
            # -1 means the table was never analyzed
            return max(0, int(estimate or 0))
        return int(conn.execute(select(func.count()).select_from(sa_table(name, schema=schema))).scalar() or 0)

    # -------------------------------------------------------------------------
    # Columns
    # -------------------------------------------------------------------------

    async def list_columns(self, table: TableMetadata) -> list[ColumnMetadata]:
        return await self._call(self._list_columns_sync, table, table=table.full_name)

    def _list_columns_sync(self, table: TableMetadata) -> list[ColumnMetadata]:
        inspector = inspect(self.engine)
        raw_columns = inspector.get_columns(table.name, schema=table.schema_name)
        pk = set((inspector.get_pk_constraint(table.name, schema=table.schema_name) or {}).get("constrained_columns") or [])

        foreign: dict[str, tuple[str, str, str | None]] = {}
        for fk in inspector.get_foreign_keys(table.name, schema=table.schema_name):
            referred_schema = fk.get("referred_schema") or table.schema_name
            referred = f"{referred_schema}.{fk['referred_table']}"
            for local, remote in zip(fk["constrained_columns"], fk["referred_columns"]):
                foreign[local] = (referred, remote, fk.get("name"))

        columns = []
        for position, raw in enumerate(raw_columns, start=1):
            fk_target = foreign.get(raw["name"])
            columns.append(ColumnMetadata(
                name=raw["name"],
                data_type=str(raw["type"]).lower(),
                is_nullable=bool(raw.get("nullable", True)),
                ordinal_position=position,
                is_primary_key=raw["name"] in pk,
                is_foreign_key=fk_target is not None,
                foreign_table=fk_target[0] if fk_target else None,
                foreign_column=fk_target[1] if fk_target else None,
                fk_constraint_name=fk_target[2] if fk_target else None,
            ))
        return columns

    # -------------------------------------------------------------------------
    # Samples & Aggregates
    # -------------------------------------------------------------------------

    async def sample_rows(self, table: TableMetadata, limit: int) -> list[dict[str, Any]]:
        return await self._call(self._sample_rows_sync, table, limit, table=table.full_name)

    def _sample_rows_sync(self, table: TableMetadata, limit: int) -> list[dict[str, Any]]:
        stmt = (
            select(literal_column("*"))
            .select_from(sa_table(table.name, schema=table.schema_name))
            .limit(limit)
        )
        with self.engine.connect() as conn:
            return [dict(row._mapping) for row in conn.execute(stmt)]

    async def column_aggregates(self, table: TableMetadata, column: ColumnMetadata) -> ColumnAggregates:
        return await self._call(
            self._column_aggregates_sync, table, column, table=table.full_name, column=column.name
        )

    def _column_aggregates_sync(self, table: TableMetadata, column: ColumnMetadata) -> ColumnAggregates:
        tbl = sa_table(table.name, sa_column(column.name), schema=table.schema_name)
        col = tbl.c[column.name]
        full = select(func.count(), func.count(col), func.count(distinct(col)), func.min(col), func.max(col)).select_from(tbl)
        try:
            with self.engine.connect() as conn:
                total, non_null, distinct_count, min_value, max_value = conn.execute(full).one()
        except DBAPIError as e:
            if translate_db_error(e, table.full_name, column.name) is not None:
                raise
            # json/xml types have no ordering or equality: fall back to counts
            logger.debug(f"Full aggregates failed for {table.full_name}.{column.name}: {e}")
            with self.engine.connect() as conn:
                total, non_null = conn.execute(select(func.count(), func.count(col)).select_from(tbl)).one()
            distinct_count, min_value, max_value = 0, None, None

        return ColumnAggregates(
            total_count=int(total or 0),
            null_count=int((total or 0) - (non_null or 0)),
            distinct_count=int(distinct_count or 0),
            min_value=min_value,
            max_value=max_value,
        )
