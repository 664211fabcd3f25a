# =============================================================================
# lib/rule_executor.py - Rule Execution Against Live Data
# =============================================================================
# Evaluates a rule's SQL condition as a boolean predicate over the target
# table and reports exact total/valid/invalid counts.
#
# Tables larger than EXECUTION_ROW_CEILING are validated on a bounded random
# sample instead; such results carry is_sampled=True and the full table size
# in population_records.
#
# A condition the database rejects is a SqlFault and yields status "error"
# (eligible for refinement). Connectivity and missing-table problems are not
# the rule's fault and propagate to the caller.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod

from sqlalchemy import func, literal_column, select, text
from sqlalchemy import table as sa_table
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, DisconnectionError, SQLAlchemyError

from app.config import settings
from app.exceptions import ConnectivityError, SqlFault
from core.models import ExecutionStatus, RuleCandidate, RuleExecutionResult, RuleSeverity, compute_pass_rate
from lib.metadata_reader import run_blocking, translate_db_error

# Set up logging for this module
logger = logging.getLogger(__name__)


# =============================================================================
# Data Source Contract
# =============================================================================

class RuleDataSource(ABC):
    """Where rule conditions are evaluated."""

    @abstractmethod
    async def count_rows(self, schema: str, table: str) -> int:
        """Total rows in the table."""

    @abstractmethod
    async def count_valid(self, schema: str, table: str, condition: str) -> int:
        """Rows for which the condition is true. Raises SqlFault for a broken condition."""

    @abstractmethod
    async def count_sampled(
        self, schema: str, table: str, condition: str, sample_size: int
    ) -> tuple[int, int]:
        """(sampled rows, valid sampled rows) over a random sample."""


class SqlAlchemyDataSource(RuleDataSource):
    """
    RuleDataSource over a SQLAlchemy engine.

    The condition is inserted verbatim as a WHERE predicate; it comes from
    the rule author or the AI collaborator and is never built from row data.
    """

    def __init__(self, engine: Engine, timeout: float | None = None):
        self.engine = engine
        self.timeout = timeout or settings.QUERY_TIMEOUT_SECONDS

    def _scalar(self, stmt) -> int:
        with self.engine.connect() as conn:
            return int(conn.execute(stmt).scalar() or 0)

    async def count_rows(self, schema: str, table: str) -> int:
        stmt = select(func.count()).select_from(sa_table(table, schema=schema))
        try:
            return await run_blocking(self._scalar, stmt, timeout=self.timeout)
        except (SQLAlchemyError, asyncio.TimeoutError) as e:
            translated = translate_db_error(e, f"{schema}.{table}")
            if translated is None:
                raise ConnectivityError(
                    f"Could not count rows of {schema}.{table}: {e}",
                    details={"table": f"{schema}.{table}"},
                ) from e
            raise translated from e

    async def count_valid(self, schema: str, table: str, condition: str) -> int:
        stmt = select(func.count()).select_from(sa_table(table, schema=schema)).where(text(condition))
        return await self._run_condition(self._scalar, stmt, schema, table, condition)

    async def count_sampled(
        self, schema: str, table: str, condition: str, sample_size: int
    ) -> tuple[int, int]:
        sample = (
            select(literal_column("*"))
            .select_from(sa_table(table, schema=schema))
            .order_by(func.random())
            .limit(sample_size)
            .subquery("rule_sample")
        )
        # One statement so both counts see the same random sample
        stmt = select(
            func.count(),
            func.count(literal_column(f"CASE WHEN ({condition}) THEN 1 END")),
        ).select_from(sample)

        def fetch(statement) -> tuple[int, int]:
            with self.engine.connect() as conn:
                total, valid = conn.execute(statement).one()
            return int(total or 0), int(valid or 0)

        return await self._run_condition(fetch, stmt, schema, table, condition)

    async def _run_condition(self, fn, stmt, schema: str, table: str, condition: str):
        full_name = f"{schema}.{table}"
        try:
            return await run_blocking(fn, stmt, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ConnectivityError(
                f"Rule condition on {full_name} timed out",
                details={"table": full_name, "condition": condition},
            ) from e
        except SQLAlchemyError as e:
            if isinstance(e, DisconnectionError) or (isinstance(e, DBAPIError) and e.connection_invalidated):
                raise ConnectivityError(
                    f"Connection lost while evaluating a rule on {full_name}: {e}",
                    details={"table": full_name, "condition": condition},
                ) from e
            # The table was readable a moment ago, so a failing predicate
            # (including an unknown column) is the condition's fault
            raise SqlFault(condition, str(getattr(e, "orig", None) or e), table=full_name) from e


# =============================================================================
# Executor
# =============================================================================

class RuleExecutor:
    """
    Runs rules and turns counts into RuleExecutionResult records.

    Example:
        executor = RuleExecutor()
        result = await executor.execute(candidate, SqlAlchemyDataSource(engine))
        result.status  # ExecutionStatus.PASS
    """

    def __init__(self, row_ceiling: int | None = None, sample_size: int | None = None):
        self.row_ceiling = row_ceiling or settings.EXECUTION_ROW_CEILING
        self.sample_size = sample_size or settings.EXECUTION_SAMPLE_SIZE

    async def execute(self, rule: RuleCandidate, data_source: RuleDataSource) -> RuleExecutionResult:
        """
        Execute one rule (candidate or custom version).

        Returns:
            RuleExecutionResult with status pass/fail, or error for a SqlFault

        Raises:
            ConnectivityError: Database unreachable or query timed out
            SchemaNotFoundError: Target table does not exist
        """
        start = time.perf_counter()
        table = rule.table_full_name

        def elapsed_ms() -> int:
            return int((time.perf_counter() - start) * 1000)

        population = await data_source.count_rows(rule.schema_name, rule.table_name)
        is_sampled = population > self.row_ceiling

        try:
            if is_sampled:
                logger.info(
                    f"Table {table} has {population} rows (ceiling {self.row_ceiling}); "
                    f"sampling {self.sample_size} rows for rule {rule.id}"
                )
                total, valid = await data_source.count_sampled(
                    rule.schema_name, rule.table_name, rule.condition, self.sample_size
                )
            else:
                total = population
                valid = await data_source.count_valid(rule.schema_name, rule.table_name, rule.condition)
        except SqlFault as e:
            logger.warning(f"Rule {rule.id} on {table} failed: {e.error}")
            return RuleExecutionResult(
                rule_candidate_id=rule.id,
                table=table,
                condition=rule.condition,
                expected_pass_rate=rule.expected_pass_rate,
                status=ExecutionStatus.ERROR,
                severity=RuleSeverity.ERROR,
                error_message=e.error,
                execution_time_ms=elapsed_ms(),
                is_sampled=is_sampled,
                population_records=population if is_sampled else None,
            )

        # Rows inserted between the two queries must not push valid above total
        valid = min(valid, total)
        pass_rate = compute_pass_rate(valid, total)
        status = ExecutionStatus.PASS if pass_rate >= rule.expected_pass_rate else ExecutionStatus.FAIL

        logger.debug(f"Rule {rule.id} on {table}: {valid}/{total} valid ({pass_rate:.2f}%) -> {status.value}")

        return RuleExecutionResult(
            rule_candidate_id=rule.id,
            table=table,
            condition=rule.condition,
            total_records=total,
            valid_records=valid,
            invalid_records=total - valid,
            actual_pass_rate=pass_rate,
            expected_pass_rate=rule.expected_pass_rate,
            status=status,
            severity=rule.severity,
            execution_time_ms=elapsed_ms(),
            is_sampled=is_sampled,
            population_records=population if is_sampled else None,
        )
