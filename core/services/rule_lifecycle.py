# =============================================================================
# core/services/rule_lifecycle.py - Rule Candidate Lifecycle
# =============================================================================
# Drives a rule candidate from proposal to a terminal state:
#
#   Proposed -> Validating -> Passed | Failed | Errored
#                    |
#                    +-> Refining (only when the condition cannot execute)
#
# Refinement loop:
#   1. A SqlFault (status "error") sends the condition, the database error and
#      the table schema to the AI collaborator.
#   2. A refined condition is statically checked (lib/sql_validator.py) and,
#      if clean, executed again.
#   3. At most MAX_REFINEMENT_ATTEMPTS round trips. Malformed answers,
#      unreachable AI and statically invalid conditions all use up an attempt.
#   4. An explicit {"success": false} answer ends the loop immediately.
#   Exhausted or declined rules end as Errored with needs_review=True.
#
# A condition that executes but misses its expected pass rate is Failed: a
# data problem, never refined.
#
# Versioning is optimistic: next version = latest + 1, written with a per-key
# compare-and-swap. One conflict is retried after re-reading the latest
# version; a second conflict is surfaced to the caller.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from typing import Any

from app.config import settings
from app.exceptions import (
    ConnectivityError,
    DataQualityFailure,
    DQScopeException,
    MalformedAiResponseError,
    SqlFault,
    VersionConflictError,
)
from agents.rule_assistant import AiClientConfig, RuleAssistantBase
from core.models import (
    ColumnMetadata,
    CustomRuleVersion,
    ExecutionStatus,
    QualityAlert,
    RefinementAttempt,
    RuleCandidate,
    RuleExecutionResult,
    RuleKey,
    RuleOutcome,
    RuleSeverity,
    RuleSource,
    RuleState,
    TableMetadata,
)
from core.services.rule_store import RuleStore
from core.services.rule_templates import suggest_templates
from lib.rule_executor import RuleDataSource, RuleExecutor
from lib.sql_validator import validate_condition
from lib.supabase_client import SupabaseClientError

logger = logging.getLogger(__name__)

INITIAL_CHANGE_REASON = "Initial creation"
UPDATE_CHANGE_REASON = "Update of existing rule"

# Attempt outcomes recorded in RefinementAttempt.outcome
OUTCOME_EXECUTED = "executed"
OUTCOME_SQL_ERROR = "sql_error"
OUTCOME_INVALID_SQL = "invalid_sql"
OUTCOME_MALFORMED = "malformed_response"
OUTCOME_UNREACHABLE = "ai_unreachable"
OUTCOME_DECLINED = "declined"

# Quality alert thresholds
HIGH_ERROR_RATE_PERCENT = 50.0
HIGH_ERROR_RATE_MIN_RULES = 2
PERFECT_MIN_RULES = 3
PERFECT_MIN_RECORDS = 1000


def _log_transition(candidate: RuleCandidate, state: RuleState) -> None:
    logger.debug(f"Rule {candidate.id} on {candidate.table_full_name}: {state.value}")


class RuleLifecycleManager:
    """
    Validates, refines and versions data-quality rules.

    Example:
        manager = RuleLifecycleManager(RuleExecutor(), RuleAssistant(), InMemoryRuleStore())
        outcome = await manager.validate_candidate(candidate, data_source, columns, config)
        if outcome.state == RuleState.PASSED:
            await manager.approve_candidate(outcome.candidate, "owner", "profile")
    """

    def __init__(
        self,
        executor: RuleExecutor | None = None,
        assistant: RuleAssistantBase | None = None,
        store: RuleStore | None = None,
        max_attempts: int | None = None,
    ):
        self.executor = executor or RuleExecutor()
        self.assistant = assistant
        self.store = store
        self.max_attempts = max_attempts if max_attempts is not None else settings.MAX_REFINEMENT_ATTEMPTS

    # -------------------------------------------------------------------------
    # Validation & Refinement
    # -------------------------------------------------------------------------

    async def validate_candidate(
        self,
        candidate: RuleCandidate,
        data_source: RuleDataSource,
        columns: Sequence[ColumnMetadata],
        ai_config: AiClientConfig | None = None,
    ) -> RuleOutcome:
        """
        Execute a candidate and repair it while it fails to run.

        Never raises for rule-level problems: every terminal state, including
        an unreachable database, comes back as a RuleOutcome.
        """
        original = candidate.condition
        _log_transition(candidate, RuleState.PROPOSED)
        attempts: list[RefinementAttempt] = []
        declined: str | None = None

        try:
            _log_transition(candidate, RuleState.VALIDATING)
            result = await self.executor.execute(candidate, data_source)

            if result.status == ExecutionStatus.ERROR and self.assistant is not None and ai_config is not None:
                _log_transition(candidate, RuleState.REFINING)
                candidate, result, attempts, declined = await self._refine(
                    candidate, result, data_source, columns, ai_config
                )
        except DQScopeException as e:
            # Database unreachable or table gone: not the rule's fault
            logger.warning(f"Rule {candidate.id} could not be validated: {e}")
            return RuleOutcome(
                candidate=candidate,
                original_condition=original,
                state=RuleState.ERRORED,
                attempts=attempts,
                failure=e.to_dict(),
            )

        await self._record(result)
        if result.status == ExecutionStatus.ERROR:
            return self._errored(candidate, original, result, attempts, declined)

        failure = None
        state = RuleState.PASSED
        if result.status == ExecutionStatus.FAIL:
            state = RuleState.FAILED
            failure = DataQualityFailure(
                rule_id=candidate.id,
                condition=candidate.condition,
                table=candidate.table_full_name,
                actual_pass_rate=result.actual_pass_rate,
                expected_pass_rate=result.expected_pass_rate,
                column=candidate.column,
            ).to_dict()

        logger.info(
            f"Rule {candidate.id} on {candidate.table_full_name}: {state.value} "
            f"({result.actual_pass_rate:.2f}% valid, {len(attempts)} refinement attempts)"
        )
        return RuleOutcome(
            candidate=candidate,
            original_condition=original,
            state=state,
            result=result,
            attempts=attempts,
            failure=failure,
        )

    async def _refine(
        self,
        candidate: RuleCandidate,
        result: RuleExecutionResult,
        data_source: RuleDataSource,
        columns: Sequence[ColumnMetadata],
        ai_config: AiClientConfig,
    ) -> tuple[RuleCandidate, RuleExecutionResult, list[RefinementAttempt], str | None]:
        """
        Run the bounded repair loop.

        Returns (candidate, last result, attempts, decline reason). The
        candidate carries the refined condition only when it executed.
        """
        attempts: list[RefinementAttempt] = []
        condition = candidate.condition
        error = result.error_message or "unknown error"
        column_names = [c.name for c in columns]

        for number in range(1, self.max_attempts + 1):
            logger.info(f"Refining rule {candidate.id} (attempt {number}/{self.max_attempts})")
            try:
                answer = await self.assistant.refine_condition(
                    condition, error, candidate.table_full_name, list(columns), ai_config
                )
            except MalformedAiResponseError as e:
                attempts.append(RefinementAttempt(
                    attempt=number, condition=condition, error_message=error, outcome=OUTCOME_MALFORMED,
                ))
                logger.warning(f"Refinement attempt {number} for rule {candidate.id}: {e.message}")
                continue
            except ConnectivityError as e:
                attempts.append(RefinementAttempt(
                    attempt=number, condition=condition, error_message=error, outcome=OUTCOME_UNREACHABLE,
                ))
                logger.warning(f"Refinement attempt {number} for rule {candidate.id}: {e.message}")
                continue

            if not answer.success:
                attempts.append(RefinementAttempt(
                    attempt=number, condition=condition, error_message=error,
                    confidence=answer.confidence, outcome=OUTCOME_DECLINED,
                ))
                logger.info(f"Refinement declined for rule {candidate.id}: {answer.reason}")
                return candidate, result, attempts, answer.reason

            refined = answer.refined_condition
            check = validate_condition(refined, column_names)
            if not check.is_valid:
                attempts.append(RefinementAttempt(
                    attempt=number, condition=condition, error_message=error,
                    refined_condition=refined, confidence=answer.confidence, outcome=OUTCOME_INVALID_SQL,
                ))
                condition, error = refined, "; ".join(check.errors)
                continue

            attempt_candidate = candidate.model_copy(update={"condition": refined})
            attempt_result = await self.executor.execute(attempt_candidate, data_source)
            if attempt_result.status == ExecutionStatus.ERROR:
                attempts.append(RefinementAttempt(
                    attempt=number, condition=condition, error_message=error,
                    refined_condition=refined, confidence=answer.confidence, outcome=OUTCOME_SQL_ERROR,
                ))
                condition, error = refined, attempt_result.error_message or "unknown error"
                result = attempt_result
                continue

            attempts.append(RefinementAttempt(
                attempt=number, condition=condition, error_message=error,
                refined_condition=refined, confidence=answer.confidence, outcome=OUTCOME_EXECUTED,
            ))
            return attempt_candidate, attempt_result, attempts, None

        # Report the last condition tried and why it failed
        result = result.model_copy(update={"condition": condition, "error_message": error})
        return candidate, result, attempts, None

    def _errored(
        self,
        candidate: RuleCandidate,
        original: str,
        result: RuleExecutionResult,
        attempts: list[RefinementAttempt],
        declined_reason: str | None = None,
    ) -> RuleOutcome:
        failure = SqlFault(
            result.condition, result.error_message or "unknown error", table=candidate.table_full_name
        ).to_dict()
        failure["details"]["refinement_attempts"] = len(attempts)
        if declined_reason:
            failure["details"]["refinement_declined"] = declined_reason

        logger.warning(
            f"Rule {candidate.id} on {candidate.table_full_name}: errored after "
            f"{len(attempts)} refinement attempts, needs review"
        )
        return RuleOutcome(
            candidate=candidate,
            original_condition=original,
            state=RuleState.ERRORED,
            result=result,
            attempts=attempts,
            needs_review=True,
            failure=failure,
        )

    async def _record(self, result: RuleExecutionResult) -> None:
        if self.store is None:
            return
        try:
            await self.store.record_execution(result)
        except (DQScopeException, SupabaseClientError) as e:
            # History is best-effort; the outcome itself is still valid
            logger.warning(f"Could not record execution of rule {result.rule_candidate_id}: {e}")

    async def validate_many(
        self,
        candidates: Sequence[RuleCandidate],
        data_source: RuleDataSource,
        columns_by_table: Mapping[str, Sequence[ColumnMetadata]],
        ai_config: AiClientConfig | None = None,
    ) -> list[RuleOutcome]:
        """
        Validate candidates concurrently.

        Outcomes are returned in completion order, not input order.
        """
        tasks = [
            asyncio.ensure_future(self.validate_candidate(
                candidate, data_source, columns_by_table.get(candidate.table_full_name, []), ai_config
            ))
            for candidate in candidates
        ]
        outcomes: list[RuleOutcome] = []
        for finished in asyncio.as_completed(tasks):
            outcomes.append(await finished)
        return outcomes

    # -------------------------------------------------------------------------
    # Candidate Generation
    # -------------------------------------------------------------------------

    async def generate_candidates(
        self,
        table: TableMetadata,
        columns: list[ColumnMetadata],
        sample_rows: list[dict[str, Any]],
        ai_config: AiClientConfig | None = None,
        include_templates: bool = True,
    ) -> list[RuleCandidate]:
        """
        Template candidates followed by AI candidates.

        An AI failure is logged and leaves the template candidates in place.
        """
        candidates = suggest_templates(table, columns) if include_templates else []
        if self.assistant is None or ai_config is None:
            return candidates

        try:
            candidates.extend(
                await self.assistant.generate_rule_candidates(table, columns, sample_rows, ai_config)
            )
        except (MalformedAiResponseError, ConnectivityError) as e:
            logger.warning(f"AI rule generation failed for {table.full_name}: {e}")
        return candidates

    # -------------------------------------------------------------------------
    # Versioning
    # -------------------------------------------------------------------------

    def _require_store(self) -> RuleStore:
        if self.store is None:
            raise RuntimeError("RuleLifecycleManager was created without a RuleStore")
        return self.store

    async def create_version(
        self,
        key: RuleKey,
        candidate: RuleCandidate,
        change_reason: str | None = None,
        notes: str | None = None,
        source: RuleSource | None = None,
    ) -> CustomRuleVersion:
        """
        Store a candidate as the next version of a rule key.

        Raises:
            VersionConflictError: Another writer won twice in a row
        """
        store = self._require_store()
        data = candidate.model_dump()
        data.update(
            schema_name=key.schema_name,
            table_name=key.table_name,
            source=source or candidate.source,
        )

        attempt = 0
        while True:
            attempt += 1
            latest = await store.latest_version(key)
            current = latest.version if latest else 0
            reason = change_reason or (INITIAL_CHANGE_REASON if current == 0 else UPDATE_CHANGE_REASON)
            version = CustomRuleVersion(
                **data,
                owner_id=key.owner_id,
                profile_id=key.profile_id,
                rule_id=key.rule_id,
                version=current + 1,
                change_reason=reason,
                notes=notes,
            )
            try:
                stored = await store.upsert_version(key, version, expected_latest=current)
            except VersionConflictError as e:
                if attempt > 1:
                    raise
                logger.warning(f"Version conflict on {key} (found v{e.actual_version}); retrying once")
                continue

            logger.info(f"Created version {stored.version} of rule {key}")
            return stored

    async def approve_candidate(
        self,
        candidate: RuleCandidate,
        owner_id: str,
        profile_id: str,
        rule_id: str | None = None,
        notes: str | None = None,
    ) -> CustomRuleVersion:
        """Mark a candidate as user-approved and store it as a custom rule version."""
        key = RuleKey(
            owner_id=owner_id,
            profile_id=profile_id,
            schema_name=candidate.schema_name,
            table_name=candidate.table_name,
            rule_id=rule_id or candidate.id,
        )
        approved = candidate.model_copy(update={"approved_by_user": True})
        return await self.create_version(key, approved, notes=notes)

    async def list_latest(self, owner_id: str, profile_id: str) -> list[CustomRuleVersion]:
        return await self._require_store().list_latest(owner_id, profile_id)

    async def deactivate(self, key: RuleKey) -> None:
        await self._require_store().deactivate(key)

    # -------------------------------------------------------------------------
    # Batch Execution
    # -------------------------------------------------------------------------

    async def execute_rules(
        self,
        rules: Sequence[RuleCandidate],
        data_source: RuleDataSource,
    ) -> tuple[list[RuleExecutionResult], list[QualityAlert]]:
        """
        Execute stored rules as-is (no refinement) and derive quality alerts.

        Rules that cannot run at all come back as error results. Results are
        in completion order.
        """

        async def run_one(rule: RuleCandidate) -> RuleExecutionResult:
            try:
                return await self.executor.execute(rule, data_source)
            except DQScopeException as e:
                logger.warning(f"Rule {rule.id} could not run: {e}")
                return RuleExecutionResult(
                    rule_candidate_id=rule.id,
                    table=rule.table_full_name,
                    condition=rule.condition,
                    expected_pass_rate=rule.expected_pass_rate,
                    status=ExecutionStatus.ERROR,
                    severity=RuleSeverity.ERROR,
                    error_message=e.message,
                )

        results: list[RuleExecutionResult] = []
        for finished in asyncio.as_completed([run_one(rule) for rule in rules]):
            result = await finished
            await self._record(result)
            results.append(result)
        return results, detect_quality_alerts(results)


# =============================================================================
# Quality Alerts
# =============================================================================

def detect_quality_alerts(
    results: Sequence[RuleExecutionResult],
    total_records: int | None = None,
) -> list[QualityAlert]:
    """
    Flag suspicious patterns across one batch of rule results.

    Args:
        results: Results of rules run against the same table
        total_records: Table size; defaults to the largest total in the batch
    """
    alerts: list[QualityAlert] = []
    if total_records is None:
        total_records = max((r.population_records or r.total_records for r in results), default=0)

    if total_records == 0:
        alerts.append(QualityAlert(
            type="ZERO_RECORDS",
            severity=RuleSeverity.ERROR,
            message="The table has no records to analyse",
        ))

    errored = [r for r in results if r.status == ExecutionStatus.ERROR]
    if results and len(errored) == len(results):
        alerts.append(QualityAlert(
            type="ALL_RULES_FAILED",
            severity=RuleSeverity.CRITICAL,
            message=f"All {len(results)} rules failed to execute. Check connectivity and permissions.",
        ))

    error_rate = 100.0 * len(errored) / len(results) if results else 0.0
    if error_rate > HIGH_ERROR_RATE_PERCENT and len(results) > HIGH_ERROR_RATE_MIN_RULES:
        alerts.append(QualityAlert(
            type="HIGH_ERROR_RATE",
            severity=RuleSeverity.WARNING,
            message=f"{error_rate:.1f}% of the rules failed to execute. Possible SQL dialect mismatch.",
        ))

    passed = [r for r in results if r.status == ExecutionStatus.PASS]
    perfect = [
        r for r in passed
        if r.actual_pass_rate == 100.0 and r.valid_records == r.total_records and r.valid_records > 0
    ]
    if len(perfect) == len(passed) and len(perfect) > PERFECT_MIN_RULES and total_records > PERFECT_MIN_RECORDS:
        alerts.append(QualityAlert(
            type="SUSPICIOUSLY_PERFECT",
            severity=RuleSeverity.WARNING,
            message=f"All {len(perfect)} rules returned 100% valid rows. Check that the conditions are right.",
        ))

    zero_valid = [
        r for r in results
        if r.status != ExecutionStatus.ERROR and r.valid_records == 0 and r.total_records > 0
    ]
    if zero_valid:
        names = ", ".join(r.rule_candidate_id for r in zero_valid)
        alerts.append(QualityAlert(
            type="ZERO_VALID_RECORDS",
            severity=RuleSeverity.WARNING,
            message=f"{len(zero_valid)} rule(s) returned zero valid rows (inverted logic?): {names}",
        ))

    return alerts
