# =============================================================================
# app/exceptions.py - Error Taxonomy
# =============================================================================
# Every failure the profiler surfaces to a caller is one of the classes below.
# Errors tell HOW to fix, not just WHAT failed: each carries a code, a
# suggestion, and the offending input (table, column, condition) in `details`.
#
# Propagation policy:
#   ConnectivityError         transient, retryable by the caller
#   SchemaNotFoundError       fatal for the affected table only
#   MalformedAiResponseError  fails one AI attempt, counts as a refinement attempt
#   SqlFault                  broken rule condition, eligible for refinement
#   DataQualityFailure        rule ran fine but too many rows are invalid
#   VersionConflictError      optimistic-concurrency clash on rule versions
# =============================================================================

from typing import Any


class DQScopeException(Exception):
    """
    Base exception for dqscope.

    All custom exceptions inherit from this class.
    Provides structured error records with actionable suggestions.
    """

    def __init__(
        self,
        message: str,
        code: str = "DQSCOPE_ERROR",
        suggestion: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.suggestion = suggestion
        self.details = details or {}

    def __str__(self) -> str:
        result = f"[{self.code}] {self.message}"
        if self.suggestion:
            result += f" Suggestion: {self.suggestion}"
        return result

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a serializable record."""
        result: dict[str, Any] = {
            "detail": self.message,
            "code": self.code,
        }
        if self.suggestion:
            result["suggestion"] = self.suggestion
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Database Exceptions
# =============================================================================

class ConnectivityError(DQScopeException):
    """Raised when the profiled database cannot be reached or times out."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            code="CONNECTIVITY_ERROR",
            suggestion="Check that the database is reachable and retry the operation",
            details=details,
        )


class SchemaNotFoundError(DQScopeException):
    """Raised when a schema, table or column does not exist."""

    def __init__(self, table: str, column: str | None = None, reason: str | None = None):
        target = f"{table}.{column}" if column else table
        details: dict[str, Any] = {"table": table}
        if column:
            details["column"] = column
        if reason:
            details["reason"] = reason
        super().__init__(
            message=f"Schema object not found: {target}",
            code="SCHEMA_NOT_FOUND",
            suggestion="Refresh the table list; the object may have been dropped or renamed",
            details=details,
        )


class SqlFault(DQScopeException):
    """
    Raised when a rule condition cannot be evaluated.

    This is a syntactic or semantic failure of the SQL itself, as opposed to
    a condition that runs and flags invalid rows (see DataQualityFailure).
    """

    def __init__(self, condition: str, error: str, table: str | None = None):
        details: dict[str, Any] = {"condition": condition, "error": error}
        if table:
            details["table"] = table
        super().__init__(
            message=f"Rule condition failed to execute: {error}",
            code="SQL_FAULT",
            suggestion="Fix the condition or let the refinement loop propose a repair",
            details=details,
        )
        self.condition = condition
        self.error = error


class DataQualityFailure(DQScopeException):
    """Raised when a rule executed correctly but its pass rate is too low."""

    def __init__(
        self,
        rule_id: str,
        condition: str,
        table: str,
        actual_pass_rate: float,
        expected_pass_rate: float,
        column: str | None = None,
    ):
        super().__init__(
            message=(
                f"Rule {rule_id} passed {actual_pass_rate:.2f}% of rows, "
                f"expected at least {expected_pass_rate:.2f}%"
            ),
            code="DATA_QUALITY_FAILURE",
            suggestion="Inspect the invalid rows; this is a data issue, not a rule issue",
            details={
                "rule_id": rule_id,
                "condition": condition,
                "table": table,
                "column": column,
                "actual_pass_rate": actual_pass_rate,
                "expected_pass_rate": expected_pass_rate,
            },
        )


# =============================================================================
# AI Exceptions
# =============================================================================

class MalformedAiResponseError(DQScopeException):
    """Raised when the AI collaborator returns output that fails strict parsing."""

    def __init__(self, reason: str, raw_response: str | None = None):
        details: dict[str, Any] = {"reason": reason}
        if raw_response is not None:
            # Keep the record readable; responses can be long
            details["raw_response"] = raw_response[:500]
        super().__init__(
            message=f"AI response could not be parsed: {reason}",
            code="MALFORMED_AI_RESPONSE",
            suggestion="Retry the request; the model did not follow the JSON contract",
            details=details,
        )


# =============================================================================
# Rule Store Exceptions
# =============================================================================

class VersionConflictError(DQScopeException):
    """Raised when another writer created a rule version first."""

    def __init__(self, rule_key: str, expected_version: int, actual_version: int):
        super().__init__(
            message=(
                f"Version conflict on {rule_key}: expected latest v{expected_version}, "
                f"found v{actual_version}"
            ),
            code="VERSION_CONFLICT",
            suggestion="Reload the rule and apply your change to the newest version",
            details={
                "rule_key": rule_key,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )
        self.actual_version = actual_version


class RuleNotFoundError(DQScopeException):
    """Raised when a rule key has no stored versions."""

    def __init__(self, rule_key: str):
        super().__init__(
            message=f"Rule not found: {rule_key}",
            code="RULE_NOT_FOUND",
            suggestion="Check the owner, profile, table and rule_id",
            details={"rule_key": rule_key},
        )
