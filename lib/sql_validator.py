# =============================================================================
# lib/sql_validator.py - Static Validation of Rule Conditions
# =============================================================================
# Cheap checks run on a rule condition before it is sent to the database,
# mainly to vet conditions proposed by the AI repair loop:
#
#   - balanced parentheses and quotes
#   - no dangling AND/OR or comparison operators
#   - "= NULL" instead of "IS NULL"
#   - functions from other dialects (LEN, ISNULL, GETDATE, ...)
#   - REGEXP / RLIKE instead of PostgreSQL's ~ operator
#   - column references against the table schema
#
# suggest_corrections() rewrites the mechanical mistakes it can fix.
# =============================================================================

from __future__ import annotations

import re
from collections.abc import Iterable

from pydantic import BaseModel, Field


class SqlValidationResult(BaseModel):
    """Outcome of validating one condition."""

    is_valid: bool = True
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    corrected_condition: str | None = Field(
        default=None, description="Mechanical fix, when one applies"
    )


# =============================================================================
# Vocabulary
# =============================================================================

RESERVED_WORDS = frozenset({
    "and", "or", "not", "null", "is", "in", "like", "ilike", "between", "true", "false",
    "case", "when", "then", "else", "end", "as", "distinct", "exists", "select", "from",
    "where", "any", "all", "some", "similar", "to", "escape", "interval", "collate",
    "current_date", "current_time", "current_timestamp", "localtimestamp", "now",
    "date", "time", "timestamp", "timestamptz", "with", "without", "zone",
    "text", "integer", "int", "bigint", "smallint", "numeric", "decimal", "varchar",
    "char", "character", "varying", "boolean", "bool", "float", "real", "double", "precision",
    "year", "month", "day", "hour", "minute", "second", "epoch", "dow", "doy", "week", "quarter",
    "for", "on", "asc", "desc", "unknown", "at",
})

# Foreign function -> PostgreSQL replacement (None: no direct equivalent)
FOREIGN_FUNCTIONS: dict[str, str | None] = {
    "LEN": "LENGTH",
    "ISNULL": "COALESCE",
    "NVL": "COALESCE",
    "GETDATE": "NOW",
    "SYSDATE": "NOW",
    "DATEDIFF": None,
}

_STRING_LITERAL = re.compile(r"'(?:[^']|'')*'")
_CAST = re.compile(r"::\s*[A-Za-z_][A-Za-z0-9_]*(\(\s*\d+(\s*,\s*\d+)?\s*\))?")
_IDENTIFIER = re.compile(r'"([^"]+)"|\b([A-Za-z_][A-Za-z0-9_]*)\b')
_EQUALS_NULL = re.compile(r"(!=|<>|=)\s*NULL\b", re.IGNORECASE)
_LEADING_OPERATOR = re.compile(r"^\s*(AND|OR)\b", re.IGNORECASE)
_TRAILING_OPERATOR = re.compile(r"(\b(AND|OR|NOT)|[=<>!]|\bLIKE|\bIN)\s*$", re.IGNORECASE)
_REGEXP = re.compile(r"\b(REGEXP|RLIKE)\b", re.IGNORECASE)


def _strip_literals(condition: str) -> str:
    return _STRING_LITERAL.sub("''", condition)


def _parentheses_balanced(condition: str) -> bool:
    depth = 0
    for char in _strip_literals(condition):
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                return False
    return depth == 0


def _quotes_balanced(condition: str) -> bool:
    # '' inside a literal is an escaped quote
    return condition.replace("''", "").count("'") % 2 == 0


def referenced_columns(condition: str) -> list[str]:
    """Identifiers in the condition that look like column references."""
    cleaned = _CAST.sub(" ", _strip_literals(condition))
    found: list[str] = []
    for match in _IDENTIFIER.finditer(cleaned):
        quoted, bare = match.group(1), match.group(2)
        name = quoted if quoted is not None else bare
        rest = cleaned[match.end():].lstrip()
        # Function calls and qualifiers ("t." in t.col) are not columns
        if rest.startswith("(") or rest.startswith("."):
            continue
        if bare is not None and (bare.lower() in RESERVED_WORDS or bare.upper() in FOREIGN_FUNCTIONS):
            continue
        if name not in found:
            found.append(name)
    return found


# =============================================================================
# Public API
# =============================================================================

def validate_condition(condition: str, columns: Iterable[str] | None = None) -> SqlValidationResult:
    """
    Validate a boolean SQL condition without touching the database.

    Args:
        condition: The predicate, e.g. "email LIKE '%@%'"
        columns: Known column names; when given, unknown references are errors

    Returns:
        SqlValidationResult (is_valid False when any error was found)
    """
    result = SqlValidationResult()
    stripped = condition.strip() if condition else ""
    if not stripped:
        result.errors.append("Condition is empty")
        result.is_valid = False
        return result

    if not _quotes_balanced(stripped):
        result.errors.append("Unbalanced single quotes")
    if not _parentheses_balanced(stripped):
        result.errors.append("Unbalanced parentheses")

    literal_free = _strip_literals(stripped)
    if _LEADING_OPERATOR.search(literal_free):
        result.errors.append("Condition starts with a logical operator")
    if _TRAILING_OPERATOR.search(literal_free):
        result.errors.append("Condition ends with an operator")
    if _EQUALS_NULL.search(literal_free):
        result.errors.append("Comparison with NULL always yields NULL; use IS NULL / IS NOT NULL")
    if _REGEXP.search(literal_free):
        result.errors.append("REGEXP/RLIKE are not supported; use the ~ operator")

    for name, replacement in FOREIGN_FUNCTIONS.items():
        if re.search(rf"\b{name}\s*\(", literal_free, re.IGNORECASE):
            hint = f"; use {replacement}()" if replacement else ""
            result.errors.append(f"Function {name}() is not available in PostgreSQL{hint}")

    if columns is not None:
        known = {c.lower() for c in columns}
        for name in referenced_columns(stripped):
            if name.lower() not in known:
                result.errors.append(f"Unknown column '{name}'")

    if "*" in literal_free and "select" not in literal_free.lower():
        result.warnings.append("'*' outside a subquery is unusual in a row predicate")

    result.is_valid = not result.errors
    corrected = suggest_corrections(stripped)
    if corrected != stripped:
        result.corrected_condition = corrected
    return result


def suggest_corrections(condition: str) -> str:
    """
    Rewrite mechanical dialect mistakes.

    Example:
        >>> suggest_corrections("LEN(name) > 0 AND code = NULL")
        'LENGTH(name) > 0 AND code IS NULL'
    """
    # Work only outside string literals
    parts = re.split(r"('(?:[^']|'')*')", condition)
    for i in range(0, len(parts), 2):
        part = parts[i]
        part = re.sub(r"(!=|<>)\s*NULL\b", "IS NOT NULL", part, flags=re.IGNORECASE)
        part = re.sub(r"=\s*NULL\b", "IS NULL", part, flags=re.IGNORECASE)
        part = re.sub(r"\bNOT\s+REGEXP\b|\bNOT\s+RLIKE\b", "!~", part, flags=re.IGNORECASE)
        part = re.sub(r"\bREGEXP\b|\bRLIKE\b", "~", part, flags=re.IGNORECASE)
        for name, replacement in FOREIGN_FUNCTIONS.items():
            if replacement:
                part = re.sub(rf"\b{name}\s*\(", f"{replacement}(", part, flags=re.IGNORECASE)
        parts[i] = part
    return "".join(parts).strip()
