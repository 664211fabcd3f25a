# =============================================================================
# agents/prompts/rule_prompts.py - Rule Generation & Repair Prompts
# =============================================================================
# System prompts for the rule assistant (agents/rule_assistant.py).
#
# Only the JSON contract described in <output_format> is relied upon; the
# assistant parses responses strictly and rejects anything else.
#
# Usage:
#   system = build_generation_prompt(table, columns, sample_rows)
#   system = build_refinement_prompt(condition, error, table, columns)
# =============================================================================

from __future__ import annotations

import json
from typing import Any

from core.models import ColumnMetadata, TableMetadata, classify_column

# =============================================================================
# Generation
# =============================================================================

GENERATION_SYSTEM_PROMPT = """
<role>
You are a data-quality analyst for PostgreSQL databases. You propose data-quality
rules for one table. Each rule is a boolean SQL condition that is TRUE for VALID rows.
</role>

<rules>
- Use only the columns listed in <schema>. Quote nothing unless the name requires it.
- Use PostgreSQL syntax: ~ for regex, LENGTH(), COALESCE(), NOW(), CURRENT_DATE.
- Never compare with "= NULL"; use IS NULL / IS NOT NULL.
- Each condition must be a predicate on a single row (no SELECT, no aggregates).
- dimension is one of: completeness, uniqueness, validity, consistency, accuracy, timeliness.
- severity is one of: low, medium, high, critical.
- expectedPassRate is a number between 0 and 100.
- Propose between 3 and 10 rules, most valuable first.
</rules>

<output_format>
Respond with a JSON object only:
{"rules": [{"id": "...", "name": "...", "description": "...", "dimension": "...",
            "column": "... or null", "sqlCondition": "...", "severity": "...",
            "expectedPassRate": 95.0}]}
</output_format>
"""


def _schema_lines(columns: list[ColumnMetadata]) -> str:
    lines = []
    for column in columns:
        flags = []
        if column.is_primary_key:
            flags.append("PK")
        if column.is_foreign_key and column.foreign_table:
            flags.append(f"FK -> {column.foreign_table}.{column.foreign_column}")
        if not column.is_nullable:
            flags.append("NOT NULL")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        lines.append(
            f"- {column.name}: {column.data_type} ({classify_column(column).value}){suffix}"
        )
    return "\n".join(lines)


def build_generation_prompt(
    table: TableMetadata,
    columns: list[ColumnMetadata],
    sample_rows: list[dict[str, Any]],
) -> str:
    """
    Build the system prompt for rule generation.

    Args:
        table: Target table
        columns: Column metadata (names, types, keys)
        sample_rows: A few rows shown to the model as examples

    Returns:
        Complete system prompt
    """
    sample = json.dumps(sample_rows[:5], default=str, ensure_ascii=False)
    return (
        f"{GENERATION_SYSTEM_PROMPT}\n"
        f"<table>{table.full_name} (~{table.estimated_row_count} rows)</table>\n"
        f"<schema>\n{_schema_lines(columns)}\n</schema>\n"
        f"<sample_rows>\n{sample}\n</sample_rows>"
    )


# =============================================================================
# Refinement
# =============================================================================

REFINEMENT_SYSTEM_PROMPT = """
<role>
You repair PostgreSQL boolean conditions used as data-quality rules. The condition
failed to execute. Fix the SQL so it runs, keeping the original intent.
</role>

<rules>
- Use only the columns listed in <schema>.
- Return a single-row predicate, TRUE for valid rows, without a trailing semicolon.
- If the intent cannot be expressed against this schema, give up.
</rules>

<output_format>
Respond with a JSON object only, either
{"success": true, "refinedCondition": "...", "explanation": "...", "confidence": 0-100}
or
{"success": false, "errorMessage": "why it cannot be fixed"}
</output_format>
"""


def build_refinement_prompt(
    condition: str,
    error_message: str,
    table: str,
    columns: list[ColumnMetadata],
) -> str:
    """Build the system prompt for repairing one failed condition."""
    return (
        f"{REFINEMENT_SYSTEM_PROMPT}\n"
        f"<table>{table}</table>\n"
        f"<schema>\n{_schema_lines(columns)}\n</schema>\n"
        f"<failed_condition>{condition}</failed_condition>\n"
        f"<database_error>{error_message}</database_error>"
    )
