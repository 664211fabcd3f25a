# =============================================================================
# core/services/rule_templates.py - Built-in Rule Templates
# =============================================================================
# Ready-made rule conditions with a {column} placeholder (and {table} for
# rules that look at other rows). Templates are matched to columns by their
# derived classification and, for a few, by a name token:
#
#   Document (cpf / cnpj)  -> CPF or CNPJ format
#   Phone                  -> Brazilian phone format
#   PostalCode             -> CEP format
#   Email                  -> email format
#   Temporal               -> date not in the future
#   Numeric                -> non-negative value
#   Text subtypes          -> non-blank text
#   every nullable column  -> required field
#   Identifier (non-key)   -> unique values
#
# Usage:
#   candidates = suggest_templates(table, columns)
# =============================================================================

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from core.models import (
    ColumnClassification,
    ColumnMetadata,
    RuleCandidate,
    RuleDimension,
    RuleSeverity,
    RuleSource,
    TableMetadata,
)
from core.models.metadata import name_tokens as column_name_tokens

logger = logging.getLogger(__name__)


class RuleTemplate(BaseModel):
    """A parameterised rule condition."""

    id: str = Field(..., description="Stable template identifier")
    name: str
    dimension: RuleDimension
    condition: str = Field(..., description="Predicate with {column} (and optionally {table})")
    description: str
    severity: RuleSeverity = RuleSeverity.MEDIUM
    expected_pass_rate: float = Field(default=95.0, ge=0.0, le=100.0)
    classifications: frozenset[ColumnClassification] = Field(
        default_factory=frozenset, description="Column classes the template applies to; empty = all"
    )
    name_tokens: frozenset[str] = Field(
        default_factory=frozenset, description="Column name must contain one of these tokens"
    )
    nullable_only: bool = Field(default=False)
    exclude_keys: bool = Field(default=False, description="Skip primary and foreign key columns")

    def applies_to(self, column: ColumnMetadata) -> bool:
        if self.nullable_only and not column.is_nullable:
            return False
        if self.exclude_keys and (column.is_primary_key or column.is_foreign_key):
            return False
        if self.classifications and column.classification not in self.classifications:
            return False
        if self.name_tokens and not self.name_tokens.intersection(column_name_tokens(column.name)):
            return False
        return True

    def render(self, table: TableMetadata, column: ColumnMetadata) -> str:
        return self.condition.replace("{column}", column.name).replace("{table}", table.full_name)


_TEXTUAL = frozenset({
    ColumnClassification.TEXT,
    ColumnClassification.EMAIL,
    ColumnClassification.DOCUMENT,
    ColumnClassification.PHONE,
    ColumnClassification.POSTAL_CODE,
})

RULE_TEMPLATES: tuple[RuleTemplate, ...] = (
    RuleTemplate(
        id="cpf_format",
        name="Valid CPF",
        dimension=RuleDimension.VALIDITY,
        condition="{column} ~ '^[0-9]{3}\\.[0-9]{3}\\.[0-9]{3}-[0-9]{2}$' OR {column} ~ '^[0-9]{11}$'",
        description="CPF formatted as 000.000.000-00 or 11 digits",
        severity=RuleSeverity.HIGH,
        expected_pass_rate=100.0,
        classifications=frozenset({ColumnClassification.DOCUMENT}),
        name_tokens=frozenset({"cpf"}),
    ),
    RuleTemplate(
        id="cnpj_format",
        name="Valid CNPJ",
        dimension=RuleDimension.VALIDITY,
        condition="{column} ~ '^[0-9]{2}\\.[0-9]{3}\\.[0-9]{3}/[0-9]{4}-[0-9]{2}$' OR {column} ~ '^[0-9]{14}$'",
        description="CNPJ formatted as 00.000.000/0000-00 or 14 digits",
        severity=RuleSeverity.HIGH,
        expected_pass_rate=100.0,
        classifications=frozenset({ColumnClassification.DOCUMENT}),
        name_tokens=frozenset({"cnpj"}),
    ),
    RuleTemplate(
        id="phone_br_format",
        name="Brazilian phone",
        dimension=RuleDimension.VALIDITY,
        condition="{column} ~ '^(\\([0-9]{2}\\)|[0-9]{2})[ -]?9?[0-9]{4}[ -]?[0-9]{4}$'",
        description="Phone with area code, optional 9th digit",
        severity=RuleSeverity.MEDIUM,
        expected_pass_rate=95.0,
        classifications=frozenset({ColumnClassification.PHONE}),
    ),
    RuleTemplate(
        id="cep_format",
        name="Valid CEP",
        dimension=RuleDimension.VALIDITY,
        condition="{column} ~ '^[0-9]{5}-[0-9]{3}$' OR {column} ~ '^[0-9]{8}$'",
        description="Postal code formatted as 00000-000 or 8 digits",
        severity=RuleSeverity.HIGH,
        expected_pass_rate=100.0,
        classifications=frozenset({ColumnClassification.POSTAL_CODE}),
    ),
    RuleTemplate(
        id="email_format",
        name="Valid email",
        dimension=RuleDimension.VALIDITY,
        condition="{column} ~* '^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\\.[A-Za-z]{2,}$'",
        description="Email address with a user, a domain and a TLD",
        severity=RuleSeverity.HIGH,
        expected_pass_rate=100.0,
        classifications=frozenset({ColumnClassification.EMAIL}),
    ),
    RuleTemplate(
        id="date_not_future",
        name="Date not in the future",
        dimension=RuleDimension.TIMELINESS,
        condition="{column} <= CURRENT_TIMESTAMP",
        description="Recorded dates cannot be later than now",
        severity=RuleSeverity.HIGH,
        expected_pass_rate=100.0,
        classifications=frozenset({ColumnClassification.TEMPORAL}),
    ),
    RuleTemplate(
        id="non_negative",
        name="Non-negative value",
        dimension=RuleDimension.ACCURACY,
        condition="{column} >= 0",
        description="Amounts and counts are not negative",
        severity=RuleSeverity.MEDIUM,
        expected_pass_rate=95.0,
        classifications=frozenset({ColumnClassification.NUMERIC}),
    ),
    RuleTemplate(
        id="text_not_blank",
        name="Text not blank",
        dimension=RuleDimension.COMPLETENESS,
        condition="LENGTH(TRIM({column})) > 0",
        description="Text values contain more than whitespace",
        severity=RuleSeverity.MEDIUM,
        expected_pass_rate=100.0,
        classifications=_TEXTUAL,
    ),
    RuleTemplate(
        id="not_null",
        name="Required field",
        dimension=RuleDimension.COMPLETENESS,
        condition="{column} IS NOT NULL",
        description="Column must be filled",
        severity=RuleSeverity.HIGH,
        expected_pass_rate=100.0,
        nullable_only=True,
    ),
    RuleTemplate(
        id="unique_values",
        name="Unique values",
        dimension=RuleDimension.UNIQUENESS,
        condition="{column} IN (SELECT {column} FROM {table} GROUP BY {column} HAVING COUNT(*) = 1)",
        description="No value appears on more than one row",
        severity=RuleSeverity.HIGH,
        expected_pass_rate=100.0,
        classifications=frozenset({ColumnClassification.IDENTIFIER, ColumnClassification.UUID}),
        exclude_keys=True,
    ),
)


def get_template(template_id: str) -> RuleTemplate | None:
    """Look up a template by id."""
    for template in RULE_TEMPLATES:
        if template.id == template_id:
            return template
    return None


def suggest_templates(
    table: TableMetadata,
    columns: list[ColumnMetadata],
    templates: tuple[RuleTemplate, ...] = RULE_TEMPLATES,
) -> list[RuleCandidate]:
    """
    Instantiate every applicable template for every column.

    Returns candidates in column order, then template order, with
    source=template.
    """
    candidates: list[RuleCandidate] = []
    for column in sorted(columns, key=lambda c: c.ordinal_position):
        for template in templates:
            if not template.applies_to(column):
                continue
            candidates.append(RuleCandidate(
                name=f"{template.name} - {column.name}",
                dimension=template.dimension,
                schema_name=table.schema_name,
                table_name=table.name,
                column=column.name,
                condition=template.render(table, column),
                description=template.description,
                severity=template.severity,
                expected_pass_rate=template.expected_pass_rate,
                source=RuleSource.TEMPLATE,
            ))

    logger.debug(f"Suggested {len(candidates)} template rules for {table.full_name}")
    return candidates
