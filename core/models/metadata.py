# =============================================================================
# core/models/metadata.py - Table & Column Metadata Schemas
# =============================================================================
# These models describe the structure of the database being profiled, as
# reported by a MetadataReader (lib/metadata_reader.py).
#
# `TableMetadata.full_name` ("schema.table") is the identity key used by every
# other component. Column classification is derived from the metadata on
# demand (classify_column) and never stored.
# =============================================================================

from __future__ import annotations

import re
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# =============================================================================
# Enums
# =============================================================================

class TableType(str, Enum):
    """Kind of relation reported by the catalog."""
    BASE = "base"
    VIEW = "view"


class ColumnClassification(str, Enum):
    """
    Derived meaning of a column.

    EMAIL, DOCUMENT, PHONE and POSTAL_CODE are text subtypes detected from
    the column name; they are the only classes with regex validation.
    """
    IDENTIFIER = "identifier"
    TEMPORAL = "temporal"
    NUMERIC = "numeric"
    TEXT = "text"
    EMAIL = "email"
    DOCUMENT = "document"
    PHONE = "phone"
    POSTAL_CODE = "postal_code"
    BOOLEAN = "boolean"
    JSON = "json"
    UUID = "uuid"
    OTHER = "other"

    @property
    def is_text(self) -> bool:
        return self in TEXT_CLASSIFICATIONS


TEXT_CLASSIFICATIONS = frozenset({
    ColumnClassification.TEXT,
    ColumnClassification.EMAIL,
    ColumnClassification.DOCUMENT,
    ColumnClassification.PHONE,
    ColumnClassification.POSTAL_CODE,
})


# =============================================================================
# Metadata Models
# =============================================================================

class TableMetadata(BaseModel):
    """A table or view in the profiled database."""

    schema_name: str = Field(..., min_length=1, description="Schema the table lives in")
    name: str = Field(..., min_length=1, description="Table name")
    table_type: TableType = Field(default=TableType.BASE, description="Base table or view")
    column_count: int = Field(default=0, ge=0, description="Number of columns")
    estimated_row_count: int = Field(default=0, ge=0, description="Row estimate from the catalog")
    has_primary_key: bool = Field(default=False, description="Whether a primary key is declared")

    @property
    def full_name(self) -> str:
        """Stable identity key: schema + "." + name."""
        return f"{self.schema_name}.{self.name}"


class ColumnMetadata(BaseModel):
    """A column of a profiled table."""

    name: str = Field(..., min_length=1, description="Column name")
    data_type: str = Field(..., description="Declared SQL type, lower-cased")
    is_nullable: bool = Field(default=True, description="Whether NULL is allowed")
    ordinal_position: int = Field(default=0, ge=0, description="1-based column position")
    is_primary_key: bool = Field(default=False, description="Part of the primary key")
    is_foreign_key: bool = Field(default=False, description="Part of a declared foreign key")
    foreign_table: str | None = Field(
        default=None, description="Referenced table full name (schema.table)"
    )
    foreign_column: str | None = Field(default=None, description="Referenced column")
    fk_constraint_name: str | None = Field(default=None, description="Name of the FK constraint")
    distinct_count: int = Field(default=0, ge=0, description="Distinct non-null values")
    null_fraction: float = Field(default=0.0, ge=0.0, le=1.0, description="Share of NULL rows")

    @property
    def classification(self) -> ColumnClassification:
        return classify_column(self)


class ColumnAggregates(BaseModel):
    """Whole-table aggregates for one column, computed by the database."""

    total_count: int = Field(..., ge=0, description="Rows in the table")
    null_count: int = Field(default=0, ge=0, description="Rows where the column is NULL")
    distinct_count: int = Field(default=0, ge=0, description="Distinct non-null values")
    min_value: Any = Field(default=None, description="Smallest value")
    max_value: Any = Field(default=None, description="Largest value")

    @property
    def null_fraction(self) -> float:
        if self.total_count == 0:
            return 0.0
        return min(1.0, self.null_count / self.total_count)


# =============================================================================
# Classification
# =============================================================================

_TEMPORAL_TYPES = ("timestamp", "date", "time", "interval")
_NUMERIC_TYPES = ("int", "numeric", "decimal", "float", "double", "real", "serial", "money")
_TEXT_TYPES = ("char", "text", "string", "clob")
_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")


def name_tokens(name: str) -> list[str]:
    """Split a column name into lower-case tokens ("customerId" -> ["customer", "id"])."""
    spaced = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", name)
    return [t for t in _TOKEN_SPLIT.split(spaced.lower()) if t]


def is_identifier_name(name: str) -> bool:
    """True for `id`, `*_id` and `id_*` style names."""
    tokens = name_tokens(name)
    return bool(tokens) and (tokens[0] == "id" or tokens[-1] == "id")


def classify_column(column: ColumnMetadata) -> ColumnClassification:
    """
    Derive the classification of a column from its name and declared type.

    Checks run in order; the first match wins:
    identifier, temporal, uuid, numeric, boolean, json, text (with subtypes).

    Example:
        >>> classify_column(ColumnMetadata(name="email", data_type="varchar(255)"))
        <ColumnClassification.EMAIL: 'email'>
    """
    data_type = column.data_type.lower()
    lowered = column.name.lower()

    if column.is_primary_key or column.is_foreign_key or is_identifier_name(column.name):
        return ColumnClassification.IDENTIFIER

    if any(t in data_type for t in _TEMPORAL_TYPES):
        return ColumnClassification.TEMPORAL

    if "uuid" in data_type:
        return ColumnClassification.UUID

    if any(t in data_type for t in _NUMERIC_TYPES):
        return ColumnClassification.NUMERIC

    if "bool" in data_type:
        return ColumnClassification.BOOLEAN

    if "json" in data_type:
        return ColumnClassification.JSON

    if any(t in data_type for t in _TEXT_TYPES):
        tokens = set(name_tokens(column.name))
        if "email" in lowered or "mail" in tokens:
            return ColumnClassification.EMAIL
        if tokens & {"cpf", "cnpj", "document", "documento"}:
            return ColumnClassification.DOCUMENT
        if tokens & {"phone", "telefone", "celular", "fone", "mobile"}:
            return ColumnClassification.PHONE
        if tokens & {"cep", "zip", "zipcode", "postal"}:
            return ColumnClassification.POSTAL_CODE
        return ColumnClassification.TEXT

    return ColumnClassification.OTHER
