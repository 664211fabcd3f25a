# =============================================================================
# tests/test_metadata_reader.py - SQLAlchemy Metadata Reader Tests
# =============================================================================
# Runs SqlAlchemyMetadataReader against an in-memory SQLite database (schema
# "main") and checks error translation.
#
# Run with: pytest tests/test_metadata_reader.py -v
# =============================================================================

import asyncio

import pytest
from sqlalchemy.exc import NoSuchTableError, OperationalError

from app.exceptions import ConnectivityError, SchemaNotFoundError
from core.models import ColumnClassification, TableMetadata
from lib.metadata_reader import SqlAlchemyMetadataReader, translate_db_error


@pytest.fixture
def reader(sqlite_engine):
    return SqlAlchemyMetadataReader(sqlite_engine, schemas=["main"], timeout=5)


class TestListTables:
    """Test table discovery."""

    def test_tables(self, reader):
        tables = asyncio.run(reader.list_tables())

        by_name = {t.name: t for t in tables}
        assert set(by_name) == {"customers", "orders"}
        assert by_name["orders"].full_name == "main.orders"
        assert by_name["orders"].has_primary_key
        assert by_name["orders"].column_count == 4
        assert by_name["customers"].estimated_row_count == 4


class TestListColumns:
    """Test column metadata."""

    def test_columns(self, reader):
        orders = TableMetadata(schema_name="main", name="orders")

        columns = asyncio.run(reader.list_columns(orders))

        assert [c.name for c in columns] == ["id", "customer_id", "amount", "created_at"]
        assert [c.ordinal_position for c in columns] == [1, 2, 3, 4]
        by_name = {c.name: c for c in columns}
        assert by_name["id"].is_primary_key
        assert by_name["customer_id"].is_foreign_key
        assert by_name["customer_id"].foreign_table == "main.customers"
        assert by_name["customer_id"].foreign_column == "id"
        assert by_name["amount"].classification == ColumnClassification.NUMERIC
        assert by_name["created_at"].classification == ColumnClassification.TEMPORAL

    def test_missing_table(self, reader):
        ghost = TableMetadata(schema_name="main", name="ghost")

        with pytest.raises(SchemaNotFoundError):
            asyncio.run(reader.list_columns(ghost))


class TestSamplesAndAggregates:
    def test_sample_rows(self, reader):
        customers = TableMetadata(schema_name="main", name="customers")

        rows = asyncio.run(reader.sample_rows(customers, 2))

        assert len(rows) == 2
        assert set(rows[0]) == {"id", "email", "name"}

    def test_column_aggregates(self, reader):
        customers = TableMetadata(schema_name="main", name="customers")
        columns = asyncio.run(reader.list_columns(customers))
        email = next(c for c in columns if c.name == "email")

        aggregates = asyncio.run(reader.column_aggregates(customers, email))

        assert aggregates.total_count == 4
        assert aggregates.null_count == 1
        assert aggregates.distinct_count == 3
        assert aggregates.null_fraction == 0.25
        assert aggregates.min_value == "ana@example.com"


class TestFromUrl:
    def test_missing_url(self, monkeypatch):
        from app.config import settings

        monkeypatch.setattr(settings, "DATABASE_URL", None)

        with pytest.raises(ConnectivityError):
            SqlAlchemyMetadataReader.from_url()


class TestTranslateDbError:
    """Test mapping of driver errors."""

    def test_no_such_table(self):
        error = translate_db_error(NoSuchTableError("ghost"), "main.ghost")
        assert isinstance(error, SchemaNotFoundError)

    def test_timeout(self):
        error = translate_db_error(asyncio.TimeoutError(), "main.orders")
        assert isinstance(error, ConnectivityError)

    def test_missing_object_message(self):
        exc = OperationalError("SELECT 1", {}, Exception('relation "ghost" does not exist'))
        error = translate_db_error(exc, "public.ghost")
        assert isinstance(error, SchemaNotFoundError)
        assert error.details["reason"] == 'relation "ghost" does not exist'

    def test_operational_error_is_connectivity(self):
        exc = OperationalError("SELECT 1", {}, Exception("could not connect to server"))
        assert isinstance(translate_db_error(exc, "public.orders"), ConnectivityError)

    def test_other_errors_untranslated(self):
        assert translate_db_error(ValueError("nope"), "public.orders") is None
