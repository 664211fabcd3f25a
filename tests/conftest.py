# =============================================================================
# tests/conftest.py - Pytest Configuration
# =============================================================================
# This module provides pytest fixtures and configuration for all tests.
#
# Key features:
# - Sets up mock environment variables before any imports
# - Provides small metadata fixtures (customers/orders)
# - Provides an in-memory SQLite database shared across worker threads
# =============================================================================

import os

# =============================================================================
# Set up test environment BEFORE any imports
# =============================================================================
# This must happen before importing app.config which loads settings immediately

os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")
os.environ.setdefault("OPENAI_API_KEY", "test-openai-key")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("DEBUG", "true")
os.environ.pop("DATABASE_URL", None)

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from core.models import ColumnMetadata, RuleCandidate, RuleDimension, TableMetadata


# =============================================================================
# Metadata Fixtures
# =============================================================================

@pytest.fixture
def customers_table():
    """Customers table with a declared primary key."""
    return TableMetadata(schema_name="public", name="customers", column_count=3, has_primary_key=True)


@pytest.fixture
def orders_table():
    """Orders table with a declared primary key."""
    return TableMetadata(schema_name="public", name="orders", column_count=4, has_primary_key=True)


@pytest.fixture
def customer_columns():
    return [
        ColumnMetadata(name="id", data_type="integer", is_nullable=False, ordinal_position=1, is_primary_key=True),
        ColumnMetadata(name="email", data_type="varchar(255)", ordinal_position=2),
        ColumnMetadata(name="name", data_type="text", ordinal_position=3),
    ]


@pytest.fixture
def order_columns():
    return [
        ColumnMetadata(name="id", data_type="integer", is_nullable=False, ordinal_position=1, is_primary_key=True),
        ColumnMetadata(
            name="customer_id",
            data_type="integer",
            ordinal_position=2,
            is_foreign_key=True,
            foreign_table="public.customers",
            foreign_column="id",
            fk_constraint_name="orders_customer_id_fkey",
        ),
        ColumnMetadata(name="amount", data_type="numeric(10,2)", ordinal_position=3),
        ColumnMetadata(name="created_at", data_type="timestamp", ordinal_position=4),
    ]


@pytest.fixture
def email_candidate():
    """A simple validity rule on customers.email."""
    return RuleCandidate(
        name="Valid email",
        dimension=RuleDimension.VALIDITY,
        schema_name="public",
        table_name="customers",
        column="email",
        condition="email LIKE '%@%'",
        expected_pass_rate=95.0,
    )


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
def sqlite_engine():
    """
    In-memory SQLite database with customers and orders.

    StaticPool keeps a single connection so worker threads (asyncio.to_thread)
    see the same database.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    with engine.begin() as conn:
        conn.execute(text(
            "CREATE TABLE customers ("
            " id INTEGER PRIMARY KEY,"
            " email VARCHAR(255),"
            " name TEXT)"
        ))
        conn.execute(text(
            "CREATE TABLE orders ("
            " id INTEGER PRIMARY KEY,"
            " customer_id INTEGER REFERENCES customers(id),"
            " amount NUMERIC(10, 2),"
            " created_at DATETIME)"
        ))
        conn.execute(text(
            "INSERT INTO customers (id, email, name) VALUES "
            "(1, 'ana@example.com', 'Ana'),"
            "(2, 'bruno@example.com', 'Bruno'),"
            "(3, 'carla.example.com', 'Carla'),"
            "(4, NULL, 'Davi')"
        ))
        conn.execute(text(
            "INSERT INTO orders (id, customer_id, amount, created_at) VALUES "
            "(10, 1, 99.90, '2024-01-15 10:00:00'),"
            "(11, 1, 15.00, '2024-01-16 11:30:00'),"
            "(12, 2, 250.00, '2024-02-01 09:15:00'),"
            "(13, 3, 42.50, '2024-02-20 18:45:00')"
        ))
    yield engine
    engine.dispose()
