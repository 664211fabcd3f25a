# =============================================================================
# tests/test_sql_validator.py - Static Condition Validation Tests
# =============================================================================
# Tests for lib/sql_validator.py: structural checks, dialect mistakes, column
# references and mechanical corrections.
#
# Run with: pytest tests/test_sql_validator.py -v
# =============================================================================

import pytest

from lib.sql_validator import referenced_columns, suggest_corrections, validate_condition

COLUMNS = ["id", "email", "name", "amount", "created_at"]


class TestValidateCondition:
    """Test validate_condition."""

    @pytest.mark.parametrize(
        "condition",
        [
            "email LIKE '%@%'",
            "amount >= 0 AND amount < 1000000",
            "LENGTH(TRIM(name)) > 0",
            "created_at <= CURRENT_TIMESTAMP",
            "email ~* '^[a-z]+@[a-z]+\\.[a-z]{2,}$'",
            "name IS NOT NULL AND name <> ''",
            "amount::numeric(10,2) > 0",
            "\"email\" IS NOT NULL",
        ],
    )
    def test_valid_conditions(self, condition):
        result = validate_condition(condition, COLUMNS)
        assert result.is_valid, result.errors

    def test_empty(self):
        result = validate_condition("   ")
        assert not result.is_valid
        assert result.errors == ["Condition is empty"]

    def test_unbalanced_parentheses(self):
        result = validate_condition("(amount > 0", COLUMNS)
        assert "Unbalanced parentheses" in result.errors

    def test_parentheses_inside_literal_ignored(self):
        assert validate_condition("name <> '('", COLUMNS).is_valid

    def test_unbalanced_quotes(self):
        result = validate_condition("name = 'Ana", COLUMNS)
        assert "Unbalanced single quotes" in result.errors

    def test_escaped_quote_is_balanced(self):
        assert validate_condition("name <> 'O''Brien'", COLUMNS).is_valid

    def test_dangling_operators(self):
        assert not validate_condition("AND amount > 0", COLUMNS).is_valid
        assert not validate_condition("amount > 0 AND", COLUMNS).is_valid
        assert not validate_condition("amount >", COLUMNS).is_valid

    def test_equals_null(self):
        result = validate_condition("email = NULL", COLUMNS)

        assert not result.is_valid
        assert result.corrected_condition == "email IS NULL"

    def test_foreign_function(self):
        result = validate_condition("LEN(name) > 0", COLUMNS)

        assert not result.is_valid
        assert any("LEN()" in e for e in result.errors)
        assert result.corrected_condition == "LENGTH(name) > 0"

    def test_regexp_operator(self):
        result = validate_condition("email REGEXP '@'", COLUMNS)

        assert not result.is_valid
        assert result.corrected_condition == "email ~ '@'"

    def test_unknown_column(self):
        result = validate_condition("mail LIKE '%@%'", COLUMNS)

        assert not result.is_valid
        assert "Unknown column 'mail'" in result.errors

    def test_columns_optional(self):
        assert validate_condition("anything > 0").is_valid

    def test_column_check_case_insensitive(self):
        assert validate_condition("EMAIL IS NOT NULL", COLUMNS).is_valid


class TestReferencedColumns:
    def test_skips_functions_literals_and_keywords(self):
        found = referenced_columns("LENGTH(TRIM(name)) > 0 AND email NOT LIKE '%test value%'")
        assert found == ["name", "email"]

    def test_skips_qualifiers(self):
        assert referenced_columns("t.amount > 0") == ["amount"]


class TestSuggestCorrections:
    def test_literals_untouched(self):
        assert suggest_corrections("name = 'LEN(x) = NULL'") == "name = 'LEN(x) = NULL'"

    def test_not_equals_null(self):
        assert suggest_corrections("email != NULL") == "email IS NOT NULL"

    def test_multiple_fixes(self):
        assert suggest_corrections("LEN(name) > 0 AND code = NULL") == "LENGTH(name) > 0 AND code IS NULL"
