# =============================================================================
# core/ - Business Logic Package
# =============================================================================
# This package contains framework-agnostic business logic:
# - models/: Pydantic schemas for data validation
# - services/: Discovery runs, rule lifecycle, rule and metric stores
#
# Code in this package should NOT parse command lines or configure logging.
# This keeps the logic testable and reusable.
# =============================================================================
