# =============================================================================
# tests/ - Test Suite
# =============================================================================
# This package contains all tests for dqscope:
# - test_models.py: Pydantic model validation and column classification
# - test_evidence.py / test_relationships.py: Relation evidence and merging
# - test_profiler.py / test_quality_score.py: Column profiles and scores
# - test_rule_*.py: Rule execution, refinement, versioning and templates
# - test_discovery.py: Whole-database runs with failure isolation
#
# Run tests with: pytest
# =============================================================================
