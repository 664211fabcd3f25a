# =============================================================================
# lib/ - Standalone Utility Modules
# =============================================================================
# This package contains the analysis engines and database adapters:
# - metadata_reader.py: Table/column metadata and samples via SQLAlchemy
# - evidence.py: Declared, naming-pattern and statistical relation evidence
# - relationships.py: Deterministic merge of relation evidence
# - profiler.py: Column profiling engine (pandas/numpy)
# - patterns.py: Regex catalogue for value formats
# - quality_score.py: 0-100 table quality score
# - rule_executor.py: Runs rule conditions against the data
# - sql_validator.py: Static checks for rule conditions
# - supabase_client.py: Typed Supabase wrapper for rule and metric storage
#
# These modules are self-contained and can be tested in isolation.
# =============================================================================

from lib.supabase_client import SupabaseClient, SupabaseClientError

__all__ = [
    # Supabase
    "SupabaseClient",
    "SupabaseClientError",
]
