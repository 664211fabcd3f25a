# =============================================================================
# app/config.py - Application Settings
# =============================================================================
# This module loads configuration from environment variables using pydantic-settings.
# It provides a single Settings class with all configuration values.
#
# Usage:
#   from app.config import settings
#   print(settings.QUERY_TIMEOUT_SECONDS)
#
# Environment variables are loaded from:
# 1. System environment variables
# 2. .env file in project root (if exists)
#
# The Settings class validates all values at startup, catching configuration
# errors early rather than at runtime.
# =============================================================================

import os
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_concurrency() -> int:
    """Profiling pool size: one worker per core, at least 2."""
    return max(2, os.cpu_count() or 1)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses pydantic-settings to:
    - Automatically load from .env file
    - Validate types and constraints
    - Provide sensible defaults for development

    All settings are accessed via the global `settings` instance.
    """

    # -------------------------------------------------------------------------
    # Target Database
    # -------------------------------------------------------------------------
    # The database being profiled. Optional so the library can be used with
    # readers that are constructed explicitly.

    DATABASE_URL: str | None = Field(
        default=None,
        description="SQLAlchemy URL of the database to profile"
    )

    QUERY_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        gt=0,
        le=3600,
        description="Timeout applied to every query against the profiled database"
    )

    # -------------------------------------------------------------------------
    # Supabase Configuration (rule store + metric history)
    # -------------------------------------------------------------------------

    SUPABASE_URL: str | None = Field(
        default=None,
        description="Supabase project URL (e.g., https://xxx.supabase.co)"
    )

    SUPABASE_SERVICE_KEY: str | None = Field(
        default=None,
        description="Supabase service_role key (bypasses RLS)"
    )

    # -------------------------------------------------------------------------
    # OpenAI / LLM Configuration
    # -------------------------------------------------------------------------
    # Defaults only. Every AI call receives its own AiClientConfig.

    OPENAI_API_KEY: str | None = Field(
        default=None,
        description="Default OpenAI API key for rule generation and repair"
    )

    OPENAI_MODEL: str = Field(
        default="gpt-4o-mini",
        description="Default model for rule generation (must support JSON mode)"
    )

    AI_TEMPERATURE: float = Field(
        default=0.1,
        ge=0.0,
        le=2.0,
        description="OpenAI temperature for rule generation (lower = more consistent)"
    )

    AI_TIMEOUT_SECONDS: float = Field(
        default=60.0,
        gt=0,
        le=600,
        description="Timeout applied to every AI call"
    )

    # -------------------------------------------------------------------------
    # Column Profiler
    # -------------------------------------------------------------------------

    PROFILE_CONCURRENCY: int = Field(
        default_factory=_default_concurrency,
        ge=1,
        le=256,
        description="Maximum number of columns profiled concurrently"
    )

    PROFILE_SAMPLE_ROWS: int = Field(
        default=1000,
        ge=1,
        le=1_000_000,
        description="Rows sampled per table for profiling"
    )

    TOP_VALUES_LIMIT: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Number of most frequent values kept per column"
    )

    HISTOGRAM_BUCKETS: int = Field(
        default=20,
        ge=1,
        le=200,
        description="Number of equal-width histogram buckets for numeric columns"
    )

    OUTLIER_SAMPLE_LIMIT: int = Field(
        default=5,
        ge=0,
        le=100,
        description="Maximum outlier values kept as examples"
    )

    ANOMALY_ROW_SAMPLE_LIMIT: int = Field(
        default=5,
        ge=0,
        le=100,
        description="Maximum row identifiers attached to an anomaly"
    )

    SUSPICIOUS_FREQUENCY_MULTIPLE: float = Field(
        default=10.0,
        gt=1.0,
        description="A value is suspicious when it occurs this many times more than uniform"
    )

    PATTERN_MATCH_THRESHOLD: float = Field(
        default=0.9,
        ge=0.0,
        le=1.0,
        description="Minimum regex match rate for email/document/phone columns"
    )

    DATE_GAP_THRESHOLD_DAYS: int = Field(
        default=7,
        ge=0,
        description="Days without activity before a date gap is reported"
    )

    # -------------------------------------------------------------------------
    # Relationship Inference
    # -------------------------------------------------------------------------

    OVERLAP_SCALE: float = Field(
        default=100.0,
        gt=0,
        description="Divisor used to scale value overlap into overlap_percentage (capped at 1.0)"
    )

    STATISTICAL_SAMPLE_SIZE: int = Field(
        default=1000,
        ge=1,
        description="Distinct values compared per column in overlap detection"
    )

    STATISTICAL_MIN_MATCH_RATE: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Minimum share of source values found in the target column"
    )

    NAMING_PATTERN_CONFIDENCE: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Confidence assigned to naming-pattern relations"
    )

    # -------------------------------------------------------------------------
    # Rule Lifecycle
    # -------------------------------------------------------------------------

    MAX_REFINEMENT_ATTEMPTS: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum AI repair attempts for a rule whose SQL fails"
    )

    EXECUTION_ROW_CEILING: int = Field(
        default=1_000_000,
        ge=1,
        description="Tables larger than this are validated on a random sample"
    )

    EXECUTION_SAMPLE_SIZE: int = Field(
        default=10_000,
        ge=1,
        description="Rows drawn when rule execution downgrades to sampling"
    )

    # -------------------------------------------------------------------------
    # Application Settings
    # -------------------------------------------------------------------------

    ENVIRONMENT: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Current environment"
    )

    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode (verbose logging)"
    )

    # -------------------------------------------------------------------------
    # Pydantic Settings Configuration
    # -------------------------------------------------------------------------

    model_config = SettingsConfigDict(
        # Load from .env file in project root
        env_file=".env",
        env_file_encoding="utf-8",
        # Don't fail if .env doesn't exist
        env_ignore_empty=True,
        # Case-sensitive environment variable names
        case_sensitive=True,
    )

    # -------------------------------------------------------------------------
    # Computed Properties
    # -------------------------------------------------------------------------

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT == "production"

    @property
    def supabase_configured(self) -> bool:
        """True when both Supabase URL and service key are present."""
        return bool(self.SUPABASE_URL and self.SUPABASE_SERVICE_KEY)


# =============================================================================
# Settings Instance
# =============================================================================

@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    This is important because loading from .env has I/O overhead.

    Returns:
        Settings: The application settings

    Raises:
        ValidationError: If required environment variables are missing
    """
    return Settings()


# Global settings instance for easy importing
# Usage: from app.config import settings
settings = get_settings()
