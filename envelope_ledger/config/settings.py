"""
Configuration Management for Envelope Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Each concern has its own settings class with its own environment prefix,
and the whole tree is validated at startup.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Relational store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    url: str = Field(
        default="sqlite://",
        description="SQLAlchemy database URL"
    )
    echo: bool = Field(
        default=False,
        description="Echo SQL statements to the log"
    )
    isolation_level: Optional[str] = Field(
        default="READ COMMITTED",
        description="Transaction isolation level (ignored for SQLite)"
    )
    statement_timeout_ms: int = Field(
        default=5000,
        ge=0,
        description="Per-statement timeout on PostgreSQL (0 disables)"
    )
    connect_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="How many times to try the initial connection"
    )

    @field_validator('isolation_level')
    @classmethod
    def validate_isolation_level(cls, v: Optional[str]) -> Optional[str]:
        """Mutating operations need at least read-committed isolation."""
        if v is None:
            return v
        normalized = v.strip().upper().replace("_", " ")
        allowed = {"READ COMMITTED", "REPEATABLE READ", "SERIALIZABLE"}
        if normalized not in allowed:
            raise ValueError(
                f"Unsupported isolation level: {v}. Allowed: {sorted(allowed)}"
            )
        return normalized


class BudgetSettings(BaseSettings):
    """Budgeting policy knobs."""

    model_config = SettingsConfigDict(
        env_prefix="BUDGET_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Ready-to-Assign policy
    allow_negative_ready_to_assign: bool = Field(
        default=False,
        description="Permit assignments that push Ready-to-Assign below zero (flagged, not blocked)"
    )

    # Names of the system accounts created with every ledger
    ready_to_assign_account_name: str = Field(
        default="Ready to Assign",
        min_length=1,
        max_length=100,
    )
    adjustment_account_name: str = Field(
        default="Reconciliation Adjustments",
        min_length=1,
        max_length=100,
    )
    cc_payment_category_prefix: str = Field(
        default="CC Payment: ",
        description="Prefix of the category installments are moved into"
    )

    # Schedule limits
    max_installments: int = Field(
        default=60,
        ge=2,
        le=360,
        description="Largest number of installments a plan may have"
    )
    max_loan_term_months: int = Field(
        default=480,
        ge=1,
        le=1200,
    )

    # Recurring sweep
    recurring_max_catchup: int = Field(
        default=12,
        ge=1,
        le=366,
        description="Most occurrences one template may materialize in a single sweep"
    )
    recurring_max_failures: int = Field(
        default=3,
        ge=1,
        description="Consecutive failures after which a template is disabled"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Root log level"
    )
    log_json: bool = Field(
        default=True,
        description="Render structured logs as JSON (console renderer otherwise)"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

    @property
    def budget(self) -> BudgetSettings:
        return BudgetSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, with an
    additional "<name>_error" entry for each failing section.
    """
    results = {}

    settings = get_settings()

    for name in ("database", "budget", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
