"""
Configuration Management for Savings Challenge

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ChallengeSettings(BaseSettings):
    """Rules for creating and mutating challenges."""

    model_config = SettingsConfigDict(
        env_prefix="CHALLENGE_",
        extra="ignore"
    )

    min_days: int = Field(
        default=7,
        ge=1,
        description="Shortest calendar a new challenge may have"
    )
    max_days: int = Field(
        default=3650,
        ge=1,
        description="Longest calendar a new challenge may have"
    )
    code_length: int = Field(
        default=6,
        ge=4,
        le=12,
        description="Length of the shareable challenge code"
    )
    code_max_attempts: int = Field(
        default=5,
        ge=1,
        description="How many fresh codes to try when a code is already taken"
    )
    conflict_max_attempts: int = Field(
        default=5,
        ge=1,
        description="How many times a read-modify-write is retried on a stale write"
    )

    # Collection names in the document store
    challenges_collection: str = Field(
        default="challenges",
        description="Collection holding challenge documents"
    )
    users_collection: str = Field(
        default="users",
        description="Collection holding user documents"
    )
    audit_collection: str = Field(
        default="audit",
        description="Collection holding audit events"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets document store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )
    poll_interval_seconds: float = Field(
        default=5.0,
        gt=0,
        description="How often subscribers poll a worksheet for changes"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


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
    storage_backend: str = Field(
        default="memory",
        pattern="^(memory|google_sheets)$",
        description="Which document store implementation to use"
    )


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

    # Note: These are loaded lazily to allow partial configuration

    @property
    def challenge(self) -> ChallengeSettings:
        return ChallengeSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

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

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    try:
        challenge = settings.challenge
        if challenge.min_days > challenge.max_days:
            raise ValueError("min_days cannot be greater than max_days")
        results["challenge"] = True
    except Exception as e:
        results["challenge"] = False
        results["challenge_error"] = str(e)

    try:
        _ = settings.app
        results["app"] = True
    except Exception as e:
        results["app"] = False
        results["app_error"] = str(e)

    # Sheets credentials only matter when that backend is selected
    if results.get("app") and settings.app.storage_backend == "google_sheets":
        try:
            _ = settings.google_sheets
            results["google_sheets"] = True
        except Exception as e:
            results["google_sheets"] = False
            results["google_sheets_error"] = str(e)

    return results
