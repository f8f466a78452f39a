"""Settings for the Shoal transfer engine.

Values come from environment variables or a .env file and are validated
by pydantic before any store or service is built.
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Farm scope, store location and logging options."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Farm scope
    farm_id: str = Field(
        default="default",
        description="Farm whose plans, tasks and aquariums this process manages",
    )
    operator_name: str = Field(
        default="operator",
        description="Name recorded as creator of plans and tasks from the CLI",
    )

    # Farm store configuration
    store_sqlite_path: str = Field(
        default="./data/shoal.db",
        description="SQLite database file path",
    )
    store_pool_size: int = Field(
        default=5,
        description="Number of pooled SQLite connections",
    )

    # Logging configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Log level",
    )
    log_format: Literal["json", "text"] = Field(
        default="text",
        description="Log format",
    )

    # Development
    debug: bool = Field(
        default=False,
        description="Enable debug mode with verbose logging",
    )

    @field_validator("farm_id", "operator_name")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        """Reject blank identifiers."""
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    @field_validator("store_pool_size")
    @classmethod
    def validate_pool_size(cls, v: int) -> int:
        """Ensure pool size is positive."""
        if v <= 0:
            raise ValueError("store_pool_size must be positive")
        return v


def load_settings(env_file: str | None = None) -> Settings:
    """Load settings, optionally from an explicit .env file.

    Raises:
        pydantic.ValidationError: If a value fails validation.
    """
    if env_file:
        return Settings(_env_file=env_file)  # type: ignore[call-arg]
    return Settings()


__all__ = ["Settings", "load_settings"]
