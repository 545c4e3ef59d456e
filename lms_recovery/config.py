"""
Configuration module for the LMS recovery toolkit.

Provides centralized configuration for the record store, the soft delete
engines and the administrative CLI.
"""

from enum import Enum
from typing import Any, Dict, Optional, Union, get_args, get_origin

from pydantic import BaseModel, Field, field_validator


class IsolationLevel(str, Enum):
    """Isolation levels accepted for mutating transactions."""

    SERIALIZABLE = "SERIALIZABLE"
    REPEATABLE_READ = "REPEATABLE READ"
    READ_COMMITTED = "READ COMMITTED"


class RecoveryConfig(BaseModel):
    """Central configuration for soft delete and restore.

    Configuration Sources (in order of precedence):
        1. Programmatic settings (highest priority)
        2. Environment variables (LMS_RECOVERY_ prefix)
        3. Default values (lowest priority)

    Example:
        >>> config = RecoveryConfig(
        ...     database_url="postgresql+psycopg2://lms@db/lms",
        ...     transaction_timeout_seconds=10,
        ... )

        Loading from environment:

        >>> import os
        >>> os.environ["LMS_RECOVERY_DATABASE_URL"] = "sqlite:///./lms.db"
        >>> config = RecoveryConfig.from_env()

    Note:
        Lowering the isolation level below SERIALIZABLE lets concurrent
        deletes and restores on overlapping subtrees interleave. Only do so
        on a store that serializes writers by other means.
    """

    # General settings
    application_name: str = Field(
        "LMS Recovery", description="Name of the application in log output"
    )
    environment: str = Field(
        "production", description="Environment (development, staging, production)"
    )
    log_level: str = Field("INFO", description="Log level for the CLI")

    # Store settings
    database_url: str = Field(
        "sqlite:///./lms.db", description="SQLAlchemy URL of the record store"
    )
    isolation_level: IsolationLevel = Field(
        IsolationLevel.SERIALIZABLE,
        description="Isolation level for delete and restore transactions",
    )
    transaction_timeout_seconds: int = Field(
        30, description="Statement and lock wait bound", gt=0, le=600
    )

    # Soft delete settings
    cascade_delete_enabled: bool = Field(
        True, description="Cascade tombstones to descendants on delete"
    )
    default_cascade_restore: bool = Field(
        True, description="Cascade restores when the caller does not say"
    )

    # Retention and listings
    retention_days: int = Field(
        365, description="Days tombstoned records are kept before purge", ge=30
    )
    retention_overrides: Dict[str, int] = Field(
        default_factory=dict, description="Per model kind retention in days"
    )
    listing_page_size: int = Field(
        100, description="Default page size for tombstone listings", gt=0, le=1000
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is valid."""
        valid_environments = {"development", "staging", "production", "test"}
        if v.lower() not in valid_environments:
            raise ValueError(
                f"Environment must be one of: {', '.join(sorted(valid_environments))}"
            )
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(sorted(valid_levels))}")
        return v.upper()

    @field_validator("retention_overrides")
    @classmethod
    def validate_retention_overrides(cls, v: Dict[str, int]) -> Dict[str, int]:
        """Ensure overrides name real model kinds and keep the 30 day floor."""
        from .soft_delete.graph import ModelKind

        known = {kind.value for kind in ModelKind}
        for kind, days in v.items():
            if kind not in known:
                raise ValueError(f"Unknown model kind in retention overrides: {kind}")
            if days < 30:
                raise ValueError(
                    f"Retention for {kind} must be at least 30 days, got {days}"
                )
        return v

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return self.model_dump(mode="json")

    def retention_days_for(self, kind: str) -> int:
        return self.retention_overrides.get(kind, self.retention_days)

    @classmethod
    def from_env(cls, prefix: str = "LMS_RECOVERY_") -> "RecoveryConfig":
        """
        Load configuration from environment variables.

        Args:
            prefix: Prefix for environment variables

        Returns:
            Configuration instance
        """
        import os

        config_dict: Dict[str, Any] = {}

        for field_name, field_info in cls.model_fields.items():
            env_var = f"{prefix}{field_name.upper()}"
            if env_var not in os.environ:
                continue
            value = os.environ[env_var]

            field_type = field_info.annotation

            # Handle Optional types
            if get_origin(field_type) is Union:
                args = get_args(field_type)
                field_type = next((arg for arg in args if arg is not type(None)), str)

            try:
                if field_type == bool:
                    config_dict[field_name] = value.lower() in (
                        "true",
                        "1",
                        "yes",
                        "on",
                    )
                elif field_type == int:
                    config_dict[field_name] = int(value)
                elif get_origin(field_type) is dict:
                    # kind=days,kind=days
                    config_dict[field_name] = {
                        key.strip(): int(days)
                        for key, days in (
                            item.split("=", 1) for item in value.split(",") if item
                        )
                    }
                elif isinstance(field_type, type) and issubclass(field_type, Enum):
                    config_dict[field_name] = field_type(value.upper())
                else:
                    config_dict[field_name] = value
            except (ValueError, TypeError):
                # Let model validation report the raw value
                config_dict[field_name] = value

        return cls.model_validate(config_dict)

    def get_store_config(self) -> Dict[str, Any]:
        """Get record store configuration."""
        return {
            "url": self.database_url,
            "isolation_level": self.isolation_level.value,
            "timeout_seconds": self.transaction_timeout_seconds,
        }


# Global configuration instance
_config: Optional[RecoveryConfig] = None


def get_config() -> RecoveryConfig:
    """
    Get the global configuration instance.

    Loaded from the environment on first use. Invalid environment settings
    raise instead of silently falling back to defaults.
    """
    global _config

    if _config is None:
        _config = RecoveryConfig.from_env()

    return _config


def set_config(config: Optional[RecoveryConfig]) -> None:
    """
    Set the global configuration instance.

    Args:
        config: Configuration to set, or None to reload from the environment
    """
    global _config
    _config = config


def configure(**kwargs: Any) -> RecoveryConfig:
    """
    Configure the toolkit with keyword arguments.

    Args:
        **kwargs: Configuration parameters

    Returns:
        Updated configuration
    """
    global _config

    if _config is None:
        _config = RecoveryConfig(**kwargs)
    else:
        config_dict = _config.model_dump()
        config_dict.update(kwargs)
        _config = RecoveryConfig(**config_dict)

    return _config
