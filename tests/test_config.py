"""
Tests for configuration loading.
"""

import pytest
from pydantic import ValidationError

from lms_recovery import config as config_module
from lms_recovery.config import (
    IsolationLevel,
    RecoveryConfig,
    configure,
    get_config,
    set_config,
)


@pytest.fixture(autouse=True)
def reset_global_config():
    set_config(None)
    yield
    set_config(None)


class TestRecoveryConfig:
    """Test the configuration model."""

    def test_defaults(self):
        config = RecoveryConfig()
        assert config.database_url == "sqlite:///./lms.db"
        assert config.isolation_level == IsolationLevel.SERIALIZABLE
        assert config.transaction_timeout_seconds == 30
        assert config.cascade_delete_enabled is True
        assert config.default_cascade_restore is True
        assert config.retention_days == 365

    def test_environment_normalized(self):
        assert RecoveryConfig(environment="Staging").environment == "staging"

    def test_invalid_environment(self):
        with pytest.raises(ValidationError):
            RecoveryConfig(environment="moon")

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            RecoveryConfig(log_level="LOUD")

    def test_timeout_bounds(self):
        with pytest.raises(ValidationError):
            RecoveryConfig(transaction_timeout_seconds=0)
        with pytest.raises(ValidationError):
            RecoveryConfig(transaction_timeout_seconds=601)

    def test_retention_overrides(self):
        config = RecoveryConfig(retention_overrides={"grade": 730})
        assert config.retention_days_for("grade") == 730
        assert config.retention_days_for("course") == 365

    def test_retention_override_unknown_kind(self):
        with pytest.raises(ValidationError) as exc:
            RecoveryConfig(retention_overrides={"quiz": 90})
        assert "quiz" in str(exc.value)

    def test_retention_override_floor(self):
        with pytest.raises(ValidationError):
            RecoveryConfig(retention_overrides={"grade": 10})

    def test_store_config(self):
        config = RecoveryConfig(
            database_url="postgresql+psycopg2://lms@db/lms",
            isolation_level=IsolationLevel.REPEATABLE_READ,
        )
        assert config.get_store_config() == {
            "url": "postgresql+psycopg2://lms@db/lms",
            "isolation_level": "REPEATABLE READ",
            "timeout_seconds": 30,
        }

    def test_to_dict(self):
        data = RecoveryConfig().to_dict()
        assert data["isolation_level"] == "SERIALIZABLE"
        assert data["retention_overrides"] == {}


class TestFromEnv:
    """Test loading from environment variables."""

    def test_values_parsed(self, monkeypatch):
        monkeypatch.setenv("LMS_RECOVERY_DATABASE_URL", "sqlite:///tmp.db")
        monkeypatch.setenv("LMS_RECOVERY_TRANSACTION_TIMEOUT_SECONDS", "12")
        monkeypatch.setenv("LMS_RECOVERY_DEFAULT_CASCADE_RESTORE", "no")
        monkeypatch.setenv("LMS_RECOVERY_ISOLATION_LEVEL", "read committed")
        monkeypatch.setenv("LMS_RECOVERY_RETENTION_OVERRIDES", "grade=730, announcement=90")

        config = RecoveryConfig.from_env()

        assert config.database_url == "sqlite:///tmp.db"
        assert config.transaction_timeout_seconds == 12
        assert config.default_cascade_restore is False
        assert config.isolation_level == IsolationLevel.READ_COMMITTED
        assert config.retention_overrides == {"grade": 730, "announcement": 90}

    def test_custom_prefix(self, monkeypatch):
        monkeypatch.setenv("LMS_TEST_ENVIRONMENT", "development")
        assert RecoveryConfig.from_env(prefix="LMS_TEST_").environment == "development"

    def test_invalid_value_reported(self, monkeypatch):
        monkeypatch.setenv("LMS_RECOVERY_TRANSACTION_TIMEOUT_SECONDS", "soon")
        with pytest.raises(ValidationError):
            RecoveryConfig.from_env()


class TestGlobalConfig:
    """Test the global accessors."""

    def test_get_config_loads_once(self, monkeypatch):
        monkeypatch.setenv("LMS_RECOVERY_APPLICATION_NAME", "Campus LMS")
        first = get_config()
        assert first.application_name == "Campus LMS"
        assert get_config() is first

    def test_set_config(self):
        custom = RecoveryConfig(environment="test")
        set_config(custom)
        assert get_config() is custom

    def test_configure_merges(self):
        configure(environment="test")
        updated = configure(retention_days=400)
        assert updated.environment == "test"
        assert updated.retention_days == 400
        assert config_module._config is updated
