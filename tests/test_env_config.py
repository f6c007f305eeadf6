"""Test environment variable management and configuration."""

import logging

import pytest

from sagaflow import (
    EngineConfig,
    FilesystemStateStore,
    InMemoryStateStore,
    LoggingNotificationSink,
    configure,
    get_config,
)
from sagaflow.monitoring.logging import ExecutionJsonFormatter


@pytest.fixture
def env(isolated_env):
    return isolated_env


class TestEnvManager:
    """Test EnvManager functionality."""

    def test_get_with_default(self, env, monkeypatch):
        """Test getting environment variable with default."""
        monkeypatch.delenv("NONEXISTENT_VAR", raising=False)
        assert env.get("NONEXISTENT_VAR", "default") == "default"

        monkeypatch.setenv("TEST_VAR", "test_value")
        assert env.get("TEST_VAR") == "test_value"

    def test_required(self, env, monkeypatch):
        """Test a required variable that is not set."""
        monkeypatch.delenv("MISSING_VAR", raising=False)

        with pytest.raises(ValueError, match="Required environment variable not set: MISSING_VAR"):
            env.get("MISSING_VAR", required=True)

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("true", True),
            ("True", True),
            ("1", True),
            ("on", True),
            ("false", False),
            ("0", False),
            ("no", False),
            ("", False),
            ("maybe", False),
        ],
    )
    def test_get_bool(self, env, monkeypatch, value, expected):
        """Test boolean parsing."""
        monkeypatch.setenv("TEST_BOOL", value)

        assert env.get_bool("TEST_BOOL") is expected

    def test_get_numbers(self, env, monkeypatch):
        """Test integer and float parsing with fallbacks."""
        monkeypatch.setenv("TEST_INT", "42")
        monkeypatch.setenv("TEST_FLOAT", "1.5")
        monkeypatch.setenv("TEST_BAD", "invalid")

        assert env.get_int("TEST_INT") == 42
        assert env.get_int("TEST_BAD", default=10) == 10
        assert env.get_float("TEST_FLOAT") == 1.5
        assert env.get_float("TEST_BAD", 2.0) == 2.0

    def test_load_env_file(self, env, tmp_path, monkeypatch):
        """Test loading a .env file without overriding the process environment."""
        # registered with monkeypatch so the value load_dotenv writes is removed afterwards
        monkeypatch.setenv("SAGAFLOW_TEST_FROM_FILE", "unset")
        monkeypatch.delenv("SAGAFLOW_TEST_FROM_FILE")
        monkeypatch.setenv("SAGAFLOW_TEST_KEPT", "process")
        (tmp_path / ".env").write_text("SAGAFLOW_TEST_FROM_FILE=file\nSAGAFLOW_TEST_KEPT=file\n")

        assert env.load() is True
        assert env.loaded
        assert env.get("SAGAFLOW_TEST_FROM_FILE") == "file"
        assert env.get("SAGAFLOW_TEST_KEPT") == "process"

    def test_load_missing_file(self, env):
        """Test a missing .env file is not an error."""
        assert env.load() is False
        assert not env.loaded


class TestSubstitution:
    """Test ${VAR} substitution."""

    def test_forms(self, env, monkeypatch):
        """Test plain, default and untouched references."""
        monkeypatch.setenv("REGION", "eu-west-1")
        monkeypatch.delenv("UNSET_VAR", raising=False)

        assert env.substitute("queue-${REGION}") == "queue-eu-west-1"
        assert env.substitute("${UNSET_VAR:-fallback}") == "fallback"
        assert env.substitute("${UNSET_VAR}") == "${UNSET_VAR}"

    def test_required_reference(self, env, monkeypatch):
        """Test ${VAR:?message} raises with the message."""
        monkeypatch.delenv("API_KEY", raising=False)

        with pytest.raises(ValueError, match="API_KEY is required"):
            env.substitute("${API_KEY:?API_KEY is required}")

    def test_nested_values(self, env, monkeypatch):
        """Test substitution walks mappings and lists and leaves other types alone."""
        monkeypatch.setenv("REGION", "eu")

        value = env.substitute_value({"a": ["${REGION}", 3], "b": {"c": "${REGION}-x"}, "d": None})

        assert value == {"a": ["eu", 3], "b": {"c": "eu-x"}, "d": None}


class TestEngineConfig:
    """Test EngineConfig defaults, validation and environment loading."""

    def test_defaults(self):
        """Test the default store and sinks."""
        config = EngineConfig()

        assert isinstance(config.state_store, InMemoryStateStore)
        assert [type(s) for s in config.notification_sinks] == [LoggingNotificationSink]
        assert EngineConfig(logging=False).notification_sinks == []

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"notification_max_attempts": 0},
            {"notification_retry_delay": -1},
            {"default_step_timeout": 0},
            {"compensation_timeout": -5},
        ],
    )
    def test_invalid_values(self, kwargs):
        """Test invalid settings are rejected."""
        with pytest.raises(ValueError):
            EngineConfig(**kwargs)

    def test_create_dispatcher(self):
        """Test the dispatcher carries the delivery settings."""
        config = EngineConfig(notification_max_attempts=5, notification_timeout=None)

        dispatcher = config.create_dispatcher()

        assert dispatcher.max_attempts == 5
        assert dispatcher.delivery_timeout is None
        assert len(dispatcher.sinks) == 1

    def test_apply_logging(self, sagaflow_logger):
        """Test the logging settings reach the sagaflow logger."""
        EngineConfig(log_level="ERROR", json_logs=True).apply_logging()

        assert sagaflow_logger.level == logging.ERROR
        assert isinstance(sagaflow_logger.handlers[0].formatter, ExecutionJsonFormatter)

    def test_from_env(self, env, tmp_path, monkeypatch):
        """Test every SAGAFLOW_* variable is honored."""
        monkeypatch.setenv("SAGAFLOW_STATE_DIR", str(tmp_path / "state"))
        monkeypatch.setenv("SAGAFLOW_LOGGING", "false")
        monkeypatch.setenv("SAGAFLOW_STEP_TIMEOUT", "15")
        monkeypatch.setenv("SAGAFLOW_COMPENSATION_TIMEOUT", "7.5")
        monkeypatch.setenv("SAGAFLOW_NOTIFY_MAX_ATTEMPTS", "4")
        monkeypatch.setenv("SAGAFLOW_NOTIFY_RETRY_DELAY", "0")
        monkeypatch.setenv("SAGAFLOW_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("SAGAFLOW_JSON_LOGS", "yes")

        config = EngineConfig.from_env()

        assert isinstance(config.state_store, FilesystemStateStore)
        assert (tmp_path / "state" / "workflow").is_dir()
        assert config.logging is False
        assert config.default_step_timeout == 15.0
        assert config.compensation_timeout == 7.5
        assert config.notification_max_attempts == 4
        assert config.notification_retry_delay == 0.0
        assert config.log_level == "DEBUG"
        assert config.json_logs is True

    def test_from_env_defaults(self, env, monkeypatch):
        """Test defaults when nothing is set."""
        for name in (
            "SAGAFLOW_STATE_DIR",
            "SAGAFLOW_LOGGING",
            "SAGAFLOW_METRICS",
            "SAGAFLOW_STEP_TIMEOUT",
            "SAGAFLOW_NOTIFY_TIMEOUT",
        ):
            monkeypatch.delenv(name, raising=False)

        config = EngineConfig.from_env(load_dotenv=False)

        assert isinstance(config.state_store, InMemoryStateStore)
        assert config.logging is True
        assert config.metrics is False
        assert config.default_step_timeout is None
        assert config.notification_timeout == 5.0

    def test_global_config(self):
        """Test configure installs and resets the process-wide config."""
        config = EngineConfig(logging=False)

        configure(config)
        assert get_config() is config

        configure(None)
        assert get_config() is not config
