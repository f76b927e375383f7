"""Unit tests for logging setup and settings."""

import json
import logging

import pytest

from aether.config import AetherSettings, DockerConfig, LoggingConfig, StateConfig
from aether.logging import AetherJsonFormatter, setup_logging
from aether.logging_schema import LogEvent


class TestSettings:
    def test_defaults(self) -> None:
        settings = AetherSettings()

        assert settings.logging.level == "WARNING"
        assert settings.docker.stop_timeout == 10
        assert settings.docker.port_conflict_retries == 3
        assert settings.state.dir_name == ".aether"
        assert settings.state.namespace_prefix == "aether-"

    def test_env_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AETHER_DOCKER_STOP_TIMEOUT", "30")
        monkeypatch.setenv("AETHER_STATE_NAMESPACE_PREFIX", "dev-")
        monkeypatch.setenv("AETHER_LOGGING_FORMAT", "json")

        assert DockerConfig().stop_timeout == 30
        assert StateConfig().namespace_prefix == "dev-"
        assert LoggingConfig().format == "json"


class TestSetupLogging:
    def test_level_from_config(self) -> None:
        setup_logging(LoggingConfig(level="info"))

        assert logging.getLogger().level == logging.INFO

    def test_verbose_forces_debug(self) -> None:
        setup_logging(LoggingConfig(level="ERROR"), verbose=True)

        assert logging.getLogger().level == logging.DEBUG

    def test_json_formatter_installed(self) -> None:
        setup_logging(LoggingConfig(format="json"))

        (handler,) = logging.getLogger().handlers
        assert isinstance(handler.formatter, AetherJsonFormatter)


class TestJsonFormatter:
    def test_standard_fields(self) -> None:
        formatter = AetherJsonFormatter(LoggingConfig())
        record = logging.LogRecord(
            name="aether.backends.docker",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="Started container",
            args=(),
            exc_info=None,
        )
        record.event = LogEvent.CONTAINER_STARTED

        document = json.loads(formatter.format(record))

        assert document["message"] == "Started container"
        assert document["level"] == "INFO"
        assert document["logger"] == "aether.backends.docker"
        assert document["service"] == "aether"
        assert document["event"] == "container_started"
        assert "timestamp" in document
