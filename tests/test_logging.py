"""Tests for structured logging helpers."""
import json
import logging

import pytest
import structlog
from structlog.testing import capture_logs

from pingrunner.logging import configure_from_settings, configure_logging, get_logger, log_operation
from pingrunner.models import PingSettings
from pingrunner.ping import PingProcess


@pytest.fixture
def restore_logging():
    yield
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(logging.WARNING)
    structlog.reset_defaults()


class TestLogOperation:
    """Test log_operation."""

    def test_success(self):
        with capture_logs() as logs:
            with log_operation(get_logger("test"), "ping", host="localhost"):
                pass

        assert [entry["event"] for entry in logs] == ["ping.started", "ping.completed"]
        assert all(entry["host"] == "localhost" for entry in logs)
        assert "duration_ms" in logs[-1]

    def test_failure_reraises(self):
        with capture_logs() as logs:
            with pytest.raises(RuntimeError):
                with log_operation(get_logger("test"), "ping", host="h"):
                    raise RuntimeError("boom")

        failed = logs[-1]
        assert failed["event"] == "ping.failed"
        assert failed["error"] == "boom"
        assert failed["error_type"] == "RuntimeError"


class TestConfigureLogging:
    """Test configure_logging."""

    def test_json_file_output(self, tmp_path, restore_logging):
        log_file = tmp_path / "pingrunner.log"
        configure_logging(level="DEBUG", json_output=True, log_file=log_file, console_output=False)

        get_logger("pingrunner.test").info("hello", host="localhost")
        for handler in logging.getLogger().handlers:
            handler.flush()

        entry = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert entry["event"] == "hello"
        assert entry["host"] == "localhost"
        assert entry["level"] == "info"

    def test_configure_from_settings(self, restore_logging):
        configure_from_settings(PingSettings(log_level="debug"))

        assert logging.getLogger().level == logging.DEBUG

    def test_from_config_applies_logging_settings(self, tmp_path, fake_launcher, restore_logging):
        config_path = tmp_path / "pingrunner.yaml"
        config_path.write_text("log_level: DEBUG\nlog_json: true\n")

        pinger = PingProcess.from_config(config_path, launcher=fake_launcher, configure_logging=True)

        assert pinger.settings.log_level == "DEBUG"
        assert logging.getLogger().level == logging.DEBUG

    def test_from_config_leaves_logging_alone_by_default(self, tmp_path, fake_launcher, restore_logging):
        logging.getLogger().setLevel(logging.WARNING)
        config_path = tmp_path / "pingrunner.yaml"
        config_path.write_text("log_level: DEBUG\n")

        PingProcess.from_config(config_path, launcher=fake_launcher)

        assert logging.getLogger().level == logging.WARNING


class TestRunLogging:
    def test_run_logs_operation(self, pinger):
        with capture_logs() as logs:
            pinger.run("localhost")

        events = [entry["event"] for entry in logs]
        assert "ping.started" in events
        assert "ping.completed" in events
