"""
Tests for configuration loading and structured logging
"""

import json
import logging

from finance_core.config import FinanceConfig
from finance_core.logging_config import JSONFormatter, log_action, setup_logging


class TestFinanceConfig:

    def test_defaults(self):
        config = FinanceConfig(_env_file=None)
        assert config.api_port == 8090
        assert config.scheduler_interval_seconds == 600
        assert config.due_window_days == 7
        assert config.duplicate_guard_same_day is True

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("FINANCE_API_PORT", "9000")
        monkeypatch.setenv("FINANCE_SCHEDULER_ENABLED", "false")
        monkeypatch.setenv("FINANCE_DATABASE_URL", "memory://")

        config = FinanceConfig(_env_file=None)
        assert config.api_port == 9000
        assert config.scheduler_enabled is False
        assert config.database_url == "memory://"


class TestStructuredLogging:

    def test_json_formatter_includes_action_fields(self):
        record = logging.LogRecord("finance_core.loans", logging.INFO, __file__, 1, "Created loan", None, None)
        record.user_id = "alice"
        record.action = "loan.create"
        record.resource = "loan:1"

        payload = json.loads(JSONFormatter().format(record))
        assert payload["message"] == "Created loan"
        assert payload["logger"] == "finance_core.loans"
        assert payload["action"] == "loan.create"
        assert payload["user_id"] == "alice"
        assert "extra" not in payload

    def test_log_action_attaches_fields(self, caplog):
        logger = logging.getLogger("tests.finance_core")
        with caplog.at_level(logging.INFO, logger="tests.finance_core"):
            log_action(logger, "info", "Applied budget", user_id="alice", action="budget.apply",
                       resource="obligation:1", extra={"year": 2025})

        record = caplog.records[-1]
        assert record.action == "budget.apply"
        assert record.resource == "obligation:1"
        assert record.extra == {"year": 2025}

    def test_setup_logging_text_format(self, tmp_path):
        log_file = tmp_path / "finance.log"
        logger = setup_logging("DEBUG", "tests.setup", log_format="text", log_file=str(log_file))
        logger.info("hello")
        for handler in logger.handlers:
            handler.flush()

        assert "hello" in log_file.read_text()
        assert logger.level == logging.DEBUG
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)
