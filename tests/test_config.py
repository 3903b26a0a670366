"""
Tests for configuration and structured logging
"""

import json
import logging
from decimal import Decimal

from core_ledger.config import LedgerConfig, get_config, reload_config
from core_ledger.logging_config import setup_logging, get_logger, log_action


class TestLedgerConfig:

    def test_defaults(self, monkeypatch):
        for name in ("LEDGER_STORAGE_BACKEND", "LEDGER_DEFAULT_MINIMUM_BALANCE", "LEDGER_API_PORT"):
            monkeypatch.delenv(name, raising=False)

        config = LedgerConfig(_env_file=None)

        assert config.storage_backend == "sqlite"
        assert config.api_port == 8090
        assert config.default_minimum_balance == Decimal("100.00")
        assert config.low_balance_threshold == Decimal("500.00")
        assert config.critical_balance_threshold == Decimal("100.00")
        assert config.high_value_transaction_amount == Decimal("5000.00")
        assert config.enable_audit_logging is True

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("LEDGER_STORAGE_BACKEND", "memory")
        monkeypatch.setenv("ledger_default_minimum_balance", "250.00")
        monkeypatch.setenv("LEDGER_ENABLE_AUDIT_LOGGING", "false")

        config = LedgerConfig(_env_file=None)

        assert config.storage_backend == "memory"
        assert config.default_minimum_balance == Decimal("250.00")
        assert config.enable_audit_logging is False

    def test_reload_config_replaces_global(self, monkeypatch):
        monkeypatch.setenv("LEDGER_API_PORT", "9191")
        try:
            reloaded = reload_config()

            assert reloaded.api_port == 9191
            assert get_config() is reloaded
        finally:
            monkeypatch.delenv("LEDGER_API_PORT")
            reload_config()


class TestStructuredLogging:

    def test_json_log_action(self, capsys):
        logger = setup_logging(level="DEBUG", logger_name="core_ledger.test_json")

        log_action(
            logger, "info", "Deposit committed",
            user_id="alice", action="deposit", resource="transaction:TXN-1",
            extra={"amount": "10.00"}
        )

        entry = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert entry["message"] == "Deposit committed"
        assert entry["level"] == "INFO"
        assert entry["user_id"] == "alice"
        assert entry["action"] == "deposit"
        assert entry["extra"] == {"amount": "10.00"}

    def test_log_action_respects_level(self, capsys):
        logger = setup_logging(level="WARNING", logger_name="core_ledger.test_level")

        log_action(logger, "info", "hidden", action="deposit")

        assert capsys.readouterr().err == ""

    def test_text_format(self, capsys):
        logger = setup_logging(level="INFO", logger_name="core_ledger.test_text", log_format="text")

        logger.warning("plain message")

        assert "WARNING core_ledger.test_text: plain message" in capsys.readouterr().err

    def test_get_logger(self):
        assert get_logger("core_ledger.accounts") is logging.getLogger("core_ledger.accounts")
