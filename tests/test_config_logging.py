"""
Tests for configuration and structured logging
"""

import json
import logging

from coop_lending.config import LendingConfig, reload_config
from coop_lending.logging_config import JSONFormatter, get_logger, log_action, setup_logging


class TestLendingConfig:
    """Environment-driven configuration"""

    def test_defaults(self):
        config = LendingConfig(_env_file=None)
        assert config.database_url == "memory://"
        assert config.default_currency == "IDR"
        assert config.contract_prefix == "KOP"
        assert config.max_term_months == 60
        assert config.default_policy == "dpd_threshold"
        assert config.default_dpd_threshold == 90
        assert config.sweep_interval_seconds == 3600
        assert config.timezone == "Asia/Jakarta"
        assert config.api_port == 8090

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("COOP_MAX_TERM_MONTHS", "36")
        monkeypatch.setenv("COOP_DEFAULT_POLICY", "never")
        monkeypatch.setenv("COOP_SINGLE_ACTIVE_LOAN_PER_CUSTOMER", "false")

        config = LendingConfig(_env_file=None)
        assert config.max_term_months == 36
        assert config.default_policy == "never"
        assert config.single_active_loan_per_customer is False

    def test_reload_config(self, monkeypatch):
        monkeypatch.setenv("COOP_CONTRACT_PREFIX", "KSP")
        assert reload_config().contract_prefix == "KSP"
        monkeypatch.delenv("COOP_CONTRACT_PREFIX")
        assert reload_config().contract_prefix == "KOP"


class TestStructuredLogging:
    """JSON log output"""

    def make_record(self, **extra):
        record = logging.LogRecord(
            name="coop_lending.loans", level=logging.INFO, pathname=__file__, lineno=1,
            msg="Loan approve -> approved", args=(), exc_info=None,
        )
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_json_formatter_fields(self):
        record = self.make_record(loan_id="loan-1", action="approve", extra={"contract_number": "KOP-2024-0001"})
        entry = json.loads(JSONFormatter().format(record))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "coop_lending.loans"
        assert entry["message"] == "Loan approve -> approved"
        assert entry["loan_id"] == "loan-1"
        assert entry["action"] == "approve"
        assert entry["extra"] == {"contract_number": "KOP-2024-0001"}
        assert "installment_id" not in entry

    def test_get_logger_namespaces(self):
        assert get_logger("loans").name == "coop_lending.loans"
        assert get_logger("coop_lending.audit").name == "coop_lending.audit"
        assert get_logger().name == "coop_lending"

    def test_setup_logging_replaces_handlers(self, tmp_path):
        log_file = tmp_path / "lending.log"
        logger = setup_logging("DEBUG", "json", str(log_file), logger_name="coop_lending.test")
        setup_logging("DEBUG", "json", str(log_file), logger_name="coop_lending.test")

        assert len(logger.handlers) == 1
        assert logger.level == logging.DEBUG

        log_action(logger, "info", "Payment applied", action="pay", installment_id="inst-1",
                   extra={"amount": "400000"})
        logger.handlers[0].flush()

        entry = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert entry["message"] == "Payment applied"
        assert entry["installment_id"] == "inst-1"
        assert entry["extra"] == {"amount": "400000"}

        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

    def test_text_format(self):
        logger = setup_logging("INFO", "text", logger_name="coop_lending.text_test")
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)
        logger.removeHandler(logger.handlers[0])
