"""
Tests for configuration loading and structured logging
"""

import json
import logging

from coop_banking import config as config_module
from coop_banking.config import CoopConfig, get_config, reload_config
from coop_banking.logging_config import JSONFormatter, log_action, setup_logging


class TestConfig:

    def teardown_method(self):
        reload_config()

    def test_defaults(self):
        """Test default configuration values"""
        config = CoopConfig()
        assert config.currency == "PHP"
        assert config.dormancy_threshold_months == 6
        assert config.rlpf_rate_per_thousand == "1.00"
        assert config.api_port == 8090

    def test_environment_overrides(self, monkeypatch):
        """Test environment variables override defaults"""
        monkeypatch.setenv("COOP_DORMANCY_THRESHOLD_MONTHS", "12")
        monkeypatch.setenv("COOP_DATABASE_URL", "memory")
        monkeypatch.setenv("COOP_BATCH_WORKERS", "8")

        config = reload_config()

        assert config.dormancy_threshold_months == 12
        assert config.database_url == "memory"
        assert config.batch_workers == 8
        assert get_config() is config_module.config


class TestStructuredLogging:

    def setup_method(self):
        self.logger = setup_logging("INFO", "coop.test", "json")
        self.records = []
        capture = logging.Handler()
        capture.emit = self.records.append
        self.logger.addHandler(capture)

    def test_log_action_attaches_context(self):
        """Test log_action attaches user and action context"""
        log_action(self.logger, "info", "Posted deposit", user_id="teller_1",
                   action="post_transaction", resource="acc_1", extra={"reference_number": "DEP-1"})

        entry = json.loads(JSONFormatter().format(self.records[0]))
        assert entry["message"] == "Posted deposit"
        assert entry["user_id"] == "teller_1"
        assert entry["action"] == "post_transaction"
        assert entry["resource"] == "acc_1"
        assert entry["extra"] == {"reference_number": "DEP-1"}
        assert entry["level"] == "INFO"

    def test_disabled_level_is_skipped(self):
        """Test messages below the logger level are dropped"""
        log_action(self.logger, "debug", "Too chatty")
        assert self.records == []
