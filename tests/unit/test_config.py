"""Unit tests for configuration loading."""

import logging
import os

import pytest
from pydantic import ValidationError

from flasher.config import FlasherConfig, load_config
from flasher.models.status import FlashStage


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep FLASHER_* variables of the host out of these tests."""
    for name in list(os.environ):
        if name.upper().startswith("FLASHER_"):
            monkeypatch.delenv(name)


@pytest.mark.unit
class TestLoadConfig:
    """load_config reading FLASHER_* variables."""

    def test_defaults(self):
        config = load_config()

        assert config.host == "0.0.0.0"
        assert config.port == 12316
        assert config.firmware_dir == "./firmware"
        assert config.report_url is None
        assert config.stage_timeouts == {
            FlashStage.ERASE: 30.0,
            FlashStage.WRITE: 120.0,
            FlashStage.VERIFY: 60.0,
            FlashStage.RESET: 10.0,
        }

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("FLASHER_PORT", "8080")
        monkeypatch.setenv("FLASHER_FIRMWARE_DIR", "/opt/firmware")
        monkeypatch.setenv("FLASHER_REPORT_URL", "http://localhost:9080")
        monkeypatch.setenv("FLASHER_SIMULATION_TIME_SCALE", "0.5")

        config = load_config()

        assert config.port == 8080
        assert config.firmware_dir == "/opt/firmware"
        assert config.report_url == "http://localhost:9080"
        assert config.simulation_time_scale == 0.5

    def test_stage_timeout_override(self, monkeypatch):
        monkeypatch.setenv("FLASHER_TIMEOUT_WRITE", "300")

        config = load_config()

        assert config.stage_timeouts[FlashStage.WRITE] == 300.0
        assert config.stage_timeouts[FlashStage.ERASE] == 30.0

    def test_lowercase_variable_names(self, monkeypatch):
        monkeypatch.setenv("flasher_log_level", "debug")

        assert load_config().log_level_value == logging.DEBUG

    def test_constructor_arguments_win(self, monkeypatch):
        monkeypatch.setenv("FLASHER_PORT", "8080")

        assert FlasherConfig(port=9000).port == 9000

    def test_invalid_port_rejected(self, monkeypatch):
        monkeypatch.setenv("FLASHER_PORT", "70000")

        with pytest.raises(ValidationError):
            load_config()

    def test_invalid_report_url_rejected(self, monkeypatch):
        monkeypatch.setenv("FLASHER_REPORT_URL", "localhost:9080")

        with pytest.raises(ValidationError):
            load_config()

    def test_non_positive_timeout_rejected(self, monkeypatch):
        monkeypatch.setenv("FLASHER_TIMEOUT_RESET", "0")

        with pytest.raises(ValidationError):
            load_config()

    def test_log_level_value(self):
        assert FlasherConfig(log_level="debug").log_level_value == logging.DEBUG
        assert FlasherConfig(log_level="bogus").log_level_value == logging.INFO
