"""Unit tests for cephplan.shared.logging module."""

import json
import logging

import pytest

from cephplan.shared.logging import configure_logging, get_logger, verbosity_to_level


class TestVerbosityToLevel:
    """Tests for verbosity_to_level."""

    @pytest.mark.parametrize(
        ("verbose", "level"),
        [(0, "warning"), (1, "info"), (2, "debug"), (5, "debug")],
    )
    def test_levels(self, verbose, level):
        """Test -v counts map onto log levels."""
        assert verbosity_to_level(verbose) == level

    def test_custom_default(self):
        assert verbosity_to_level(0, default="error") == "error"


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_sets_root_level(self):
        """Test the stdlib root level follows the requested level."""
        configure_logging(level="debug")
        assert logging.getLogger().level == logging.DEBUG
        configure_logging(level="nonsense")
        assert logging.getLogger().level == logging.WARNING

    def test_json_to_file(self, tmp_path):
        """Test JSON events are written to a log file."""
        log_file = tmp_path / "cephplan.log"
        configure_logging(level="info", log_file=log_file, json_output=True)
        get_logger("cephplan.test.logging").info("planned", osd_id=3)

        event = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert event["event"] == "planned"
        assert event["osd_id"] == 3
        assert event["level"] == "info"

    def test_reconfigure_applies_to_used_loggers(self, tmp_path):
        """Test that a logger which already logged follows a later configuration."""
        logger = get_logger("cephplan.test.reconfigure")
        configure_logging(level="warning")
        logger.warning("before reconfigure")

        log_file = tmp_path / "cephplan.log"
        configure_logging(level="info", log_file=log_file, json_output=True)
        logger.info("after reconfigure", stage=2)

        event = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert event["event"] == "after reconfigure"
        assert event["stage"] == 2
