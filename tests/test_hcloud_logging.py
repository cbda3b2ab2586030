"""Tests for log handler selection."""
import logging
import sys
from unittest.mock import patch

import pytest

from hcloud_logging import LOG_FORMAT, get_log_handler, setup_logging
from hcloud_snapshots import ConfigurationError


@pytest.fixture(autouse=True)
def reset_application_logger():
    logger = logging.getLogger("Application")
    yield
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)


class TestGetLogHandler:
    """Test the --log targets."""

    @pytest.mark.parametrize("log_to", ["-", ""])
    def test_stdout(self, log_to):
        handler = get_log_handler(log_to)
        assert isinstance(handler, logging.StreamHandler)
        assert handler.stream is sys.stdout
        assert handler.formatter._fmt == LOG_FORMAT

    def test_file(self, tmp_path):
        path = tmp_path / "autosnap.log"
        handler = get_log_handler(str(path))
        try:
            assert isinstance(handler, logging.FileHandler)
            assert handler.baseFilename == str(path)
        finally:
            handler.close()

    def test_unwritable_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="file logging"):
            get_log_handler(str(tmp_path / "missing-dir" / "autosnap.log"))

    def test_syslog_on_windows(self):
        with patch("platform.system", return_value="Windows"):
            with pytest.raises(ConfigurationError, match="not supported on Windows"):
                get_log_handler(":syslog")

    def test_syslog(self):
        with patch("hcloud_logging.SysLogHandler") as syslog_handler, \
                patch("platform.system", return_value="Linux"):
            handler = get_log_handler(":syslog")

        assert handler is syslog_handler.return_value
        assert syslog_handler.call_args[1]["address"] == "/dev/log"


class TestSetupLogging:
    """Test configuring the Application logger."""

    @pytest.mark.parametrize("level,expected", [
        ("error", logging.ERROR),
        ("info", logging.INFO),
        ("debug", logging.DEBUG),
    ])
    def test_levels(self, level, expected):
        logger = setup_logging("-", level)
        assert logger.name == "Application"
        assert logger.level == expected

    def test_replaces_previous_handler(self, tmp_path):
        setup_logging(str(tmp_path / "first.log"), "info")
        logger = setup_logging("-", "info")
        assert len(logger.handlers) == 1
        assert not isinstance(logger.handlers[0], logging.FileHandler)

    def test_unknown_level(self):
        with pytest.raises(ConfigurationError, match="--log-level"):
            setup_logging("-", "warning")
