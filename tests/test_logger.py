"""
Tests for the logging setup helper.
"""

import json
import logging

from popup_frequency.logger import PACKAGE_LOGGER, JsonFormatter, configure_logging


class TestConfigureLogging:
    def teardown_method(self):
        log = logging.getLogger(PACKAGE_LOGGER)
        for handler in list(log.handlers):
            log.removeHandler(handler)
        log.propagate = True
        log.setLevel(logging.NOTSET)

    def test_single_handler_after_repeat_calls(self):
        configure_logging("DEBUG")
        log = configure_logging("WARNING")
        assert len(log.handlers) == 1
        assert log.level == logging.WARNING
        assert log.propagate is False

    def test_json_format_selected_by_argument(self):
        log = configure_logging("INFO", fmt="json")
        assert isinstance(log.handlers[0].formatter, JsonFormatter)

    def test_json_format_from_environment(self, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "json")
        log = configure_logging()
        assert isinstance(log.handlers[0].formatter, JsonFormatter)

    def test_json_formatter_output(self):
        record = logging.LogRecord(
            "popup_frequency.engine", logging.INFO, __file__, 1, "deny %s", ("v1",), None
        )
        payload = json.loads(JsonFormatter().format(record))
        assert payload["message"] == "deny v1"
        assert payload["level"] == "INFO"
        assert payload["logger"] == "popup_frequency.engine"

    def test_engine_logs_denials_at_debug(self, engine, caplog):
        engine.set_blocker("v")
        with caplog.at_level(logging.DEBUG, logger="popup_frequency.engine"):
            engine.evaluate("v", "p", "s")
        assert any("check=behavior" in message for message in caplog.messages)
