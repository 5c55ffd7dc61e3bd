"""
Logging setup for applications embedding the popup_frequency engine.

The package itself only creates module loggers; handlers are attached here,
once, by the host application.

    from popup_frequency.logger import configure_logging

    configure_logging("DEBUG")
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from typing import Optional

PACKAGE_LOGGER = "popup_frequency"


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(level: str = "INFO", fmt: Optional[str] = None) -> logging.Logger:
    """
    Attach a stream handler to the package logger.

    `fmt` is "readable" (default) or "json"; when omitted the `LOG_FORMAT`
    environment variable decides. Calling this again replaces the handler.
    """

    log = logging.getLogger(PACKAGE_LOGGER)
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    log.setLevel(numeric_level)

    for handler in list(log.handlers):
        log.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setLevel(numeric_level)
    if (fmt or os.environ.get("LOG_FORMAT", "readable")) == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "[%(asctime)s] %(levelname)s - %(name)s - %(message)s",
                datefmt="%H:%M:%S",
            )
        )
    log.addHandler(handler)
    # Prevent duplicate lines through the root logger
    log.propagate = False
    return log
