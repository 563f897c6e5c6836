"""
Logging setup for the ``sessionwallet`` logger tree.

Module loggers log nonce decisions and broadcasts at DEBUG and session
lifecycle at INFO. Nothing is configured until ``setup_logging`` is called.
"""
import json
import logging
import os
import sys
from typing import Optional

HUMAN_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record: ts, level, logger, msg (and exception)."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO", fmt: str = "human", log_file: Optional[str] = None) -> None:
    """
    (Re)configure the ``sessionwallet`` logger.

    Args:
        level: level name; unknown names fall back to INFO
        fmt: "human" or "json" for the stderr handler
        log_file: optional path, always written as JSON lines
    """
    logger = logging.getLogger("sessionwallet")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(JsonLineFormatter() if fmt == "json" else logging.Formatter(HUMAN_FORMAT))
    logger.addHandler(console)

    if log_file:
        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(JsonLineFormatter())
        logger.addHandler(file_handler)
