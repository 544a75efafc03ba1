# logging_config.py
#
# Description: Structured JSON logging shared by the server and the clients.
#              Every record is emitted as a single JSON line on stdout with
#              timestamp, level, logger name, message and any `extra` fields.
#

from __future__ import annotations

import logging
import logging.config
from typing import Any, Dict

from config import settings

JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def build_logging_config(level: str | None = None) -> Dict[str, Any]:
    """Return the dictConfig used by :func:`setup_logging`."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": "pythonjsonlogger.json.JsonFormatter",
                "fmt": JSON_FORMAT,
                "datefmt": "%Y-%m-%dT%H:%M:%S",
                "rename_fields": {
                    "asctime": "timestamp",
                    "levelname": "level",
                    "name": "logger",
                },
            }
        },
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
                "formatter": "json",
            }
        },
        "root": {
            "handlers": ["stdout"],
            "level": (level or settings.log_level).upper(),
        },
    }


def setup_logging(level: str | None = None) -> logging.Logger:
    """
    Configures the root logger with a JSON formatter and returns it.
    Calling it again replaces the handler instead of adding a second one.
    """
    logging.config.dictConfig(build_logging_config(level))
    return logging.getLogger()
