"""
Logging setup for the planner service.

Records are stamped with the generation run they belong to ("run=-" outside
of a run). httpx logs every outbound request at INFO; with geocoding,
weather and model calls on each plan that drowns the planner's own output,
so it is held at WARNING unless debugging.
"""
from __future__ import annotations

import logging
from logging.config import dictConfig

from app.context import get_run_id

LOG_FORMAT = "%(asctime)s %(levelname)-7s [run=%(run_id)s] %(name)s: %(message)s"

_configured = False


class RunIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = get_run_id() or "-"
        return True


def configure_logging(*, log_level: str = "INFO") -> None:
    """Install the console handler; later calls are ignored."""
    global _configured
    if _configured:
        return

    client_level = "DEBUG" if log_level.upper() == "DEBUG" else "WARNING"
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"run": {"()": RunIdFilter}},
            "formatters": {"planner": {"format": LOG_FORMAT}},
            "handlers": {
                "stderr": {
                    "class": "logging.StreamHandler",
                    "filters": ["run"],
                    "formatter": "planner",
                }
            },
            "loggers": {
                "httpx": {"level": client_level},
                "httpcore": {"level": client_level},
            },
            "root": {"handlers": ["stderr"], "level": log_level.upper()},
        }
    )
    _configured = True
    logging.getLogger(__name__).debug(f"Logging configured at {log_level}")
