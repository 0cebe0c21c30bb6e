# folio_core/utils/logging.py
"""
Logging setup for embedding applications.

Library modules only call ``logging.getLogger(__name__)``. Whoever runs the
core (a worker, a CLI, a test) calls setup_logging() once, which installs a
single handler on the root logger that:
- stamps every record with the active correlation ID (one per
  recalculation or performance query)
- writes either a pipe-separated text line or one JSON object per record

Services attach structured fields through ``extra=``; ``account_id`` and
``as_of_date`` are lifted to the top level of the JSON entry so log
pipelines can filter by account.

    logger.debug("Recalculated acc-1", extra={"account_id": "acc-1"})

Environment:
    FOLIO_LOG_LEVEL=DEBUG
    FOLIO_LOG_FORMAT=json
"""

import datetime as dt
import json
import logging
import sys
from decimal import Decimal
from typing import Any, TextIO

from folio_core.config import settings
from folio_core.utils.context import get_correlation_id

# =============================================================================
# CONSTANTS
# =============================================================================

TEXT_FORMAT = "%(asctime)s %(levelname)-7s [%(correlation_id)s] %(name)s: %(message)s"
TEXT_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

NO_CORRELATION_ID = "-"

# Extra fields promoted out of "extra" into the top-level JSON entry
PROMOTED_FIELDS = ("account_id", "as_of_date")

QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool")

# Attributes every LogRecord carries; anything else came in through extra=
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "correlation_id",
    "message",
    "asctime",
}


# =============================================================================
# FILTER & FORMATTER
# =============================================================================

class CorrelationIdFilter(logging.Filter):
    """Sets ``record.correlation_id`` from the current context."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or NO_CORRELATION_ID
        return True


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (dt.date, dt.datetime)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    return str(value)


class JsonFormatter(logging.Formatter):
    """
    One JSON object per record.

        {"timestamp": "2024-06-30T08:15:02.120000+00:00", "level": "DEBUG",
         "logger": "folio_core.services.recalculation",
         "correlation_id": "recalc-1a2b3c4d", "account_id": "acc-1",
         "as_of_date": "2024-06-30", "message": "...", "extra": {...}}

    Decimals and dates are written as strings so amounts keep their exact
    digits.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": dt.datetime.fromtimestamp(record.created, tz=dt.timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "correlation_id": getattr(record, "correlation_id", NO_CORRELATION_ID),
        }

        extra = {
            key: _jsonable(value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS
        }
        for key in PROMOTED_FIELDS:
            if key in extra:
                entry[key] = extra.pop(key)

        entry["message"] = record.getMessage()
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        if extra:
            entry["extra"] = extra

        return json.dumps(entry)


# =============================================================================
# SETUP
# =============================================================================

def setup_logging(
        level: str | None = None,
        log_format: str | None = None,
        stream: TextIO | None = None,
        quiet_sqlalchemy: bool = True,
) -> None:
    """
    Install the root handler.

    Args:
        level: Level name; settings.log_level when omitted
        log_format: "text" or "json"; settings.log_format when omitted
        stream: Output stream, stdout by default
        quiet_sqlalchemy: Raise the SQLAlchemy engine and pool loggers to WARNING
    """
    level_name = level or settings.log_level
    numeric_level = _get_log_level(level_name)
    format_name = (log_format or settings.log_format).lower()

    if format_name == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(fmt=TEXT_FORMAT, datefmt=TEXT_DATE_FORMAT)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(CorrelationIdFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    if quiet_sqlalchemy:
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(f"Logging ready: level={level_name}, format={format_name}")


def _get_log_level(level_name: str) -> int:
    """
    Map a level name to its numeric value.

    Raises:
        ValueError: Unknown level name
    """
    name = level_name.strip().upper()
    levels = logging.getLevelNamesMapping()
    if name not in levels:
        raise ValueError(f"Unknown log level '{level_name}'; expected one of {sorted(levels)}")
    return levels[name]


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
