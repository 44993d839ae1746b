"""Progress Tracker — Structured JSON Logging.

One JSON object per line on stdout. Request and audit context travels in
``extra=`` and is copied into the line when present.
"""

import logging
import json
import sys
from datetime import datetime, timezone
from tracker.config import settings

LOGGER_NAMESPACE = "progress_tracker"
EXTRA_FIELDS = ("endpoint", "record_id", "table_name", "duration_ms", "status_code")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        log_entry.update(
            {key: getattr(record, key) for key in EXTRA_FIELDS if hasattr(record, key)}
        )
        # Dates and Decimals in extras are stringified
        return json.dumps(log_entry, default=str)


def _level() -> int:
    return getattr(logging, settings.log_level.upper(), logging.INFO)


def get_logger(name: str) -> logging.Logger:
    """Return ``progress_tracker.<name>`` with the JSON stdout handler attached."""
    logger = logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)
    logger.setLevel(_level())
    return logger
