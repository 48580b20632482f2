"""
Logging setup shared by the intake API, the insights API and the triage worker.

LOG_FORMAT=json emits one JSON object per line. Routing context passed through
``extra`` (lead_id, consumer, event) is lifted into the JSON object so log
aggregators can filter a single lead's trail.
"""
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from leadroute.config import settings

CONTEXT_FIELDS = ("lead_id", "consumer", "event")

TEXT_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"

# Chatty at INFO under uvicorn and the async drivers
QUIET_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "asyncio", "uvicorn.access", "httpx")


class JSONFormatter(logging.Formatter):

    def __init__(self, service: Optional[str] = None):
        super().__init__()
        self.service = service

    def format(self, record):
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.service:
            entry["service"] = self.service
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = str(value)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def configure_logging(
    service: Optional[str] = None,
    level: Optional[str] = None,
    log_format: Optional[str] = None,
) -> None:
    """Replace the root handlers with one stderr handler built from settings."""
    level_value = logging.getLevelName((level or settings.LOG_LEVEL).upper())
    if not isinstance(level_value, int):
        level_value = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    if (log_format or settings.LOG_FORMAT).lower() == "json":
        handler.setFormatter(JSONFormatter(service))
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level_value)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
