"""
Structured logging for the Kalkyl backend.

Every record passes through RequestContextFilter, which stamps the id of the
HTTP request being served (set by RequestTimingMiddleware) on the record.
A save logged by calculation_routes and the access line for the same request
therefore share one ``request_id``.
"""
import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

# "-" outside of a request (startup, tests, scripts)
current_request_id: ContextVar[str] = ContextVar("current_request_id", default="-")

_EXTRA_FIELDS = ("calculation_id", "duration_ms", "http_method", "http_path", "http_status")


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = current_request_id.get()
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line; calculation and request extras are lifted to top-level keys."""
    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
            "module": record.module,
            "line": record.lineno,
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        for name in _EXTRA_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_entry[name] = value
        # Swedish names and labels stay readable
        return json.dumps(log_entry, ensure_ascii=False)


def setup_logging(level: str = "INFO", json_output: bool = True, stream: Optional[object] = None):
    """Install one handler on the root logger, JSON for deployments, plain text for a terminal."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.addFilter(RequestContextFilter())
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(name)s] %(levelname)s %(request_id)s: %(message)s"
        ))

    root.handlers = [handler]

    # Access lines come from RequestTimingMiddleware; reference-data calls log their own failures
    for name in ["uvicorn.access", "httpcore", "httpx"]:
        logging.getLogger(name).setLevel(logging.WARNING)
