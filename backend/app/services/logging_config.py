"""
Structured logging configuration for the FHX quotation backend.

Every line carries the X-Request-ID of the request that produced it: the
timing middleware binds the id to a context variable and
``RequestContextFilter`` stamps it onto records from any logger, so a
repository or engine log line can be joined to its request line.
"""
import logging
import json
import sys
from contextvars import ContextVar, Token
from datetime import datetime, timezone

_request_id: ContextVar[str] = ContextVar("request_id", default="")

# `extra=` keys copied into the JSON line when a record carries them
EXTRA_FIELDS = (
    "request_id",
    "quotation_id",
    "material_id",
    "tiers",
    "resources",
    "duration_ms",
    "http_method",
    "http_path",
    "http_status",
)


def bind_request_id(request_id: str) -> Token:
    return _request_id.set(request_id)


def reset_request_id(token: Token) -> None:
    _request_id.reset(token)


def current_request_id() -> str:
    return _request_id.get()


class RequestContextFilter(logging.Filter):
    """Adds ``request_id`` to records logged while a request is in flight."""
    def filter(self, record):
        if not getattr(record, "request_id", None):
            request_id = _request_id.get()
            if request_id:
                record.request_id = request_id
        return True


class JSONFormatter(logging.Formatter):
    """JSON structured log formatter for production."""
    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        for name in EXTRA_FIELDS:
            if hasattr(record, name):
                log_entry[name] = getattr(record, name)
        # Decimal costs and dates in extras
        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", json_output: bool = True):
    """Configure application logging."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestContextFilter())
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
        ))

    root.handlers = [handler]

    # Suppress noisy loggers
    for name in ["uvicorn.access", "httpcore", "httpx", "aiosqlite", "sqlalchemy.engine"]:
        logging.getLogger(name).setLevel(logging.WARNING)
