"""
Structured logging for the subscription service.

- `vivu` logger: JSON lines in production, one-line pretty output elsewhere.
- request_id and account_id live in context vars so service code does not
  have to pass them around; ContextFilter stamps them on every record.
- Domain fields given via `extra=` (code, order_id, kind, ...) are kept in
  the JSON payload.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Dict, Optional

LOGGER_NAME = "vivu"

request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
account_id_ctx_var: ContextVar[Optional[str]] = ContextVar("account_id", default=None)

_CONTEXT_FIELDS = ("request_id", "account_id")

# Domain fields copied from `extra=` into JSON output when present
_EXTRA_FIELDS = (
    "code",
    "order_id",
    "event_id",
    "kind",
    "via_trial",
    "attempt",
    "error_code",
    "status",
    "path",
    "method",
    "latency_bucket",
)


def get_request_id(default: Optional[str] = None) -> Optional[str]:
    rid = request_id_ctx_var.get()
    return rid if rid is not None else default


def bind_account(account_id: Optional[str]) -> None:
    """Attach the authenticated account to logs for the rest of the request."""
    account_id_ctx_var.set(account_id)


def latency_bucket_ms(latency_ms: Optional[float]) -> str:
    if latency_ms is None:
        return "unknown"
    for limit, label in ((10, "<10ms"), (100, "10-100ms"), (500, "100-500ms"), (1000, "500-1000ms")):
        if latency_ms < limit:
            return label
    return ">=1000ms"


def _utc_timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z")


class ContextFilter(logging.Filter):
    """Fill request_id / account_id from context unless the caller set them."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = request_id_ctx_var.get()
        if getattr(record, "account_id", None) is None:
            record.account_id = account_id_ctx_var.get()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": _utc_timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _CONTEXT_FIELDS + _EXTRA_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class PrettyFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        context = ""
        rid = getattr(record, "request_id", None)
        account_id = getattr(record, "account_id", None)
        if rid:
            context += f" rid={rid}"
        if account_id:
            context += f" account={account_id}"
        line = f"{_utc_timestamp(record)} {record.levelname:<7} [vivu{context}] {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(env: str = "development", level: str = "INFO") -> None:
    """Install the single stdout handler on the `vivu` logger."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if env.lower() == "production" else PrettyFormatter())
    handler.addFilter(ContextFilter())

    logger.handlers = [handler]
    logger.propagate = True

    # uvicorn has its own handlers
    logging.getLogger("uvicorn").propagate = False
    logging.getLogger("uvicorn.error").propagate = False


def _truncate(value, limit: int = 500) -> str:
    try:
        text = str(value)
    except Exception:
        return "<unserializable>"
    return text if len(text) <= limit else text[:limit] + "...<truncated>"


def log_event(
    level: str,
    msg: str,
    *,
    request_id: Optional[str] = None,
    account_id: Optional[str] = None,
    error_code: Optional[str] = None,
    extra: Optional[Dict[str, object]] = None,
):
    """Log `msg` with context ids and truncated free-form fields."""
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        configure_logging(os.getenv("ENV", "development"))

    payload: Dict[str, object] = {
        "request_id": request_id or get_request_id(),
        "account_id": account_id or account_id_ctx_var.get(),
    }
    if error_code:
        payload["error_code"] = error_code
    for key, value in (extra or {}).items():
        payload[key] = value if isinstance(value, (bool, int, float)) or value is None else _truncate(value)

    getattr(logger, level, logger.info)(msg, extra=payload)
