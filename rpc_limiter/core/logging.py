"""Logging utilities with JSON formatting, redaction, and request correlation.

This module centralizes logging configuration, including:
- request_id and RPC procedure propagation via contextvars
- Redaction of client identifiers (addresses, limiter keys, auth headers)
- JSON formatter for machine-friendly logs
- A single stdout handler, JSON or plain text
"""

from __future__ import annotations

import hashlib
import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging import LogRecord
from typing import Any, Iterable, Mapping

from rpc_limiter.core.config import LogSettings, settings

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
_procedure_var: ContextVar[str | None] = ContextVar("procedure", default=None)

# Client identifiers and credentials must never reach log sinks verbatim.
SENSITIVE_KEYS_DEFAULT: set[str] = {
    "client_ip",
    "rate_limit_key",
    "cf-connecting-ip",
    "x-forwarded-for",
    "x-real-ip",
    "authorization",
    "x-api-key",
    "api_key",
    "cookie",
    "set-cookie",
    "token",
    "secret",
    "password",
}

# LogRecord attributes that are not user-supplied extras
_EXCLUDED_ATTRS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "stack",
}


def set_request_context(request_id: str | None, procedure: str | None = None) -> None:
    """Bind the correlation id and RPC procedure of the current request.

    Args:
        request_id: Correlation identifier to attach to subsequent logs.
        procedure: RPC procedure path being served, if known.
    """

    _request_id_var.set(request_id)
    _procedure_var.set(procedure)


def get_request_id() -> str | None:
    return _request_id_var.get()


def get_procedure() -> str | None:
    return _procedure_var.get()


def clear_request_context() -> None:
    """Forget the request context bound by set_request_context()."""

    _request_id_var.set(None)
    _procedure_var.set(None)


def hash_key(key: str) -> str:
    """Short, stable digest of a limiter key for logs."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def _redact_value(value: Any, sensitive_keys: set[str]) -> Any:
    """Recursively redact sensitive values within mappings and sequences."""

    if isinstance(value, Mapping):
        return {
            k: "[REDACTED]"
            if str(k).lower() in sensitive_keys
            else _redact_value(v, sensitive_keys)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(_redact_value(v, sensitive_keys) for v in value)
    return value


def _record_extras(record: LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _EXCLUDED_ATTRS and not key.startswith("_")
    }


class RequestContextFilter(logging.Filter):
    """Attach request_id and procedure from context when absent on the record."""

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        if getattr(record, "request_id", None) is None:
            request_id = get_request_id()
            if request_id:
                record.request_id = request_id
        if getattr(record, "procedure", None) is None:
            procedure = get_procedure()
            if procedure:
                record.procedure = procedure
        return True


class SensitiveDataFilter(logging.Filter):
    """Redact sensitive fields on the record before formatting."""

    def __init__(self, sensitive_keys: Iterable[str] | None = None) -> None:
        super().__init__()
        self.sensitive_keys = {k.lower() for k in (sensitive_keys or SENSITIVE_KEYS_DEFAULT)}

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        for key, value in _record_extras(record).items():
            if key.lower() in self.sensitive_keys:
                setattr(record, key, "[REDACTED]")
            else:
                setattr(record, key, _redact_value(value, self.sensitive_keys))
        return True


class JsonFormatter(logging.Formatter):
    """Format LogRecord as one JSON object per line.

    Extras are emitted as they are on the record; redaction is the job of
    SensitiveDataFilter, installed on the same handler.
    """

    def format(self, record: LogRecord) -> str:  # noqa: D401
        record_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        record_data.update(_record_extras(record))
        if record.exc_info:
            record_data["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(record_data, default=str)


def configure_logging(log_settings: LogSettings | None = None) -> None:
    """Configure the root logger with context, redaction and formatting.

    Args:
        log_settings: Optional log settings; defaults to global settings if omitted.
    """

    cfg = log_settings or settings.log

    level = getattr(logging, cfg.level.upper(), logging.INFO)
    handler = logging.StreamHandler(sys.stdout)

    handler.addFilter(RequestContextFilter())
    handler.addFilter(SensitiveDataFilter(SENSITIVE_KEYS_DEFAULT))

    if cfg.format == "plain":
        formatter: logging.Formatter = logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s"
        )
    else:
        formatter = JsonFormatter()

    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    logging.getLogger("uvicorn").propagate = False
    logging.getLogger("uvicorn.access").propagate = False
