"""Logging setup for the API and the reconciliation worker.

Every record carries the tree context it was logged under. The request id
and the calling owner come from context variables set per request; node
ids, storage keys and the operation name come from ``extra=``. JSON output
puts these fields in fixed top-level keys; text output appends them as
``key=value`` pairs so a delete can be followed across service, blob store
and reconciler lines with a plain grep.
"""

import contextvars
import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="")
owner_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("owner_id", default="")

# Emitted first and in this order, in both formats.
TREE_FIELDS = ("request_id", "owner_id", "operation", "node_id", "parent_id", "storage_key")

_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}


def _tree_context(record: logging.LogRecord) -> Dict[str, Any]:
    """Tree fields for a record; explicit ``extra=`` values win over context."""
    context = {"request_id": request_id_var.get(), "owner_id": owner_id_var.get()}
    fields = {}
    for name in TREE_FIELDS:
        value = getattr(record, name, None) or context.get(name)
        if value:
            fields[name] = value
    return fields


def _other_extras(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRS and key not in TREE_FIELDS and not key.startswith("_")
    }


class _JsonFormatter(logging.Formatter):
    """One JSON object per line: standard fields, tree fields, then other extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_tree_context(record))
        for key, value in _other_extras(record).items():
            payload.setdefault(key, value)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class _TextFormatter(logging.Formatter):
    """Human-readable line with the tree fields appended."""

    def __init__(self):
        super().__init__(fmt="%(asctime)s %(levelname)-7s %(name)s: %(message)s", datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = _tree_context(record)
        if not fields:
            return line
        suffix = " ".join(f"{key}={value}" for key, value in fields.items())
        head, sep, trace = line.partition("\n")
        return f"{head} [{suffix}]{sep}{trace}"


# S3 credentials and database passwords are the secrets this service handles.
_SECRET_PATTERNS = [
    re.compile(r'\b(?:AKIA|ASIA)[0-9A-Z]{16}\b'),
    re.compile(r'(://[^:/\s]+:)[^@\s]+(?=@)'),
    re.compile(r'(?i)((?:aws_secret_access_key|aws_session_token|secret|password)[=:]\s*)[^\s,\'"]{8,}'),
]

_REDACTED = "***REDACTED***"


def redact(text: str) -> str:
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(lambda m: (m.group(1) if m.lastindex else "") + _REDACTED, text)
    return text


class _SecretFilter(logging.Filter):
    """Redact credentials from the message and any cached traceback text."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = redact(str(record.msg))
        if record.exc_text:
            record.exc_text = redact(record.exc_text)
        return True


# Chatty at INFO; their failures surface through our own error logs.
_QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "botocore", "boto3", "s3transfer", "urllib3")


def setup_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Install one stdout handler on the root logger.

    Args:
        log_level: standard level name, INFO when omitted.
        log_format: ``"json"`` (default) or ``"text"``.
    """
    level = (log_level or "INFO").upper()
    fmt = (log_format or "json").lower()

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(_SecretFilter())
    handler.setFormatter(_JsonFormatter() if fmt == "json" else _TextFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug("Logging configured", extra={"level": level, "format": fmt})
