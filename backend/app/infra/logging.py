"""Structured JSON logging with PII scrubbing.

Client contact details, signatures and GPS fixes never reach log output:
keyed fields are masked outright and free text is pattern-scrubbed.
"""

import contextvars
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any

from app.settings import settings

EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
PHONE_RE = re.compile(r"\b(?:\+?1[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b")
ADDRESS_RE = re.compile(
    r"\b\d{1,6}\s+[A-Za-z0-9.\-\s]+(?:Street|St|Avenue|Ave|Road|Rd|Boulevard|Blvd|Drive|Dr|"
    r"Lane|Ln|Way|Court|Ct|Crescent|Cres|Trail|Trl|Place|Pl)\b",
    re.IGNORECASE,
)
BEARER_RE = re.compile(r"(?i)bearer\s+[A-Za-z0-9._\-]+")
DATA_URI_RE = re.compile(r"data:image/[A-Za-z0-9.+-]+;base64,[A-Za-z0-9+/=]+")

CLIENT_PII_KEYS = {"client_name", "client_phone", "client_email", "address", "phone", "email"}
LOCATION_KEYS = {"gps_start_latitude", "gps_start_longitude", "gps_end_latitude", "gps_end_longitude"}
SECRET_KEYS = {"authorization", "token", "metrics_token", "signature", "signature_worker", "signature_client"}
SENSITIVE_KEYS = CLIENT_PII_KEYS | LOCATION_KEYS | SECRET_KEYS

LOG_CONTEXT: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar("log_context", default={})
_LOG_RECORD_ATTRS = set(logging.LogRecord(None, 0, "", 0, "", (), None).__dict__.keys())


def redact_pii(value: str) -> str:
    value = DATA_URI_RE.sub("[REDACTED_IMAGE]", value)
    value = EMAIL_RE.sub("[REDACTED_EMAIL]", value)
    value = PHONE_RE.sub("[REDACTED_PHONE]", value)
    value = ADDRESS_RE.sub("[REDACTED_ADDRESS]", value)
    return BEARER_RE.sub("Bearer [REDACTED_TOKEN]", value)


def _scrub(value: Any, key: str | None = None) -> Any:
    if key and key.lower() in SENSITIVE_KEYS:
        return "[REDACTED]"
    if isinstance(value, str):
        return redact_pii(value)
    if isinstance(value, (list, tuple)):
        return [_scrub(item) for item in value]
    if isinstance(value, dict):
        return {item_key: _scrub(item_value, item_key) for item_key, item_value in value.items()}
    return value


def update_log_context(**kwargs: Any) -> dict[str, Any]:
    """Merge non-null fields into the per-task logging context."""
    merged = {**LOG_CONTEXT.get({}), **{key: value for key, value in kwargs.items() if value is not None}}
    LOG_CONTEXT.set(merged)
    return merged


def clear_log_context() -> None:
    LOG_CONTEXT.set({})


def _record_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields = {
        key: value
        for key, value in record.__dict__.items()
        if key not in _LOG_RECORD_ATTRS and not key.startswith("_")
    }
    nested = fields.pop("extra", None)
    if isinstance(nested, dict):
        fields.update(nested)
    return fields


class RedactingJsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": redact_pii(record.getMessage()),
            "logger": record.name,
        }
        payload.update(_scrub(LOG_CONTEXT.get({})))
        payload.update(_scrub(_record_fields(record)))
        if record.exc_info:
            payload["exc_info"] = redact_pii(self.formatException(record.exc_info))
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str | int | None = None) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(RedactingJsonFormatter())
    root = logging.getLogger()
    root.setLevel(level or settings.log_level.upper())
    root.handlers.clear()
    root.addHandler(handler)
