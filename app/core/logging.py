"""
Logging setup for the API, the rq worker and the reminder scheduler.

Records go to stdout, as JSON lines by default or as plain text when
LOG_JSON=false. Credentials, one-time codes and SendGrid keys are redacted
before anything is written.
"""
import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Optional

from app.core.config import settings

REDACTED = "***REDACTED***"

_KEY_VALUE_RE = re.compile(
    r'(password|secret|token|api_key|apikey|authorization|verification_code|reset_code)'
    r'(["\']?\s*[:=]\s*["\']?)[^\s,;"\'}{]+',
    re.IGNORECASE,
)
_BEARER_RE = re.compile(r'Bearer\s+[A-Za-z0-9._\-]+')
_SENDGRID_KEY_RE = re.compile(r'SG\.[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]+')

_SENSITIVE_KEYS = frozenset({
    "password", "new_password", "current_password", "hashed_password",
    "secret", "secret_key", "api_key", "token", "access_token",
    "authorization", "code", "verification_code", "reset_code",
})

# LogRecord attributes passed through ``extra=`` that belong in the entry
_CONTEXT_FIELDS = ("user_id", "action", "entity_type", "entity_id", "ip_address")


def scrub(message: str) -> str:
    """Redact credentials from free text."""
    message = _KEY_VALUE_RE.sub(lambda m: f"{m.group(1)}{m.group(2)}{REDACTED}", message)
    message = _BEARER_RE.sub(f"Bearer {REDACTED}", message)
    return _SENDGRID_KEY_RE.sub(REDACTED, message)


def scrub_details(obj):
    """Redact sensitive keys from nested audit details."""
    if isinstance(obj, dict):
        return {
            k: REDACTED if str(k).lower() in _SENSITIVE_KEYS else scrub_details(v)
            for k, v in obj.items()
        }
    if isinstance(obj, (list, tuple)):
        return [scrub_details(i) for i in obj]
    return obj


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": scrub(record.getMessage()),
        }
        for field in _CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value
        if record.levelno >= logging.ERROR:
            entry["location"] = f"{record.module}:{record.lineno}"
        if record.exc_info:
            entry["exception"] = scrub(self.formatException(record.exc_info))
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    def __init__(self):
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        return scrub(super().format(record))


def setup_logging(level: Optional[str] = None, json_output: Optional[bool] = None):
    """Install the stdout handler once per process."""
    root_logger = logging.getLogger()
    if any(getattr(h, "_shub_handler", False) for h in root_logger.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    use_json = settings.LOG_JSON if json_output is None else json_output
    handler.setFormatter(JsonFormatter() if use_json else TextFormatter())
    handler._shub_handler = True

    root_logger.addHandler(handler)
    root_logger.setLevel(level or settings.log_level)

    for noisy in ("uvicorn.access", "httpx", "httpcore", "multipart", "rq.worker"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class AuditLogger:
    """Mirrors persisted audit rows to the 'audit' logger."""

    def __init__(self):
        self.logger = get_logger("audit")

    def log(
        self,
        action: str,
        user_id: Optional[int] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        details: Optional[dict] = None,
        ip_address: Optional[str] = None,
    ):
        target = f" {entity_type}#{entity_id}" if entity_type and entity_id is not None else ""
        message = f"{action}{target}"
        if details:
            message += f" {json.dumps(scrub_details(details), default=str, sort_keys=True)}"

        self.logger.info(message, extra={
            "user_id": user_id,
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "ip_address": ip_address,
        })


audit_logger = AuditLogger()
