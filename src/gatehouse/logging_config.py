from __future__ import annotations

import json
import logging
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from logging.config import dictConfig
from typing import Any

from gatehouse.settings import Settings, get_settings

AUDIT_LOGGER_NAME = "gatehouse.security.audit"
SSO_LOGGER_NAME = "gatehouse.sso"

# Field names whose values are credentials and never reach a log line.
REDACTED_FIELDS = frozenset(
    {"access_token", "client_secret", "code", "id_token", "password", "state"}
)
REDACTED = "[redacted]"

_VALID_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
_CONTROL_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t"}

_request_id: ContextVar[str | None] = ContextVar("gatehouse_request_id", default=None)


def normalize_log_level(raw_level: str) -> str:
    level = raw_level.strip().upper()
    return level if level in _VALID_LOG_LEVELS else "INFO"


def get_request_id() -> str | None:
    return _request_id.get()


def set_request_id(request_id: str) -> Token[str | None]:
    return _request_id.set(request_id)


def reset_request_id(token: Token[str | None]) -> None:
    _request_id.reset(token)


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id() or "-"
        return True


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "request_id": getattr(record, "request_id", "-"),
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True)


def _escape(text: str) -> str:
    # Provider-supplied values (emails, nicknames) must not forge log lines.
    out: list[str] = []
    for char in text:
        if char in _CONTROL_ESCAPES:
            out.append(_CONTROL_ESCAPES[char])
        elif ord(char) < 0x20 or ord(char) == 0x7F:
            out.append(f"\\x{ord(char):02x}")
        else:
            out.append(char)
    return "".join(out)


def format_log_fields(**fields: object) -> str:
    """Render ``key=value`` pairs in key order, skipping ``None`` values."""
    parts: list[str] = []
    for key in sorted(fields):
        value = fields[key]
        if value is None:
            continue
        text = REDACTED if key in REDACTED_FIELDS else _escape(str(value))
        parts.append(f"{key}={text}")
    return " ".join(parts)


def log_with_fields(
    logger: logging.Logger,
    level: int,
    message: str,
    *,
    exc_info: Any | None = None,
    **fields: object,
) -> None:
    field_text = format_log_fields(**fields)
    if field_text:
        logger.log(level, "%s %s", message, field_text, exc_info=exc_info)
    else:
        logger.log(level, "%s", message, exc_info=exc_info)


def log_security_audit_event(
    *,
    audit_event: str,
    outcome: str,
    audit_level: int = logging.INFO,
    **fields: object,
) -> None:
    log_with_fields(
        logging.getLogger(AUDIT_LOGGER_NAME),
        audit_level,
        "security audit event",
        audit_event=audit_event,
        outcome=outcome,
        **fields,
    )


def build_logging_config(settings: Settings) -> dict[str, Any]:
    level = normalize_log_level(settings.log_level)
    loggers: dict[str, dict[str, Any]] = {
        "uvicorn": {"level": level},
        "uvicorn.error": {"level": level},
        "uvicorn.access": {"level": level},
        # Audit trail must survive a quiet root level.
        AUDIT_LOGGER_NAME: {"level": "INFO"},
    }
    if settings.oidc_debug_logging:
        loggers[SSO_LOGGER_NAME] = {"level": "DEBUG"}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "request_context": {"()": "gatehouse.logging_config.RequestContextFilter"},
        },
        "formatters": {
            "plain": {
                "format": (
                    "%(asctime)s %(levelname)s [%(name)s] [req=%(request_id)s] %(message)s"
                ),
            },
            "json": {"()": "gatehouse.logging_config.JsonLogFormatter"},
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "filters": ["request_context"],
                "formatter": "json" if settings.log_json else "plain",
            }
        },
        "root": {"handlers": ["default"], "level": level},
        "loggers": loggers,
    }


def configure_logging(settings: Settings | None = None) -> None:
    dictConfig(build_logging_config(settings if settings is not None else get_settings()))
