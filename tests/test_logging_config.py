from __future__ import annotations

import logging

import pytest

from gatehouse.logging_config import (
    build_logging_config,
    configure_logging,
    format_log_fields,
    log_security_audit_event,
)
from gatehouse.settings import Settings


def test_format_log_fields_escapes_control_characters() -> None:
    fields = format_log_fields(actor_email="evil@example.com\nforged", note="a\rb\tc\x00")

    assert "actor_email=evil@example.com\\nforged" in fields
    assert "note=a\\rb\\tc\\x00" in fields
    assert "\n" not in fields.replace("\\n", "")
    assert "\r" not in fields.replace("\\r", "")


def test_log_security_audit_event_sanitizes_user_controlled_values(
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO, logger="gatehouse.security.audit")
    log_security_audit_event(
        audit_event="auth.oidc.callback",
        outcome="denied",
        actor_email="user@example.com\nforged_line",
        subject_id="auth0|x\rroot",
    )

    messages = [record.getMessage() for record in caplog.records]
    assert len(messages) == 1

    message = messages[0]
    assert "actor_email=user@example.com\\nforged_line" in message
    assert "subject_id=auth0|x\\rroot" in message
    assert "\n" not in message
    assert "\r" not in message


def test_configure_logging_keeps_security_audit_logger_at_info() -> None:
    configure_logging(Settings(log_level="WARNING"))

    audit_logger = logging.getLogger("gatehouse.security.audit")
    assert audit_logger.getEffectiveLevel() == logging.INFO


def test_format_log_fields_redacts_credentials() -> None:
    fields = format_log_fields(id_token="eyJ.secret.sig", code="abc", subject_id="auth0|1", gone=None)

    assert fields == "code=[redacted] id_token=[redacted] subject_id=auth0|1"


def test_oidc_debug_logging_lowers_sso_logger_level() -> None:
    quiet = build_logging_config(Settings(log_level="warning"))
    assert quiet["root"]["level"] == "WARNING"
    assert "gatehouse.sso" not in quiet["loggers"]

    noisy = build_logging_config(Settings(oidc_debug_logging=True, log_json=True))
    assert noisy["loggers"]["gatehouse.sso"] == {"level": "DEBUG"}
    assert noisy["handlers"]["default"]["formatter"] == "json"
