"""Security audit trail for logins.

Every record names who acted, as far as it is known at that point of the
flow: the local account, the email the provider asserted, or only the
provider subject. Failed logins are recorded at WARNING.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from gatehouse.db.models import User
from gatehouse.logging_config import log_security_audit_event
from gatehouse.security.audit_constants import (
    AUDIT_NAMESPACE_AUTH,
    AUDIT_NAMESPACE_OIDC,
    AuditOutcome,
    AuthAuditEvent,
    OIDCAuditEvent,
)

_OUTCOME_LEVELS: dict[AuditOutcome, int] = {
    "success": logging.INFO,
    "denied": logging.WARNING,
}


def actor_fields(
    *,
    actor: User | None = None,
    actor_user_id: object | None = None,
    actor_email: str | None = None,
    subject_id: str | None = None,
) -> dict[str, object]:
    fields: dict[str, object] = {}
    if actor is not None:
        actor_user_id = actor_user_id if actor_user_id is not None else actor.id
        actor_email = actor_email if actor_email is not None else actor.email

    for key, value in (
        ("actor_user_id", actor_user_id),
        ("actor_email", actor_email),
        ("subject_id", subject_id),
    ):
        if value is not None:
            fields[key] = value
    return fields


def _record(
    namespace: str,
    event: str,
    outcome: AuditOutcome,
    *,
    reason: str | None = None,
    actor: User | None = None,
    actor_user_id: object | None = None,
    actor_email: str | None = None,
    subject_id: str | None = None,
    extra: Mapping[str, object] | None = None,
) -> None:
    payload = actor_fields(
        actor=actor,
        actor_user_id=actor_user_id,
        actor_email=actor_email,
        subject_id=subject_id,
    )
    payload.update(extra or {})
    if reason is not None:
        payload["reason"] = str(reason)

    log_security_audit_event(
        audit_event=f"{namespace}.{event}",
        outcome=outcome,
        audit_level=_OUTCOME_LEVELS[outcome],
        **payload,
    )


def audit_auth_success(
    *,
    event: AuthAuditEvent,
    actor: User | None = None,
    actor_user_id: object | None = None,
    **extra: object,
) -> None:
    """Local session changes: a login was finalized or a user logged out."""
    _record(
        AUDIT_NAMESPACE_AUTH,
        event,
        "success",
        actor=actor,
        actor_user_id=actor_user_id,
        extra=extra,
    )


def audit_oidc_success(
    *,
    event: OIDCAuditEvent,
    actor: User | None = None,
    subject_id: str | None = None,
    **extra: object,
) -> None:
    _record(
        AUDIT_NAMESPACE_OIDC,
        event,
        "success",
        actor=actor,
        subject_id=subject_id,
        extra=extra,
    )


def audit_oidc_denied(
    *,
    event: OIDCAuditEvent,
    reason: str,
    actor_email: str | None = None,
    subject_id: str | None = None,
    **extra: object,
) -> None:
    # No local account is known when a login is refused.
    _record(
        AUDIT_NAMESPACE_OIDC,
        event,
        "denied",
        reason=reason,
        actor_email=actor_email,
        subject_id=subject_id,
        extra=extra,
    )
