"""Login lifecycle notifications.

Exactly two events exist: a linked account signed in, or an account was
linked for the first time (joined or provisioned). Both carry the local user
and the external profile as it was seen during the login.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol, TypeAlias

from gatehouse.db.models import User
from gatehouse.security.audit import audit_oidc_success
from gatehouse.security.audit_constants import OIDC_EVENT_SIGNIN, OIDC_EVENT_SIGNUP


@dataclass(frozen=True)
class UserSignedIn:
    user: User
    profile: Mapping[str, object] = field(default_factory=dict)


@dataclass(frozen=True)
class UserSignedUp:
    user: User
    profile: Mapping[str, object] = field(default_factory=dict)
    joined_existing: bool = False


LoginEvent: TypeAlias = UserSignedIn | UserSignedUp


class LoginEventSink(Protocol):
    async def emit(self, event: LoginEvent) -> None: ...


class AuditLogEventSink:
    async def emit(self, event: LoginEvent) -> None:
        subject = str(event.profile.get("sub") or "") or None
        if isinstance(event, UserSignedUp):
            audit_oidc_success(
                event=OIDC_EVENT_SIGNUP,
                actor=event.user,
                subject_id=subject,
                joined_existing=event.joined_existing,
            )
            return
        audit_oidc_success(event=OIDC_EVENT_SIGNIN, actor=event.user, subject_id=subject)


def get_event_sink() -> LoginEventSink:
    return AuditLogEventSink()
