from __future__ import annotations

from typing import Final, Literal, TypeAlias

AuditOutcome: TypeAlias = Literal["success", "denied"]

AuthAuditEvent: TypeAlias = Literal[
    "login",
    "logout",
]

OIDCAuditEvent: TypeAlias = Literal[
    "authorize",
    "callback",
    "signin",
    "signup",
    "verify_email",
]

# Namespaces prefix the event name: "auth.login", "auth.oidc.callback".
AUDIT_NAMESPACE_AUTH: Final = "auth"
AUDIT_NAMESPACE_OIDC: Final = "auth.oidc"

# Auth events
AUTH_EVENT_LOGIN: Final[AuthAuditEvent] = "login"
AUTH_EVENT_LOGOUT: Final[AuthAuditEvent] = "logout"

# OIDC events
OIDC_EVENT_AUTHORIZE: Final[OIDCAuditEvent] = "authorize"
OIDC_EVENT_CALLBACK: Final[OIDCAuditEvent] = "callback"
OIDC_EVENT_SIGNIN: Final[OIDCAuditEvent] = "signin"
OIDC_EVENT_SIGNUP: Final[OIDCAuditEvent] = "signup"
OIDC_EVENT_VERIFY_EMAIL: Final[OIDCAuditEvent] = "verify_email"
