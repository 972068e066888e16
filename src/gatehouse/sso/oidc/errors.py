from __future__ import annotations

import enum


class LoginError(enum.StrEnum):
    """Why a login attempt was refused. Logged and audited, never shown verbatim."""

    token_exchange_failed = "token_exchange_failed"
    token_validation_failed = "token_validation_failed"
    state_mismatch = "state_mismatch"
    subject_mismatch = "subject_mismatch"
    email_not_set = "email_not_set"
    email_not_verified = "email_not_verified"
    identity_link_conflict = "identity_link_conflict"
    account_provisioning_failed = "account_provisioning_failed"
    provider_error = "provider_error"
    account_missing = "account_missing"
    account_inactive = "account_inactive"


class ProviderError(Exception):
    """The identity provider could not be reached or answered with an error."""


class TokenValidationError(Exception):
    """An ID token failed parsing, signature or claim checks."""


class IdentityLinkConflict(Exception):
    def __init__(self, subject_id: str) -> None:
        super().__init__(f"external subject {subject_id!r} is already linked")
        self.subject_id = subject_id
