"""Authorization-code login, independent of the web framework.

The controller never raises for a failed login. Every outcome is a
``FlowOutcome`` the route turns into a response: a redirect, the login page,
or the verify-email page.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, TypeAlias

from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.auth import discard_login, finalize_login, get_current_user_id_from
from gatehouse.events import LoginEventSink
from gatehouse.logging_config import log_with_fields
from gatehouse.security.audit import audit_auth_success, audit_oidc_denied, audit_oidc_success
from gatehouse.security.audit_constants import (
    AUTH_EVENT_LOGOUT,
    OIDC_EVENT_AUTHORIZE,
    OIDC_EVENT_CALLBACK,
    OIDC_EVENT_VERIFY_EMAIL,
    OIDCAuditEvent,
)
from gatehouse.services.reconciliation_service import (
    Reconciliation,
    ReconciliationEngine,
    ReconciliationOutcome,
)
from gatehouse.session_context import SessionContext, flash
from gatehouse.settings import Settings
from gatehouse.sso.oidc.client import IdentityProviderClient
from gatehouse.sso.oidc.errors import LoginError, ProviderError, TokenValidationError
from gatehouse.sso.oidc.flow import ExternalIdentity
from gatehouse.sso.oidc.nonces import NonceStore
from gatehouse.sso.oidc.provider import ProviderConfig, tenant_cdn
from gatehouse.sso.oidc.tokens import TokenValidator

logger = logging.getLogger("gatehouse.sso.login")

GENERIC_LOGIN_ERROR = "There was a problem logging you in, sorry for the inconvenience."
EMAIL_NOT_SET_MESSAGE = (
    "This account does not have an email associated. Please login with a different provider."
)
VERIFICATION_SENT_MESSAGE = "A verification email has been sent. Please check your inbox."
VERIFICATION_FAILED_MESSAGE = "We could not send the verification email. Please try again later."

SILENT_PROMPT = "none"
HOME_PATH = "/"


@dataclass(frozen=True)
class Redirect:
    url: str
    status_code: int = 303


@dataclass(frozen=True)
class RenderLogin:
    widget: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class VerifyEmailRequired:
    id_token: str
    email: str | None = None


FlowOutcome: TypeAlias = Redirect | RenderLogin | VerifyEmailRequired


def safe_destination(raw: str | None) -> str | None:
    """Accept only same-site absolute paths as post-login destinations."""
    if not raw:
        return None
    candidate = raw.strip()
    if not candidate.startswith("/") or candidate.startswith("//") or "\\" in candidate:
        return None
    return candidate


def account_page(user_id: object) -> str:
    return f"/users/{user_id}"


class LoginFlowController:
    def __init__(
        self,
        session: AsyncSession,
        *,
        settings: Settings,
        config: ProviderConfig,
        provider: IdentityProviderClient,
        events: LoginEventSink,
        validator: TokenValidator | None = None,
    ) -> None:
        self.settings = settings
        self.config = config
        self.provider = provider
        self.nonces = NonceStore(
            session,
            ttl_seconds=min(settings.nonce_ttl_seconds, settings.session_cookie_max_age_seconds),
            max_outstanding=settings.nonce_max_outstanding,
        )
        self.engine = ReconciliationEngine(
            session,
            provider=provider,
            events=events,
            requires_verified_email=settings.oidc_requires_verified_email,
            native_providers=settings.oidc_native_providers,
        )
        self._validator = validator

    def _debug(self, message: str, **fields: object) -> None:
        if self.settings.oidc_debug_logging:
            log_with_fields(logger, logging.INFO, message, **fields)

    async def start_login(self, ctx: SessionContext, redirect_uri: str) -> FlowOutcome:
        if self.settings.oidc_redirect_for_sso:
            self._debug("sso redirect mode, skipping login page")
            return await self.authorize(ctx, redirect_uri, prompt=SILENT_PROMPT)

        state = await self.nonces.issue(ctx)
        widget: dict[str, Any] = {
            "clientId": self.config.client_id,
            "domain": self.config.auth_domain,
            "cdn": tenant_cdn(self.config.domain),
            "callbackURL": redirect_uri,
            "state": state,
            "showSignup": self.settings.allow_signup,
            "lockOptions": dict(self.settings.lock_extra_settings or {}),
            "loginCss": self.settings.login_css or "",
        }
        return RenderLogin(widget=widget)

    async def authorize(
        self,
        ctx: SessionContext,
        redirect_uri: str,
        prompt: str | None = None,
    ) -> Redirect:
        state = await self.nonces.issue(ctx)
        url = self.provider.build_authorization_url(
            state=state,
            redirect_uri=redirect_uri,
            prompt=prompt,
        )
        self._debug("authorize redirect issued", redirect_uri=redirect_uri, prompt=prompt)
        audit_oidc_success(event=OIDC_EVENT_AUTHORIZE, prompt=prompt)
        return Redirect(url=url)

    async def _token_validator(self) -> TokenValidator:
        if self._validator is not None:
            return self._validator
        jwks = None
        if TokenValidator.needs_jwks(self.config.algorithms):
            jwks = await self.provider.fetch_jwks()
        return TokenValidator.from_config(self.config, jwks=jwks)

    async def _verify(self, id_token: str) -> dict[str, Any]:
        try:
            validator = await self._token_validator()
        except ProviderError as exc:
            raise TokenValidationError(f"signing keys unavailable: {exc}") from exc
        return validator.verify(id_token)

    def fail(
        self,
        ctx: SessionContext,
        error: LoginError,
        detail: str,
        *,
        message: str = GENERIC_LOGIN_ERROR,
        event: OIDCAuditEvent = OIDC_EVENT_CALLBACK,
    ) -> Redirect:
        log_with_fields(logger, logging.ERROR, "login failed", error=error, detail=detail)
        audit_oidc_denied(event=event, reason=error)
        discard_login(ctx)
        flash(ctx, message, "error")
        return Redirect(url=HOME_PATH)

    async def handle_callback(
        self,
        ctx: SessionContext,
        params: Mapping[str, str],
        *,
        redirect_uri: str,
        destination: str | None = None,
    ) -> FlowOutcome:
        error = params.get("error")
        if error == "login_required":
            # Repeating prompt=none would fail with login_required again, so the
            # restart lets the provider show its login page.
            self._debug("silent login not possible, restarting authorize")
            return await self.authorize(ctx, redirect_uri)
        if error:
            return self.fail(
                ctx,
                LoginError.provider_error,
                f"provider returned {error}: {params.get('error_description', '')}".strip(),
            )

        code = params.get("code")
        if not code:
            return self.fail(ctx, LoginError.token_exchange_failed, "callback carried no code")

        try:
            identity, id_token = await self.provider.exchange_code_and_fetch_user(
                code, redirect_uri=redirect_uri
            )
        except ProviderError as exc:
            return self.fail(ctx, LoginError.token_exchange_failed, str(exc))
        self._debug("code exchanged", subject_id=identity.subject_id)

        try:
            claims = await self._verify(id_token)
        except TokenValidationError as exc:
            return self.fail(ctx, LoginError.token_validation_failed, str(exc))

        if not await self.nonces.consume(ctx, params.get("state")):
            return self.fail(ctx, LoginError.state_mismatch, "state did not match a login nonce")

        if claims.get("sub") != identity.subject_id:
            return self.fail(
                ctx,
                LoginError.subject_mismatch,
                f"token sub {claims.get('sub')!r} != profile sub {identity.subject_id!r}",
            )

        result = await self.engine.resolve(identity, id_token)
        return self._route(ctx, identity, id_token, result, destination)

    def _route(
        self,
        ctx: SessionContext,
        identity: ExternalIdentity,
        id_token: str,
        result: Reconciliation,
        destination: str | None,
    ) -> FlowOutcome:
        if result.outcome == ReconciliationOutcome.verify_email or (
            result.error == LoginError.email_not_verified
        ):
            log_with_fields(
                logger,
                logging.WARNING,
                "login halted until email is verified",
                subject_id=identity.subject_id,
                detail=result.detail,
            )
            audit_oidc_denied(
                event=OIDC_EVENT_CALLBACK,
                reason=LoginError.email_not_verified,
                actor_email=identity.email,
                subject_id=identity.subject_id,
            )
            discard_login(ctx)
            return VerifyEmailRequired(id_token=id_token, email=identity.email)

        if not result.succeeded or result.user is None:
            error = result.error or LoginError.account_provisioning_failed
            message = GENERIC_LOGIN_ERROR
            if error == LoginError.email_not_set:
                message = EMAIL_NOT_SET_MESSAGE
            return self.fail(ctx, error, result.detail or "reconciliation failed", message=message)

        finalize_login(ctx, result.user)
        audit_oidc_success(
            event=OIDC_EVENT_CALLBACK,
            actor=result.user,
            subject_id=identity.subject_id,
            outcome_kind=result.outcome,
        )
        return Redirect(url=safe_destination(destination) or account_page(result.user.id))

    def handle_logout(self, ctx: SessionContext, return_to: str) -> Redirect:
        user_id = get_current_user_id_from(ctx)
        ctx.clear()
        if user_id is not None:
            audit_auth_success(event=AUTH_EVENT_LOGOUT, actor_user_id=user_id)

        # SSO mode ends the provider session for every application.
        client_id = None if self.settings.oidc_redirect_for_sso else self.config.client_id
        return Redirect(url=self.provider.build_logout_url(return_to, client_id))

    async def resend_verification_email(self, ctx: SessionContext, id_token: str) -> Redirect:
        try:
            claims = await self._verify(id_token)
        except TokenValidationError as exc:
            return self.fail(
                ctx,
                LoginError.token_validation_failed,
                str(exc),
                event=OIDC_EVENT_VERIFY_EMAIL,
            )

        subject_id = str(claims["sub"])
        try:
            await self.provider.send_verification_email(subject_id, id_token)
        except ProviderError as exc:
            log_with_fields(
                logger,
                logging.ERROR,
                "verification email resend failed",
                subject_id=subject_id,
                detail=str(exc),
            )
            audit_oidc_denied(
                event=OIDC_EVENT_VERIFY_EMAIL,
                reason=LoginError.provider_error,
                subject_id=subject_id,
            )
            flash(ctx, VERIFICATION_FAILED_MESSAGE, "error")
            return Redirect(url=HOME_PATH)

        audit_oidc_success(event=OIDC_EVENT_VERIFY_EMAIL, subject_id=subject_id)
        flash(ctx, VERIFICATION_SENT_MESSAGE, "info")
        return Redirect(url=HOME_PATH)
