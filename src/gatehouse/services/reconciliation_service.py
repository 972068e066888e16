from __future__ import annotations

import enum
import logging
import secrets
import time
from collections.abc import Sequence
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.auth import generate_password, hash_password
from gatehouse.db.models import User
from gatehouse.db.repos import IdentityLinkRepository, UserRepository
from gatehouse.events import LoginEventSink, UserSignedIn, UserSignedUp
from gatehouse.logging_config import log_with_fields
from gatehouse.sso.oidc.client import IdentityProviderClient
from gatehouse.sso.oidc.errors import IdentityLinkConflict, LoginError, ProviderError
from gatehouse.sso.oidc.flow import ExternalIdentity

logger = logging.getLogger("gatehouse.services.reconciliation")

USERNAME_MAX_LENGTH = 200
PLACEHOLDER_EMAIL_DOMAIN = "invalid"


class ReconciliationOutcome(enum.StrEnum):
    signed_in = "signed_in"
    signed_up = "signed_up"
    verify_email = "verify_email"
    failed = "failed"


@dataclass(frozen=True)
class Reconciliation:
    outcome: ReconciliationOutcome
    user: User | None = None
    error: LoginError | None = None
    detail: str | None = None
    joined_existing: bool = False

    @property
    def succeeded(self) -> bool:
        return self.outcome in (ReconciliationOutcome.signed_in, ReconciliationOutcome.signed_up)


def _failed(error: LoginError, detail: str) -> Reconciliation:
    return Reconciliation(outcome=ReconciliationOutcome.failed, error=error, detail=detail)


def placeholder_email() -> str:
    return f"change_this_email@{secrets.token_hex(8)}.{PLACEHOLDER_EMAIL_DOMAIN}"


def is_placeholder_email(email: str) -> bool:
    return email.startswith("change_this_email@") and email.endswith(f".{PLACEHOLDER_EMAIL_DOMAIN}")


def username_base(nickname: str) -> str:
    base = " ".join(nickname.split())[:USERNAME_MAX_LENGTH].strip()
    return base or "user"


class ReconciliationEngine:
    """Maps a verified external identity onto a local account.

    Outcomes, in order of evaluation:

    * the email policy may stop the flow (``email_not_set``) or ask the user
      to verify their address first (``verify_email``);
    * an existing identity link signs the linked account in;
    * otherwise the identity is linked to an account with the same verified
      email, or a new account is provisioned for it.

    Only a verified email may join an existing account. An unverified
    identity whose email already belongs to an account fails with
    ``email_not_verified``, whether it is provider-native or federated.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        provider: IdentityProviderClient,
        events: LoginEventSink,
        requires_verified_email: bool = False,
        native_providers: Sequence[str] = ("auth0", "database"),
    ) -> None:
        self.session = session
        self.provider = provider
        self.events = events
        self.requires_verified_email = requires_verified_email
        self.native_providers = tuple(native_providers)
        self.users = UserRepository(session)
        self.links = IdentityLinkRepository(session)

    async def resolve(self, identity: ExternalIdentity, id_token: str) -> Reconciliation:
        if self.requires_verified_email:
            if not identity.email:
                return _failed(LoginError.email_not_set, "identity has no email address")
            if not identity.email_verified:
                return Reconciliation(outcome=ReconciliationOutcome.verify_email)

        existing = await self._sign_in(identity)
        if existing is not None:
            return existing

        try:
            return await self._sign_up(identity, id_token)
        except ProviderError as exc:
            await self.session.rollback()
            return _failed(LoginError.provider_error, f"identity lookup failed: {exc}")
        except (IdentityLinkConflict, IntegrityError) as exc:
            await self.session.rollback()
            log_with_fields(
                logger,
                logging.WARNING,
                "sign-up lost a race, retrying as sign-in",
                subject_id=identity.subject_id,
                error=type(exc).__name__,
            )

        retried = await self._sign_in(identity)
        if retried is not None:
            return retried
        return _failed(
            LoginError.account_provisioning_failed,
            f"could not link subject {identity.subject_id!r} after a conflicting insert",
        )

    async def _sign_in(self, identity: ExternalIdentity) -> Reconciliation | None:
        user_id = await self.links.find_user_id_by_subject(identity.subject_id)
        if user_id is None:
            return None

        user = await self.users.get_by_id(user_id)
        if user is None:
            return _failed(
                LoginError.account_missing,
                f"subject {identity.subject_id!r} is linked to missing account {user_id}",
            )
        if not user.is_active:
            return _failed(LoginError.account_inactive, f"account {user.id} is blocked")

        profile = identity.as_profile()
        await self.links.update_profile(identity.subject_id, profile)
        await self.session.commit()

        await self.events.emit(UserSignedIn(user=user, profile=profile))
        return Reconciliation(outcome=ReconciliationOutcome.signed_in, user=user)

    async def _is_provider_native(
        self,
        identity: ExternalIdentity,
        id_token: str,
    ) -> tuple[ExternalIdentity, bool]:
        if identity.identities is None:
            identity = identity.with_identities(
                await self.provider.fetch_identities(identity.subject_id, id_token)
            )
        return identity, identity.has_provider(self.native_providers)

    async def _sign_up(self, identity: ExternalIdentity, id_token: str) -> Reconciliation:
        provider_native = False
        if not identity.email_verified and identity.email:
            identity, provider_native = await self._is_provider_native(identity, id_token)

        candidate: User | None = None
        if identity.email:
            candidate = await self.users.get_by_email(identity.email)

        joined_existing = candidate is not None
        if candidate is not None:
            if not identity.email_verified:
                kind = "provider-native" if provider_native else "federated"
                return _failed(
                    LoginError.email_not_verified,
                    f"unverified {kind} identity claims the email of account {candidate.id}",
                )
            if not candidate.is_active:
                return _failed(LoginError.account_inactive, f"account {candidate.id} is blocked")
            user = candidate
        else:
            user = await self._provision(identity)

        profile = identity.as_profile()
        await self.links.insert(identity.subject_id, user.id, profile)
        await self.session.commit()

        log_with_fields(
            logger,
            logging.INFO,
            "identity linked",
            subject_id=identity.subject_id,
            user_id=user.id,
            joined_existing=joined_existing,
        )
        await self.events.emit(
            UserSignedUp(user=user, profile=profile, joined_existing=joined_existing)
        )
        return Reconciliation(
            outcome=ReconciliationOutcome.signed_up,
            user=user,
            joined_existing=joined_existing,
        )

    async def _provision(self, identity: ExternalIdentity) -> User:
        username = await self._unique_username(identity.nickname)
        try:
            return await self.users.add(self._new_user(identity, username))
        except IntegrityError:
            # The username was claimed between the check and the insert.
            await self.session.rollback()
            log_with_fields(
                logger,
                logging.WARNING,
                "username taken during sign-up, retrying",
                subject_id=identity.subject_id,
                username=username,
            )
        username = await self._unique_username(identity.nickname, disambiguate=True)
        return await self.users.add(self._new_user(identity, username))

    @staticmethod
    def _new_user(identity: ExternalIdentity, username: str) -> User:
        return User(
            username=username,
            email=identity.email or placeholder_email(),
            display_name=identity.display_name,
            password_hash=hash_password(generate_password()),
            is_active=True,
        )

    async def _unique_username(self, nickname: str, *, disambiguate: bool = False) -> str:
        username = username_base(nickname)
        if not disambiguate and not await self.users.username_taken(username):
            return username

        username = f"{username}{int(time.time())}"
        if disambiguate:
            username = f"{username}{secrets.token_hex(2)}"
        while await self.users.username_taken(username):
            username = f"{username}{secrets.token_hex(2)}"
        return username
