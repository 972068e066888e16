from __future__ import annotations

import logging
import re

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.db.models import IdentityLink, LoginNonce, User
from gatehouse.services.login_flow import EMAIL_NOT_SET_MESSAGE, GENERIC_LOGIN_ERROR
from tests.auth.login_test_helpers import (
    complete_login,
    install_tenant,
    query_of,
    start_authorize,
)
from tests.fake_tenant import CLIENT_ID, TENANT_DOMAIN, FakeTenant, rsa_key


def _alice(**overrides: object) -> FakeTenant:
    userinfo: dict[str, object] = {
        "sub": "auth0|alice",
        "email": "alice@example.com",
        "email_verified": True,
        "nickname": "alice",
        "name": "Alice Example",
        "identities": [{"provider": "auth0", "connection": "Username-Password-Authentication"}],
    }
    return FakeTenant(userinfo=userinfo, **overrides)  # type: ignore[arg-type]


async def _count(session: AsyncSession, model: type[User] | type[IdentityLink]) -> int:
    return (await session.execute(select(func.count(model.id)))).scalar_one()


async def _nonce_count(session: AsyncSession) -> int:
    return (await session.execute(select(func.count(LoginNonce.id)))).scalar_one()


@pytest.mark.asyncio
async def test_login_page_renders_widget_with_fresh_nonce(
    client: AsyncClient,
    db_session: AsyncSession,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    install_tenant(monkeypatch, _alice())

    response = await client.get("/login")

    assert response.status_code == 200
    assert "no-store" in response.headers["cache-control"]
    assert CLIENT_ID in response.text
    assert "https://cdn.eu.auth0.com" in response.text
    assert await _nonce_count(db_session) == 1


@pytest.mark.asyncio
async def test_sso_mode_redirects_to_silent_authorize(
    client: AsyncClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    install_tenant(monkeypatch, _alice(), GATEHOUSE_OIDC_REDIRECT_FOR_SSO="true")

    response = await client.get("/login", follow_redirects=False)

    assert response.status_code == 303
    location = response.headers["location"]
    assert location.startswith(f"https://{TENANT_DOMAIN}/authorize?")
    query = query_of(location)
    assert query["prompt"] == ["none"]
    assert query["redirect_uri"] == ["http://testserver/auth/callback"]


@pytest.mark.asyncio
async def test_login_routes_are_hidden_without_provider(
    client: AsyncClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.delenv("GATEHOUSE_OIDC_DOMAIN", raising=False)
    monkeypatch.delenv("GATEHOUSE_OIDC_CLIENT_ID", raising=False)
    monkeypatch.delenv("GATEHOUSE_OIDC_CLIENT_SECRET", raising=False)

    assert (await client.get("/login")).status_code == 404
    assert (await client.get("/auth/callback?code=x&state=y")).status_code == 404


@pytest.mark.asyncio
async def test_callback_signs_up_new_user_and_authenticates_session(
    client: AsyncClient,
    db_session: AsyncSession,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    tenant = _alice()
    sink = install_tenant(monkeypatch, tenant)

    response = await complete_login(client)

    assert response.status_code == 303
    user = (
        await db_session.execute(select(User).where(User.email == "alice@example.com"))
    ).scalar_one()
    assert response.headers["location"] == f"/users/{user.id}"
    assert "no-store" in response.headers["cache-control"]
    assert sink.kinds() == ["UserSignedUp"]
    assert await _nonce_count(db_session) == 0
    assert tenant.paths() == ["/oauth/token", "/userinfo"]

    page = await client.get(response.headers["location"])
    assert page.status_code == 200
    assert "alice@example.com" in page.text


@pytest.mark.asyncio
async def test_returning_user_signs_in_to_same_account(
    client: AsyncClient,
    db_session: AsyncSession,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    sink = install_tenant(monkeypatch, _alice())

    first = await complete_login(client)
    await client.get("/logout", follow_redirects=False)
    second = await complete_login(client)

    assert first.headers["location"] == second.headers["location"]
    assert sink.kinds() == ["UserSignedUp", "UserSignedIn"]
    assert await _count(db_session, User) == 1
    assert await _count(db_session, IdentityLink) == 1


@pytest.mark.asyncio
async def test_callback_honours_only_local_destinations(
    client: AsyncClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    install_tenant(monkeypatch, _alice())

    local = await complete_login(client, destination="/welcome?tab=1")
    assert local.headers["location"] == "/welcome?tab=1"

    external = await complete_login(client, destination="//evil.example.com/")
    assert re.fullmatch(r"/users/[0-9a-f-]{36}", external.headers["location"])


@pytest.mark.asyncio
async def test_login_required_restarts_interactive_authorize_without_lookup(
    client: AsyncClient,
    db_session: AsyncSession,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    tenant = _alice()
    install_tenant(monkeypatch, tenant, GATEHOUSE_OIDC_REDIRECT_FOR_SSO="true")
    state = query_of((await client.get("/login", follow_redirects=False)).headers["location"])[
        "state"
    ][0]

    response = await client.get(
        "/auth/callback",
        params={"error": "login_required", "state": state},
        follow_redirects=False,
    )

    assert response.status_code == 303
    location = response.headers["location"]
    assert location.startswith(f"https://{TENANT_DOMAIN}/authorize?")
    query = query_of(location)
    assert "prompt" not in query
    assert query["state"] != [state]
    assert tenant.requests == []
    assert await _count(db_session, User) == 0


@pytest.mark.asyncio
async def test_state_mismatch_fails_uniformly(
    client: AsyncClient,
    db_session: AsyncSession,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO, logger="gatehouse.security.audit")
    install_tenant(monkeypatch, _alice())
    await start_authorize(client)

    response = await complete_login(client, state="forged-state")

    assert response.status_code == 303
    assert response.headers["location"] == "/"
    assert await _count(db_session, User) == 0

    home = await client.get("/")
    assert GENERIC_LOGIN_ERROR in home.text
    assert "forged-state" not in home.text

    messages = [record.getMessage() for record in caplog.records]
    assert any(
        "audit_event=auth.oidc.callback" in message
        and "outcome=denied" in message
        and "reason=state_mismatch" in message
        for message in messages
    )


@pytest.mark.asyncio
async def test_replayed_state_is_rejected(
    client: AsyncClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    install_tenant(monkeypatch, _alice())
    state = await start_authorize(client)

    first = await complete_login(client, state=state)
    assert first.headers["location"].startswith("/users/")

    replay = await complete_login(client, state=state)
    assert replay.headers["location"] == "/"

    # The failed replay also drops the local login.
    assert (await client.get(first.headers["location"])).status_code == 401


@pytest.mark.asyncio
async def test_subject_mismatch_between_token_and_profile_is_rejected(
    client: AsyncClient,
    db_session: AsyncSession,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    install_tenant(monkeypatch, _alice(token_overrides={"sub": "auth0|attacker"}))

    response = await complete_login(client)

    assert response.headers["location"] == "/"
    assert await _count(db_session, User) == 0


@pytest.mark.asyncio
async def test_token_with_foreign_issuer_is_rejected(
    client: AsyncClient,
    db_session: AsyncSession,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    install_tenant(monkeypatch, _alice(token_overrides={"iss": "https://evil.example.com/"}))

    response = await complete_login(client)

    assert response.headers["location"] == "/"
    assert await _count(db_session, User) == 0


@pytest.mark.asyncio
async def test_failed_code_exchange_never_leaks_provider_detail(
    client: AsyncClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    install_tenant(monkeypatch, _alice(token_error="invalid_grant"))

    response = await complete_login(client)
    assert response.headers["location"] == "/"

    home = await client.get("/")
    assert GENERIC_LOGIN_ERROR in home.text
    assert "invalid_grant" not in home.text


@pytest.mark.asyncio
async def test_provider_error_callback_fails_without_exchange(
    client: AsyncClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    tenant = _alice()
    install_tenant(monkeypatch, tenant)
    state = await start_authorize(client)

    response = await client.get(
        "/auth/callback",
        params={"error": "access_denied", "error_description": "User cancelled", "state": state},
        follow_redirects=False,
    )

    assert response.headers["location"] == "/"
    assert tenant.requests == []
    assert "User cancelled" not in (await client.get("/")).text


@pytest.mark.asyncio
async def test_missing_email_shows_dedicated_message(
    client: AsyncClient,
    db_session: AsyncSession,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    tenant = FakeTenant(userinfo={"sub": "twitter|1", "nickname": "nomail"})
    install_tenant(monkeypatch, tenant, GATEHOUSE_OIDC_REQUIRES_VERIFIED_EMAIL="true")

    response = await complete_login(client)

    assert response.headers["location"] == "/"
    assert EMAIL_NOT_SET_MESSAGE in (await client.get("/")).text
    assert await _count(db_session, User) == 0


@pytest.mark.asyncio
async def test_rs256_tokens_are_checked_against_tenant_jwks(
    client: AsyncClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    tenant = _alice(signing_alg="RS256", signing_key=rsa_key())
    install_tenant(monkeypatch, tenant, GATEHOUSE_OIDC_JWT_SIGNATURE_ALG="RS256")

    response = await complete_login(client)

    assert response.headers["location"].startswith("/users/")
    assert "/.well-known/jwks.json" in tenant.paths()


@pytest.mark.asyncio
async def test_callback_accepts_form_post_response_mode(
    client: AsyncClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    install_tenant(monkeypatch, _alice())
    state = await start_authorize(client)

    response = await client.post(
        "/auth/callback",
        data={"code": "code-123", "state": state},
        follow_redirects=False,
    )

    assert response.status_code == 303
    assert response.headers["location"].startswith("/users/")
