from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

import httpx
from authlib.jose import JsonWebKey, JsonWebToken

from gatehouse.db.models import User
from gatehouse.events import LoginEvent
from gatehouse.sso.oidc.provider import ProviderClient, ProviderConfig

TENANT_DOMAIN = "gatehouse-test.eu.auth0.com"
CLIENT_ID = "test-client"
CLIENT_SECRET = "test-client-secret-0123456789abcdef0123456789abcdef"


def provider_env(monkeypatch: Any, **overrides: str) -> None:
    values = {
        "GATEHOUSE_OIDC_DOMAIN": TENANT_DOMAIN,
        "GATEHOUSE_OIDC_CLIENT_ID": CLIENT_ID,
        "GATEHOUSE_OIDC_CLIENT_SECRET": CLIENT_SECRET,
        "GATEHOUSE_OIDC_JWT_SIGNATURE_ALG": "HS256",
    }
    values.update(overrides)
    for key, value in values.items():
        monkeypatch.setenv(key, value)


def rsa_key(kid: str = "test-key") -> Any:
    return JsonWebKey.generate_key("RSA", 2048, is_private=True, options={"kid": kid})


def sign_token(
    claims: dict[str, object],
    *,
    alg: str = "HS256",
    key: Any = None,
    kid: str | None = None,
) -> str:
    header: dict[str, object] = {"alg": alg}
    if kid is not None:
        header["kid"] = kid
    signing_key = key if key is not None else CLIENT_SECRET.encode("utf-8")
    return JsonWebToken([alg]).encode(header, claims, signing_key).decode("ascii")


def token_claims(sub: str, /, **overrides: object) -> dict[str, object]:
    now = int(time.time())
    claims: dict[str, object] = {
        "iss": f"https://{TENANT_DOMAIN}/",
        "aud": CLIENT_ID,
        "sub": sub,
        "iat": now,
        "exp": now + 600,
    }
    claims.update(overrides)
    return claims


@dataclass
class FakeTenant:
    """In-memory identity provider tenant served through ``httpx.MockTransport``."""

    userinfo: dict[str, object]
    identities: list[dict[str, object]] | None = None
    token_overrides: dict[str, object] = field(default_factory=dict)
    signing_alg: str = "HS256"
    signing_key: Any = None
    token_error: str | None = None
    verification_status: int = 204
    requests: list[httpx.Request] = field(default_factory=list)

    @property
    def config(self) -> ProviderConfig:
        return ProviderConfig(
            domain=TENANT_DOMAIN,
            client_id=CLIENT_ID,
            client_secret=CLIENT_SECRET,
            algorithms=(self.signing_alg,),
        )

    def id_token(self) -> str:
        claims = token_claims(str(self.userinfo.get("sub", "")), **self.token_overrides)
        if self.signing_alg.startswith("HS"):
            return sign_token(claims, alg=self.signing_alg)
        return sign_token(
            claims,
            alg=self.signing_alg,
            key=self.signing_key,
            kid=self.signing_key.kid,
        )

    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/oauth/token":
            if self.token_error is not None:
                return httpx.Response(
                    403,
                    json={"error": self.token_error, "error_description": "denied by tenant"},
                )
            return httpx.Response(
                200,
                json={
                    "access_token": "access-token",
                    "token_type": "Bearer",
                    "expires_in": 86400,
                    "id_token": self.id_token(),
                },
            )
        if path == "/userinfo":
            return httpx.Response(200, json=self.userinfo)
        if path.startswith("/api/v2/users/"):
            return httpx.Response(
                200,
                json={"user_id": self.userinfo.get("sub"), "identities": self.identities or []},
            )
        if path.endswith("/send_verification_email"):
            return httpx.Response(self.verification_status, json={})
        if path == "/.well-known/jwks.json" and self.signing_key is not None:
            return httpx.Response(200, json={"keys": [self.signing_key.as_dict(is_private=False)]})
        return httpx.Response(404, json={"error": "not_found"})

    def client(self, config: ProviderConfig | None = None) -> ProviderClient:
        return ProviderClient(config or self.config, transport=httpx.MockTransport(self.handler))


@dataclass
class RecordingEventSink:
    events: list[LoginEvent] = field(default_factory=list)

    async def emit(self, event: LoginEvent) -> None:
        self.events.append(event)

    def kinds(self) -> list[str]:
        return [type(event).__name__ for event in self.events]


def make_user(username: str, email: str, *, is_active: bool = True) -> User:
    return User(
        username=username,
        email=email,
        display_name=username.title(),
        password_hash=None,
        is_active=is_active,
    )
