from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx
from authlib.common.urls import add_params_to_uri
from authlib.integrations.httpx_client import AsyncOAuth2Client, OAuthError
from authlib.oauth2.rfc6749.parameters import prepare_grant_uri

from gatehouse.logging_config import log_with_fields
from gatehouse.settings import Settings, get_settings
from gatehouse.sso.oidc.errors import ProviderError
from gatehouse.sso.oidc.flow import (
    ExternalIdentity,
    ProviderIdentity,
    parse_external_identity,
    parse_provider_identities,
)

logger = logging.getLogger("gatehouse.sso.provider")

AUTHORIZE_SCOPE = "openid profile email"
DEFAULT_JWT_LEEWAY_SECONDS = 25

_TENANT_REGION_RE = re.compile(r"^[\w\-]+\.([\w\-]*)\.*auth0\.com$")


def normalize_domain(raw: str) -> str:
    domain = raw.strip()
    for prefix in ("https://", "http://"):
        if domain.lower().startswith(prefix):
            domain = domain[len(prefix) :]
    return domain.strip("/").lower()


def parse_algorithms(raw: str) -> tuple[str, ...]:
    return tuple(alg.strip() for alg in raw.split(",") if alg.strip())


def tenant_cdn(domain: str) -> str:
    """CDN base URL hosting the login widget for a tenant's region."""
    match = _TENANT_REGION_RE.match(normalize_domain(domain))
    region = match.group(1) if match else ""
    if not region or region == "us":
        return "https://cdn.auth0.com"
    return f"https://cdn.{region}.auth0.com"


@dataclass(frozen=True)
class ProviderConfig:
    domain: str
    client_id: str
    client_secret: str
    custom_domain: str | None = None
    algorithms: tuple[str, ...] = ("RS256",)
    secret_base64_encoded: bool = False
    leeway_seconds: int = DEFAULT_JWT_LEEWAY_SECONDS
    timeout_seconds: float = 10.0

    @property
    def auth_domain(self) -> str:
        return self.custom_domain or self.domain

    @property
    def issuer(self) -> str:
        return f"https://{self.auth_domain}/"

    def url(self, path: str) -> str:
        return f"https://{self.auth_domain}{path}"


def provider_config_from_settings(settings: Settings) -> ProviderConfig | None:
    if (
        settings.oidc_domain is None
        or settings.oidc_client_id is None
        or settings.oidc_client_secret is None
    ):
        return None

    domain = normalize_domain(settings.oidc_domain)
    client_id = settings.oidc_client_id.strip()
    if not domain or not client_id:
        return None

    custom_domain = normalize_domain(settings.oidc_custom_domain or "") or None
    algorithms = parse_algorithms(settings.oidc_jwt_signature_alg) or ("RS256",)
    leeway = settings.oidc_jwt_leeway_seconds
    return ProviderConfig(
        domain=domain,
        client_id=client_id,
        client_secret=settings.oidc_client_secret.get_secret_value(),
        custom_domain=custom_domain,
        algorithms=algorithms,
        secret_base64_encoded=settings.oidc_secret_base64_encoded,
        leeway_seconds=leeway if leeway else DEFAULT_JWT_LEEWAY_SECONDS,
        timeout_seconds=settings.oidc_http_timeout_seconds,
    )


def get_provider_config() -> ProviderConfig | None:
    return provider_config_from_settings(get_settings())


def provider_enabled() -> bool:
    return get_provider_config() is not None


class ProviderClient:
    """Talks to the provider tenant over httpx.

    Nothing is cached between calls: each callback performs a fresh code
    exchange and the resulting tokens die with the request.
    """

    def __init__(
        self,
        config: ProviderConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._transport = transport

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.config.timeout_seconds, transport=self._transport)

    def build_authorization_url(
        self,
        *,
        state: str,
        redirect_uri: str,
        prompt: str | None = None,
    ) -> str:
        extra: dict[str, str] = {}
        if prompt:
            extra["prompt"] = prompt
        return prepare_grant_uri(
            self.config.url("/authorize"),
            client_id=self.config.client_id,
            response_type="code",
            redirect_uri=redirect_uri,
            scope=AUTHORIZE_SCOPE,
            state=state,
            **extra,
        )

    async def exchange_code_and_fetch_user(
        self,
        code: str,
        *,
        redirect_uri: str,
    ) -> tuple[ExternalIdentity, str]:
        oauth_client = AsyncOAuth2Client(
            client_id=self.config.client_id,
            client_secret=self.config.client_secret,
            token_endpoint_auth_method="client_secret_post",
            redirect_uri=redirect_uri,
            timeout=self.config.timeout_seconds,
            transport=self._transport,
        )
        try:
            async with oauth_client:
                token = await oauth_client.fetch_token(
                    self.config.url("/oauth/token"),
                    grant_type="authorization_code",
                    code=code,
                )
                id_token = token.get("id_token")
                if not isinstance(id_token, str) or not id_token:
                    raise ProviderError("token response did not include an id_token")

                response = await oauth_client.get(self.config.url("/userinfo"))
                response.raise_for_status()
                userinfo = response.json()
        except OAuthError as exc:
            raise ProviderError(
                f"token endpoint returned {exc.error}: {exc.description or ''}".strip()
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"token exchange request failed: {exc}") from exc
        except ValueError as exc:
            raise ProviderError("provider returned a malformed response") from exc

        if not isinstance(userinfo, Mapping):
            raise ProviderError("userinfo response is not a JSON object")

        return parse_external_identity(userinfo), id_token

    async def _get_json(self, url: str, *, bearer: str | None = None) -> Mapping[str, Any]:
        headers = {"Authorization": f"Bearer {bearer}"} if bearer else {}
        try:
            async with self._http_client() as client:
                response = await client.get(url, headers=headers)
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPError as exc:
            raise ProviderError(f"GET {url} failed: {exc}") from exc
        except ValueError as exc:
            raise ProviderError(f"GET {url} returned malformed JSON") from exc

        if not isinstance(payload, Mapping):
            raise ProviderError(f"GET {url} did not return a JSON object")
        return payload

    async def fetch_identities(
        self,
        subject_id: str,
        id_token: str,
    ) -> tuple[ProviderIdentity, ...]:
        url = self.config.url(f"/api/v2/users/{quote(subject_id, safe='')}")
        payload = await self._get_json(url, bearer=id_token)
        identities = parse_provider_identities(payload.get("identities"))
        log_with_fields(
            logger,
            logging.DEBUG,
            "fetched provider identities",
            subject_id=subject_id,
            count=len(identities),
        )
        return identities

    async def fetch_jwks(self) -> Mapping[str, Any]:
        return await self._get_json(self.config.url("/.well-known/jwks.json"))

    async def send_verification_email(self, subject_id: str, id_token: str) -> None:
        url = self.config.url(f"/api/users/{quote(subject_id, safe='')}/send_verification_email")
        try:
            async with self._http_client() as client:
                response = await client.post(
                    url, headers={"Authorization": f"Bearer {id_token}"}
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ProviderError(f"verification email request failed: {exc}") from exc

    def build_logout_url(self, return_to: str, client_id: str | None) -> str:
        params: list[tuple[str, str]] = [("returnTo", return_to)]
        if client_id:
            params.append(("client_id", client_id))
        return add_params_to_uri(self.config.url("/v2/logout"), params)


def build_provider_client(config: ProviderConfig) -> ProviderClient:
    return ProviderClient(config)
