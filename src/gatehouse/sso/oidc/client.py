from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

from gatehouse.sso.oidc.flow import ExternalIdentity, ProviderIdentity


class IdentityProviderClient(Protocol):
    def build_authorization_url(
        self,
        *,
        state: str,
        redirect_uri: str,
        prompt: str | None = None,
    ) -> str: ...

    async def exchange_code_and_fetch_user(
        self,
        code: str,
        *,
        redirect_uri: str,
    ) -> tuple[ExternalIdentity, str]: ...

    async def fetch_identities(
        self,
        subject_id: str,
        id_token: str,
    ) -> tuple[ProviderIdentity, ...]: ...

    async def fetch_jwks(self) -> Mapping[str, Any]: ...

    async def send_verification_email(self, subject_id: str, id_token: str) -> None: ...

    def build_logout_url(self, return_to: str, client_id: str | None) -> str: ...
