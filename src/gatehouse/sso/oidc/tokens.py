from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Mapping
from typing import Any

from authlib.jose import JsonWebKey, JsonWebToken, KeySet
from authlib.jose.errors import JoseError

from gatehouse.sso.oidc.errors import TokenValidationError
from gatehouse.sso.oidc.provider import ProviderConfig

logger = logging.getLogger("gatehouse.sso.tokens")

_HMAC_PREFIX = "HS"


def decode_base64_secret(secret: str) -> bytes:
    padded = secret + "=" * (-len(secret) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise TokenValidationError("client secret is flagged base64 but does not decode") from exc


class TokenValidator:
    """Verifies provider ID tokens.

    Only the configured algorithms are accepted. HMAC algorithms are checked
    against the client secret and asymmetric ones against the provider JWKS,
    so a token can never get its public key used as an HMAC secret.
    """

    def __init__(
        self,
        *,
        issuer: str,
        audience: str,
        algorithms: tuple[str, ...],
        client_secret: str | None = None,
        secret_base64_encoded: bool = False,
        jwks: Mapping[str, Any] | None = None,
        leeway_seconds: int = 0,
    ) -> None:
        if not algorithms:
            raise ValueError("at least one signing algorithm is required")
        self.issuer = issuer
        self.audience = audience
        self.algorithms = algorithms
        self.leeway_seconds = leeway_seconds
        self._jwt = JsonWebToken(list(algorithms))
        self._client_secret = client_secret
        self._secret_base64_encoded = secret_base64_encoded
        self._key_set: KeySet | None = (
            JsonWebKey.import_key_set(dict(jwks)) if jwks is not None else None
        )

    @classmethod
    def from_config(
        cls,
        config: ProviderConfig,
        *,
        jwks: Mapping[str, Any] | None = None,
    ) -> TokenValidator:
        return cls(
            issuer=config.issuer,
            audience=config.client_id,
            algorithms=config.algorithms,
            client_secret=config.client_secret,
            secret_base64_encoded=config.secret_base64_encoded,
            jwks=jwks,
            leeway_seconds=config.leeway_seconds,
        )

    @staticmethod
    def needs_jwks(algorithms: tuple[str, ...]) -> bool:
        return any(not alg.upper().startswith(_HMAC_PREFIX) for alg in algorithms)

    def _resolve_key(self, header: Mapping[str, Any], payload: object) -> Any:
        alg = str(header.get("alg", ""))
        if alg.upper().startswith(_HMAC_PREFIX):
            if not self._client_secret:
                raise TokenValidationError("no client secret configured for HMAC tokens")
            if self._secret_base64_encoded:
                return decode_base64_secret(self._client_secret)
            return self._client_secret.encode("utf-8")

        if self._key_set is None:
            raise TokenValidationError(f"no signing keys available for {alg} tokens")
        return self._key_set.find_by_kid(header.get("kid"))

    def verify(self, id_token: str) -> dict[str, Any]:
        if not id_token or id_token.count(".") != 2:
            raise TokenValidationError("malformed token")

        claims_options = {
            "iss": {"essential": True, "value": self.issuer},
            "aud": {"essential": True, "value": self.audience},
            "sub": {"essential": True},
            "exp": {"essential": True},
        }
        try:
            claims = self._jwt.decode(
                id_token,
                key=self._resolve_key,
                claims_options=claims_options,
            )
            claims.validate(leeway=self.leeway_seconds)
        except JoseError as exc:
            raise TokenValidationError(f"{exc.error}: {exc.description or ''}".strip()) from exc
        except ValueError as exc:
            raise TokenValidationError(f"token could not be decoded: {exc}") from exc

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise TokenValidationError("token has an empty subject")
        return dict(claims)
