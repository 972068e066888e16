from __future__ import annotations

from typing import Any, Literal

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="GATEHOUSE_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    database_url: str = "sqlite+aiosqlite:///./gatehouse.db"

    # For local development
    auto_create_db: bool = False

    # Session cookie. In production, override via env.
    session_secret: SecretStr = SecretStr("dev-insecure-change-me")
    session_cookie_name: str = "gatehouse_session"
    # A form_post callback is a cross-site POST; the cookie only rides along with
    # same_site="none", which browsers accept only together with https_only.
    session_cookie_same_site: Literal["lax", "strict", "none"] = "lax"
    session_cookie_https_only: bool = False
    session_cookie_max_age_seconds: int = 60 * 60 * 24 * 14

    log_level: str = "INFO"
    log_json: bool = False
    log_http_requests: bool = True

    # Identity provider tenant. The custom domain, when set, is used for every
    # browser-facing and API URL as well as the expected token issuer.
    oidc_domain: str | None = None
    oidc_custom_domain: str | None = None
    oidc_client_id: str | None = None
    oidc_client_secret: SecretStr | None = None
    # Accepted ID token algorithms, comma separated (e.g. "RS256" or "HS256").
    oidc_jwt_signature_alg: str = "RS256"
    oidc_secret_base64_encoded: bool = False
    # Clock skew allowed when checking exp/nbf/iat. Unset uses the module default.
    oidc_jwt_leeway_seconds: int | None = None
    # Skip the local login page and try a silent (prompt=none) provider login.
    oidc_redirect_for_sso: bool = False
    oidc_requires_verified_email: bool = False
    # Identity "provider" values that mark a provider-native (database) credential.
    oidc_native_providers: list[str] = ["auth0", "database"]
    oidc_http_timeout_seconds: float = 10.0
    oidc_debug_logging: bool = False

    # Hosted login widget
    login_css: str | None = None
    lock_extra_settings: dict[str, Any] | None = None
    allow_signup: bool = True

    # Outstanding login nonces per browser session
    nonce_ttl_seconds: int = 60 * 60
    nonce_max_outstanding: int = 20

    @model_validator(mode="after")
    def _same_site_none_requires_https(self) -> Settings:
        if self.session_cookie_same_site == "none" and not self.session_cookie_https_only:
            raise ValueError("session_cookie_same_site=none requires session_cookie_https_only")
        return self


def get_settings() -> Settings:
    return Settings()
