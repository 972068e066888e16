from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace


@dataclass(frozen=True)
class ProviderIdentity:
    """One upstream connection of a provider account (social, enterprise, database)."""

    provider: str
    connection: str = ""
    user_id: str = ""
    is_social: bool = False


@dataclass(frozen=True)
class ExternalIdentity:
    subject_id: str
    email: str | None
    email_verified: bool
    nickname: str
    display_name: str
    # None means the provider profile did not include the identities list.
    identities: tuple[ProviderIdentity, ...] | None = None
    claims: Mapping[str, object] = field(default_factory=dict)

    def with_identities(self, identities: Iterable[ProviderIdentity]) -> ExternalIdentity:
        return replace(self, identities=tuple(identities))

    def has_provider(self, provider_names: Iterable[str]) -> bool:
        if not self.identities:
            return False
        wanted = {name.strip().lower() for name in provider_names}
        return any(identity.provider.strip().lower() in wanted for identity in self.identities)

    def as_profile(self) -> dict[str, object]:
        profile: dict[str, object] = dict(self.claims)
        profile["sub"] = self.subject_id
        profile["user_id"] = self.subject_id
        profile["email"] = self.email
        profile["email_verified"] = self.email_verified
        profile["nickname"] = self.nickname
        profile["name"] = self.display_name
        if self.identities is not None:
            profile["identities"] = [
                {
                    "provider": identity.provider,
                    "connection": identity.connection,
                    "user_id": identity.user_id,
                    "isSocial": identity.is_social,
                }
                for identity in self.identities
            ]
        return profile


def _claim_is_truthy(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes", "on"}
    if isinstance(value, int):
        return value != 0
    return False


def _claim_str(userinfo: Mapping[str, object], key: str) -> str:
    value = userinfo.get(key)
    if value is None:
        return ""
    return str(value).strip()


def parse_provider_identities(raw: object) -> tuple[ProviderIdentity, ...]:
    if not isinstance(raw, list):
        return ()
    identities: list[ProviderIdentity] = []
    for item in raw:
        if not isinstance(item, Mapping):
            continue
        identities.append(
            ProviderIdentity(
                provider=_claim_str(item, "provider"),
                connection=_claim_str(item, "connection"),
                user_id=_claim_str(item, "user_id"),
                is_social=_claim_is_truthy(item.get("isSocial")),
            )
        )
    return tuple(identities)


def parse_external_identity(userinfo: Mapping[str, object]) -> ExternalIdentity:
    # Older profile responses carry the subject as `user_id` only.
    subject_id = _claim_str(userinfo, "sub") or _claim_str(userinfo, "user_id")
    email = _claim_str(userinfo, "email").lower() or None
    display_name = _claim_str(userinfo, "name")

    nickname = _claim_str(userinfo, "nickname") or display_name
    if not nickname and email:
        nickname = email.split("@", 1)[0]
    if not nickname:
        nickname = "user"

    identities: tuple[ProviderIdentity, ...] | None = None
    if "identities" in userinfo:
        identities = parse_provider_identities(userinfo.get("identities"))

    return ExternalIdentity(
        subject_id=subject_id,
        email=email,
        email_verified=_claim_is_truthy(userinfo.get("email_verified")),
        nickname=nickname,
        display_name=display_name or nickname,
        identities=identities,
        claims=dict(userinfo),
    )
