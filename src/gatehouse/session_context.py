"""Request-scoped access to the browser session.

Everything the login flow keeps between requests goes through a
``SessionContext`` handed down by the route, never through ambient state.
"""

from __future__ import annotations

import secrets
from collections.abc import MutableMapping
from typing import Any, Protocol

SESSION_KEY = "gh_sid"
USER_ID_KEY = "user_id"
FLASH_KEY = "flash"


class SessionContext(Protocol):
    def is_started(self) -> bool: ...

    def start(self) -> str: ...

    @property
    def session_key(self) -> str | None: ...

    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def pop(self, key: str) -> Any: ...

    def clear(self) -> None: ...


class RequestSessionContext:
    """Adapts Starlette's cookie session (``request.session``)."""

    def __init__(self, data: MutableMapping[str, Any]) -> None:
        self._data = data

    def is_started(self) -> bool:
        return bool(self._data.get(SESSION_KEY))

    def start(self) -> str:
        existing = self._data.get(SESSION_KEY)
        if existing:
            return str(existing)
        key = secrets.token_urlsafe(32)
        self._data[SESSION_KEY] = key
        return key

    @property
    def session_key(self) -> str | None:
        raw = self._data.get(SESSION_KEY)
        return str(raw) if raw else None

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def pop(self, key: str) -> Any:
        return self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()


def flash(ctx: SessionContext, message: str, level: str = "info") -> None:
    messages = list(ctx.get(FLASH_KEY) or [])
    messages.append({"level": level, "message": message})
    ctx.set(FLASH_KEY, messages)


def pop_flashes(ctx: SessionContext) -> list[dict[str, str]]:
    messages = ctx.pop(FLASH_KEY)
    if not isinstance(messages, list):
        return []
    return [m for m in messages if isinstance(m, dict)]
