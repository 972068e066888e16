from __future__ import annotations

from urllib.parse import parse_qs, urlsplit

import pytest
from httpx import AsyncClient, Response

from gatehouse import events
from gatehouse.web.routes.auth import dependencies
from tests.fake_tenant import FakeTenant, RecordingEventSink, provider_env


def query_of(url: str) -> dict[str, list[str]]:
    return parse_qs(urlsplit(url).query)


def install_tenant(
    monkeypatch: pytest.MonkeyPatch,
    tenant: FakeTenant,
    **env: str,
) -> RecordingEventSink:
    provider_env(monkeypatch, **env)
    sink = RecordingEventSink()
    monkeypatch.setattr(dependencies, "get_provider_client", tenant.client)
    monkeypatch.setattr(events, "get_event_sink", lambda: sink)
    return sink


async def start_authorize(client: AsyncClient) -> str:
    response = await client.get("/auth/authorize", follow_redirects=False)
    assert response.status_code == 303
    return query_of(response.headers["location"])["state"][0]


async def complete_login(
    client: AsyncClient,
    *,
    state: str | None = None,
    **params: str,
) -> Response:
    selected_state = state if state is not None else await start_authorize(client)
    return await client.get(
        "/auth/callback",
        params={"code": "code-123", "state": selected_state, **params},
        follow_redirects=False,
    )
