from __future__ import annotations

from gatehouse.web.routes.auth.dependencies import (
    get_provider_client,
    login_flow_or_404,
    outcome_response,
)
from gatehouse.web.routes.auth.router import router

__all__ = [
    "get_provider_client",
    "login_flow_or_404",
    "outcome_response",
    "router",
]
