from __future__ import annotations

import logging

from fastapi import HTTPException, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.responses import Response

from gatehouse import events
from gatehouse.services.login_flow import (
    FlowOutcome,
    LoginFlowController,
    Redirect,
    RenderLogin,
    VerifyEmailRequired,
)
from gatehouse.settings import get_settings
from gatehouse.sso.oidc.client import IdentityProviderClient
from gatehouse.sso.oidc.provider import ProviderConfig, build_provider_client, get_provider_config
from gatehouse.web.routes.common import no_store, templates

logger = logging.getLogger("gatehouse.web.auth")


def get_provider_client(config: ProviderConfig) -> IdentityProviderClient:
    return build_provider_client(config)


def login_flow_or_404(session: AsyncSession) -> LoginFlowController:
    settings = get_settings()
    config = get_provider_config()
    if config is None:
        if settings.oidc_debug_logging:
            logger.info("login aborted: identity provider is not configured")
        raise HTTPException(status_code=404)

    return LoginFlowController(
        session,
        settings=settings,
        config=config,
        provider=get_provider_client(config),
        events=events.get_event_sink(),
    )


def callback_url(request: Request) -> str:
    return str(request.url_for("oidc_callback"))


def outcome_response(request: Request, outcome: FlowOutcome) -> Response:
    match outcome:
        case Redirect(url=url, status_code=status_code):
            response: Response = RedirectResponse(url=url, status_code=status_code)
        case RenderLogin(widget=widget):
            response = templates.TemplateResponse(
                request,
                "login.html",
                {"current_user": None, "widget": dict(widget)},
            )
        case VerifyEmailRequired(id_token=id_token, email=email):
            response = templates.TemplateResponse(
                request,
                "verify_email.html",
                {"current_user": None, "id_token": id_token, "email": email},
                status_code=403,
            )
    return no_store(response)
