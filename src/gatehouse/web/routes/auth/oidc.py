from __future__ import annotations

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.responses import Response

from gatehouse.db import get_session
from gatehouse.session_context import RequestSessionContext
from gatehouse.web.routes.auth import dependencies

router = APIRouter()


async def _callback_params(request: Request) -> dict[str, str]:
    params = {key: value for key, value in request.query_params.items()}
    if request.method == "POST":
        # response_mode=form_post delivers code and state in the body. Browsers
        # send the session cookie on that cross-site POST only when it is
        # configured with same_site="none" and https_only.
        form = await request.form()
        params.update({key: value for key, value in form.items() if isinstance(value, str)})
    return params


@router.get("/auth/authorize", response_class=RedirectResponse)
async def authorize(request: Request, session: AsyncSession = Depends(get_session)) -> Response:
    flow = dependencies.login_flow_or_404(session)
    outcome = await flow.authorize(
        RequestSessionContext(request.session),
        dependencies.callback_url(request),
    )
    return dependencies.outcome_response(request, outcome)


@router.api_route("/auth/callback", methods=["GET", "POST"], name="oidc_callback")
async def oidc_callback(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> Response:
    flow = dependencies.login_flow_or_404(session)
    params = await _callback_params(request)
    outcome = await flow.handle_callback(
        RequestSessionContext(request.session),
        params,
        redirect_uri=dependencies.callback_url(request),
        destination=params.get("destination"),
    )
    return dependencies.outcome_response(request, outcome)


@router.post("/auth/verify-email", response_class=RedirectResponse)
async def resend_verification_email(
    request: Request,
    id_token: str = Form("", alias="idToken"),
    session: AsyncSession = Depends(get_session),
) -> Response:
    flow = dependencies.login_flow_or_404(session)
    outcome = await flow.resend_verification_email(RequestSessionContext(request.session), id_token)
    return dependencies.outcome_response(request, outcome)
