from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.responses import Response

from gatehouse.auth import get_current_user, get_current_user_id
from gatehouse.db import get_session
from gatehouse.security.audit import audit_auth_success
from gatehouse.security.audit_constants import AUTH_EVENT_LOGOUT
from gatehouse.services.login_flow import account_page
from gatehouse.session_context import RequestSessionContext
from gatehouse.sso.oidc.provider import provider_enabled
from gatehouse.web.routes.auth import dependencies
from gatehouse.web.routes.auth.oidc import router as auth_oidc_router
from gatehouse.web.routes.common import no_store

router = APIRouter()


@router.get("/login", response_class=Response)
async def login_page(request: Request, session: AsyncSession = Depends(get_session)) -> Response:
    current_user = await get_current_user(request, session)
    if current_user is not None:
        return RedirectResponse(url=account_page(current_user.id), status_code=303)

    flow = dependencies.login_flow_or_404(session)
    outcome = await flow.start_login(
        RequestSessionContext(request.session),
        dependencies.callback_url(request),
    )
    return dependencies.outcome_response(request, outcome)


@router.get("/logout", response_class=RedirectResponse)
async def logout(request: Request, session: AsyncSession = Depends(get_session)) -> Response:
    ctx = RequestSessionContext(request.session)
    if not provider_enabled():
        user_id = get_current_user_id(request)
        if user_id is not None:
            audit_auth_success(event=AUTH_EVENT_LOGOUT, actor_user_id=user_id)
        ctx.clear()
        return no_store(RedirectResponse(url="/", status_code=303))

    flow = dependencies.login_flow_or_404(session)
    outcome = flow.handle_logout(ctx, str(request.base_url))
    return dependencies.outcome_response(request, outcome)


router.include_router(auth_oidc_router)
