from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.responses import Response

from gatehouse.auth import get_current_user, require_user
from gatehouse.db import get_session
from gatehouse.db.models import User
from gatehouse.session_context import RequestSessionContext, pop_flashes
from gatehouse.sso.oidc.provider import provider_enabled
from gatehouse.web.routes.common import templates

router = APIRouter()


@router.get("/", response_class=HTMLResponse)
async def home(request: Request, session: AsyncSession = Depends(get_session)) -> Response:
    current_user = await get_current_user(request, session)
    return templates.TemplateResponse(
        request,
        "home.html",
        {
            "current_user": current_user,
            "flashes": pop_flashes(RequestSessionContext(request.session)),
            "provider_enabled": provider_enabled(),
        },
    )


@router.get("/users/{user_id}", response_class=HTMLResponse)
async def account_page(
    request: Request,
    user_id: uuid.UUID,
    current_user: User = Depends(require_user),
) -> Response:
    # Accounts are only visible to their owner.
    if current_user.id != user_id:
        raise HTTPException(status_code=404)

    return templates.TemplateResponse(
        request,
        "user.html",
        {
            "current_user": current_user,
            "user": current_user,
            "flashes": pop_flashes(RequestSessionContext(request.session)),
        },
    )
