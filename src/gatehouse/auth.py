from __future__ import annotations

import secrets
import uuid

from argon2 import PasswordHasher
from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.db import get_session
from gatehouse.db.models import User, utcnow
from gatehouse.security.audit import audit_auth_success
from gatehouse.security.audit_constants import AUTH_EVENT_LOGIN
from gatehouse.session_context import USER_ID_KEY, RequestSessionContext, SessionContext

_password_hasher = PasswordHasher()

GENERATED_PASSWORD_LENGTH = 16


def hash_password(password: str) -> str:
    return _password_hasher.hash(password)


def generate_password(length: int = GENERATED_PASSWORD_LENGTH) -> str:
    return secrets.token_urlsafe(length)[:length]


def finalize_login(ctx: SessionContext, user: User) -> None:
    ctx.set(USER_ID_KEY, str(user.id))
    ctx.set("authenticated_at", utcnow().isoformat())
    audit_auth_success(event=AUTH_EVENT_LOGIN, actor=user)


def discard_login(ctx: SessionContext) -> None:
    ctx.pop(USER_ID_KEY)
    ctx.pop("authenticated_at")


def get_current_user_id_from(ctx: SessionContext) -> uuid.UUID | None:
    raw = ctx.get(USER_ID_KEY)
    if raw is None:
        return None

    try:
        return uuid.UUID(str(raw))
    except ValueError:
        return None


def get_current_user_id(request: Request) -> uuid.UUID | None:
    return get_current_user_id_from(RequestSessionContext(request.session))


async def get_current_user(request: Request, session: AsyncSession) -> User | None:
    user_id = get_current_user_id(request)
    if user_id is None:
        return None

    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None or not user.is_active:
        return None
    return user


async def require_user(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> User:
    user = await get_current_user(request, session)
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user
