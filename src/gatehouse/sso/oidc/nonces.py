from __future__ import annotations

import base64
import logging
import secrets
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.db.models import LoginNonce, utcnow
from gatehouse.logging_config import log_with_fields
from gatehouse.session_context import SessionContext

logger = logging.getLogger("gatehouse.sso.nonces")

NONCE_ENTROPY_BYTES = 32


def generate_nonce() -> str:
    return base64.b64encode(secrets.token_bytes(NONCE_ENTROPY_BYTES)).decode("ascii")


class NonceStore:
    """Single-use ``state`` values, scoped to one browser session.

    A session may hold several outstanding nonces (one per login tab).
    Consumption is a single conditional DELETE, so of two requests racing on
    the same value exactly one sees the row go away.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        ttl_seconds: int,
        max_outstanding: int,
    ) -> None:
        self.session = session
        self.ttl = timedelta(seconds=max(1, ttl_seconds))
        self.max_outstanding = max(1, max_outstanding)

    def _cutoff(self, now: datetime) -> datetime:
        return now - self.ttl

    async def issue(self, ctx: SessionContext) -> str:
        session_key = ctx.start()
        now = utcnow()

        await self.session.execute(
            delete(LoginNonce)
            .where(
                LoginNonce.session_key == session_key,
                LoginNonce.issued_at < self._cutoff(now),
            )
            .execution_options(synchronize_session=False)
        )
        await self._trim_outstanding(session_key)

        value = generate_nonce()
        self.session.add(LoginNonce(session_key=session_key, value=value, issued_at=now))
        await self.session.commit()
        return value

    async def _trim_outstanding(self, session_key: str) -> None:
        # Leave room for the nonce about to be issued.
        keep = self.max_outstanding - 1
        result = await self.session.execute(
            select(LoginNonce.id)
            .where(LoginNonce.session_key == session_key)
            .order_by(LoginNonce.issued_at.desc(), LoginNonce.id.desc())
            .offset(keep)
        )
        stale_ids = list(result.scalars().all())
        if not stale_ids:
            return
        await self.session.execute(
            delete(LoginNonce)
            .where(LoginNonce.id.in_(stale_ids))
            .execution_options(synchronize_session=False)
        )

    async def outstanding(self, ctx: SessionContext) -> list[str]:
        session_key = ctx.session_key
        if session_key is None:
            return []
        result = await self.session.execute(
            select(LoginNonce.value)
            .where(
                LoginNonce.session_key == session_key,
                LoginNonce.issued_at >= self._cutoff(utcnow()),
            )
            .order_by(LoginNonce.issued_at.asc(), LoginNonce.id.asc())
        )
        return list(result.scalars().all())

    async def consume(self, ctx: SessionContext, candidate: str | None) -> bool:
        session_key = ctx.session_key
        if session_key is None:
            logger.error("Couldn't verify state because the session holds no nonces")
            return False
        if not candidate:
            logger.error("Couldn't verify state because the callback carried none")
            return False

        result = await self.session.execute(
            delete(LoginNonce)
            .where(
                LoginNonce.session_key == session_key,
                LoginNonce.value == candidate,
                LoginNonce.issued_at >= self._cutoff(utcnow()),
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        if result.rowcount == 1:
            return True

        log_with_fields(
            logger,
            logging.ERROR,
            "state not found among outstanding nonces",
            state=candidate,
            outstanding=len(await self.outstanding(ctx)),
        )
        return False

    async def prune_expired(self) -> int:
        result = await self.session.execute(
            delete(LoginNonce)
            .where(LoginNonce.issued_at < self._cutoff(utcnow()))
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return int(result.rowcount or 0)
