from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI
from starlette.middleware.sessions import SessionMiddleware
from starlette.requests import Request
from starlette.responses import Response

import gatehouse.db as db
from gatehouse.db.models import Base
from gatehouse.logging_config import (
    configure_logging,
    log_with_fields,
    reset_request_id,
    set_request_id,
)
from gatehouse.settings import Settings, get_settings
from gatehouse.web.routes import router as web_router

logger = logging.getLogger("gatehouse.http")

REQUEST_ID_HEADER = "X-Request-ID"


def _request_id(request: Request) -> str:
    return (request.headers.get(REQUEST_ID_HEADER) or "").strip() or uuid4().hex


def _log_request(
    level: int,
    message: str,
    request: Request,
    started: float,
    **fields: object,
) -> None:
    # Path only: callback query strings carry the code and state.
    log_with_fields(
        logger,
        level,
        message,
        method=request.method,
        path=request.url.path,
        duration_ms=f"{(perf_counter() - started) * 1000:.2f}",
        **fields,
    )


def _session_middleware_options(settings: Settings) -> dict[str, object]:
    return {
        "secret_key": settings.session_secret.get_secret_value(),
        "session_cookie": settings.session_cookie_name,
        "max_age": settings.session_cookie_max_age_seconds,
        "same_site": settings.session_cookie_same_site,
        "https_only": settings.session_cookie_https_only,
    }


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if settings.auto_create_db:
            async with db.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        yield

    app = FastAPI(title="Gatehouse", lifespan=lifespan)

    @app.middleware("http")
    async def request_context_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = _request_id(request)
        token = set_request_id(request_id)
        started = perf_counter()
        try:
            response = await call_next(request)
            if settings.log_http_requests:
                _log_request(
                    logging.INFO,
                    "request complete",
                    request,
                    started,
                    status_code=response.status_code,
                )
        except Exception:
            if settings.log_http_requests:
                _log_request(logging.ERROR, "request failed", request, started, exc_info=True)
            raise
        finally:
            reset_request_id(token)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    app.add_middleware(SessionMiddleware, **_session_middleware_options(settings))
    app.include_router(web_router)
    return app


app = create_app()
