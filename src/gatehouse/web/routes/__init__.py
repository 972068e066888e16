from __future__ import annotations

from fastapi import APIRouter

from gatehouse.web.routes.auth import router as auth_router
from gatehouse.web.routes.pages import router as pages_router

router = APIRouter()
router.include_router(pages_router)
router.include_router(auth_router)
