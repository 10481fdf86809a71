"""FastAPI routers for the Find My Group workflow."""

from __future__ import annotations

from fastapi import APIRouter

from app.find_my_group.api import admin, groups, interests, posts

router = APIRouter(prefix="/api/find-my-group/v1")

router.include_router(posts.router)
router.include_router(interests.router)
router.include_router(groups.router)
router.include_router(admin.router)

__all__ = ["router"]
