"""FastAPI application entrypoint for the Find My Group service."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import ops
from app.api.errors import install_error_handlers
from app.api.middleware_request_id import RequestIdMiddleware
from app.find_my_group import router as find_my_group_router
from app.infra import postgres
from app.infra.redis import close_redis
from app.obs import init as obs_init
from app.settings import settings

_DEV_ORIGINS = ["http://localhost:5173", "http://127.0.0.1:5173"]


@asynccontextmanager
async def lifespan(app: FastAPI):
	await postgres.init_pool()
	try:
		yield
	finally:
		await postgres.close_pool()
		await close_redis()


def _cors_origins() -> list[str]:
	"""Configured origins; the Vite dev server in dev, nothing elsewhere.

	Credentials are allowed, so a wildcard is never passed through.
	"""
	origins = [origin for origin in settings.cors_allow_origins if origin != "*"]
	if origins:
		return origins
	return list(_DEV_ORIGINS) if settings.is_dev() else []


def create_app() -> FastAPI:
	application = FastAPI(title="Student Hub Find My Group", lifespan=lifespan)
	install_error_handlers(application)
	application.add_middleware(
		CORSMiddleware,
		allow_origins=_cors_origins(),
		allow_credentials=True,
		allow_methods=["*"],
		allow_headers=["*"],
	)
	obs_init(application)
	# added last so it runs first and the id is on request.state for everything below
	application.add_middleware(RequestIdMiddleware)
	application.include_router(ops.router)
	application.include_router(find_my_group_router)
	return application


app = create_app()
