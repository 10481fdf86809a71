"""HTTP middleware that times each request and writes an access log line."""

from __future__ import annotations

import time
from typing import Optional
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from app.api.request_id import REQUEST_ID_ATTR, REQUEST_ID_HEADER
from app.obs import logging as obs_logging
from app.obs import metrics
from app.settings import settings

_ACCESS_LOGGER = "studenthub.http"


def _route_template(request: Request) -> str:
	"""Matched route path (``/posts/{post_id}``) so metric labels stay bounded."""
	route = request.scope.get("route")
	path = getattr(route, "path", None)
	return path or request.url.path


def _request_id(request: Request) -> str:
	existing = getattr(request.state, REQUEST_ID_ATTR, None)
	rid = existing or request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
	setattr(request.state, REQUEST_ID_ATTR, rid)
	return rid


class ObservabilityMiddleware(BaseHTTPMiddleware):
	def __init__(self, app, *, enabled: bool = True) -> None:
		super().__init__(app)
		self._enabled = enabled
		self._logger = obs_logging.get_logger(_ACCESS_LOGGER)

	async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
		if not (self._enabled and settings.obs_enabled):
			return await call_next(request)

		rid = _request_id(request)
		tokens = obs_logging.bind_context(
			request_id=rid,
			route=request.url.path,
			user_id=request.headers.get("X-User-Id"),
			client_ip=request.client.host if request.client else None,
		)
		started = time.perf_counter()
		response: Optional[Response] = None
		try:
			response = await call_next(request)
		except Exception:
			self._logger.exception("http_request_error", extra={"method": request.method, "path": request.url.path})
			raise
		finally:
			self._record(request, response, time.perf_counter() - started)
			obs_logging.reset_context(tokens)

		response.headers.setdefault(REQUEST_ID_HEADER, rid)
		return response

	def _record(self, request: Request, response: Optional[Response], elapsed: float) -> None:
		status_code = response.status_code if response is not None else 500
		template = _route_template(request)
		metrics.observe_request(template, request.method, status_code, elapsed)
		self._logger.info(
			"http_request",
			extra={
				"method": request.method,
				"route_template": template,
				"status": status_code,
				"latency_ms": round(elapsed * 1000, 3),
			},
		)


def install(app, *, enabled: bool = True) -> None:
	app.add_middleware(ObservabilityMiddleware, enabled=enabled)
