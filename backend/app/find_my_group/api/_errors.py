"""Error translation helpers for the Find My Group API."""

from __future__ import annotations

from fastapi import HTTPException, status

from app.find_my_group.domain import exceptions
from app.infra.rate_limit import RateLimitExceeded


def to_http_error(exc: Exception) -> HTTPException:
	"""Translate domain exceptions to FastAPI HTTP errors.

	Errors carrying context (current status, member counts) are returned as
	`{"code": ..., **context}` so clients can refresh their view.
	"""
	if isinstance(exc, HTTPException):
		return exc
	if isinstance(exc, exceptions.GroupFormationError):
		detail: object = exc.detail
		if exc.context:
			detail = {"code": exc.detail, **exc.context}
		return HTTPException(status_code=exc.status_code, detail=detail)
	if isinstance(exc, RateLimitExceeded):
		return HTTPException(
			status_code=status.HTTP_429_TOO_MANY_REQUESTS,
			detail="rate_limited",
			headers={"Retry-After": str(exc.retry_after)},
		)
	raise exc
