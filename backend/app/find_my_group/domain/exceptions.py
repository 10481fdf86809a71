"""Custom exceptions for the group formation workflow."""

from __future__ import annotations

from typing import Any

from fastapi import status

if hasattr(status, "HTTP_422_UNPROCESSABLE_CONTENT"):
	_HTTP_422 = status.HTTP_422_UNPROCESSABLE_CONTENT
else:  # pragma: no cover - older Starlette builds
	_HTTP_422 = status.HTTP_422_UNPROCESSABLE_ENTITY


class GroupFormationError(Exception):
	"""Base class for workflow errors.

	`context` carries the current state the caller needs to refresh its view,
	e.g. the post status or the group's member count.
	"""

	status_code: int = status.HTTP_400_BAD_REQUEST
	detail: str = "group_formation_error"

	def __init__(self, detail: str | None = None, **context: Any) -> None:
		super().__init__(detail or self.detail)
		if detail:
			self.detail = detail
		self.context: dict[str, Any] = context


class NotFoundError(GroupFormationError):
	"""Referenced post, group, or interest does not exist."""

	status_code = status.HTTP_404_NOT_FOUND
	detail = "not_found"


class ForbiddenError(GroupFormationError):
	"""Caller lacks the required relationship to the target entity."""

	status_code = status.HTTP_403_FORBIDDEN
	detail = "forbidden"


class InvalidOperationError(ForbiddenError):
	"""Creator acting on their own post where only others may act."""

	detail = "invalid_operation"


class InvalidStateError(GroupFormationError):
	"""Entity status is incompatible with the requested transition."""

	status_code = status.HTTP_409_CONFLICT
	detail = "invalid_state"


class AlreadyExpressedError(GroupFormationError):
	"""The caller already has an interest expression on this post."""

	status_code = status.HTTP_409_CONFLICT
	detail = "already_expressed"


class CapacityExceededError(GroupFormationError):
	"""An admission batch would push the group past max_members."""

	status_code = status.HTTP_409_CONFLICT
	detail = "capacity_exceeded"


class ValidationError(GroupFormationError):
	"""Raised for validation errors not covered by FastAPI schema validation."""

	status_code = _HTTP_422
	detail = "validation_error"



class InvalidIdentifierError(GroupFormationError):
	"""The authenticated identity does not carry a usable user id."""

	status_code = status.HTTP_400_BAD_REQUEST
	detail = "invalid_identifier"
