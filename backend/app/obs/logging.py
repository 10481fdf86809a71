"""JSON logging with per-request context and field redaction.

Every record is rendered as one JSON object. Request scoped fields (request id,
route, user, client ip) come from context variables bound by the HTTP
middleware; anything passed through ``extra=`` is copied in after redaction.
"""

from __future__ import annotations

import json
import logging
import random
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from app.settings import settings

_LOGGER_NAME = "studenthub"

# bind_context keyword -> (context variable, key in the rendered record)
_CONTEXT: Dict[str, tuple[ContextVar[Optional[str]], str]] = {
	"request_id": (ContextVar("obs_request_id", default=None), "request_id"),
	"route": (ContextVar("obs_route", default=None), "route"),
	"user_id": (ContextVar("obs_user_id", default=None), "user_id"),
	"client_ip": (ContextVar("obs_client_ip", default=None), "ip"),
}

# Interest messages and contact details stay in the database
_REDACT_MARKERS = (
	"token",
	"secret",
	"password",
	"authorization",
	"email",
	"phone",
	"contact",
	"message",
	"body",
)
_REDACTED = "[redacted]"
_ELLIPSIS = "…"

_MAX_STRING_LENGTH = 256
_MAX_COLLECTION_ITEMS = 10

_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))) | {
	"message",
	"asctime",
	"taskName",
}


def bind_context(
	*,
	request_id: Optional[str] = None,
	route: Optional[str] = None,
	user_id: Optional[str] = None,
	client_ip: Optional[str] = None,
) -> Dict[str, Token]:
	"""Bind request fields for the current task; pass the result to `reset_context`."""
	values = {"request_id": request_id, "route": route, "user_id": user_id, "client_ip": client_ip}
	return {name: _CONTEXT[name][0].set(value) for name, value in values.items() if value is not None}


def reset_context(tokens: Dict[str, Token]) -> None:
	for name, token in tokens.items():
		_CONTEXT[name][0].reset(token)


def current_request_id() -> Optional[str]:
	return _CONTEXT["request_id"][0].get()


def _is_sensitive(key: str) -> bool:
	lowered = key.lower()
	return any(marker in lowered for marker in _REDACT_MARKERS)


def _scrub(value: Any) -> Any:
	if value is None or isinstance(value, (bool, int, float)):
		return value
	if isinstance(value, str):
		if len(value) > _MAX_STRING_LENGTH:
			return value[:_MAX_STRING_LENGTH] + _ELLIPSIS
		return value
	if isinstance(value, dict):
		scrubbed: Dict[str, Any] = {}
		for key, nested in list(value.items())[:_MAX_COLLECTION_ITEMS]:
			scrubbed[str(key)] = _REDACTED if _is_sensitive(str(key)) else _scrub(nested)
		if len(value) > _MAX_COLLECTION_ITEMS:
			scrubbed[_ELLIPSIS] = f"+{len(value) - _MAX_COLLECTION_ITEMS} keys"
		return scrubbed
	if isinstance(value, (list, tuple, set)):
		items = [_scrub(item) for item in list(value)[:_MAX_COLLECTION_ITEMS]]
		if len(value) > _MAX_COLLECTION_ITEMS:
			items.append(_ELLIPSIS)
		return items
	return str(value)


class JSONLogFormatter(logging.Formatter):
	"""Render a record as a single-line JSON object."""

	def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (match logging api)
		payload: Dict[str, Any] = {
			"ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
			"level": record.levelname.lower(),
			"msg": record.getMessage(),
			"logger": record.name,
			"service": settings.service_name,
			"env": settings.environment,
			"commit": settings.git_commit,
		}
		for var, field in _CONTEXT.values():
			value = var.get()
			if value:
				payload[field] = value
		if record.exc_info:
			payload["exc_info"] = self.formatException(record.exc_info)
		for key, value in record.__dict__.items():
			if key in _RECORD_ATTRS or key in payload:
				continue
			payload[key] = _REDACTED if _is_sensitive(key) else _scrub(value)
		return json.dumps(payload, separators=(",", ":"), default=str)


class InfoSamplingFilter(logging.Filter):
	"""Keep a sample of info records; other levels always pass."""

	def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
		if record.levelno != logging.INFO:
			return True
		rate = min(1.0, max(0.0, settings.obs_log_sampling_rate_info))
		return rate >= 1.0 or random.random() < rate


def configure_logging() -> logging.Logger:
	handler = logging.StreamHandler()
	handler.setFormatter(JSONLogFormatter())
	handler.addFilter(InfoSamplingFilter())
	root = logging.getLogger()
	root.handlers[:] = [handler]
	root.setLevel(settings.obs_log_level)
	return logging.getLogger(_LOGGER_NAME)


def get_logger(name: Optional[str] = None) -> logging.Logger:
	return logging.getLogger(name or _LOGGER_NAME)
