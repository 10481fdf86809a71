"""Observability bootstrap: structured logging plus request metrics middleware."""

from __future__ import annotations

from fastapi import FastAPI

from app.obs import logging as obs_logging
from app.obs import middleware
from app.settings import settings

_initialised = False


def init(app: FastAPI) -> None:
	"""Install logging and HTTP middleware once per process; no-op when OBS_ENABLED is off."""
	global _initialised
	if _initialised or not settings.obs_enabled:
		return
	obs_logging.configure_logging()
	middleware.install(app)
	_initialised = True
	obs_logging.get_logger("app.obs").info(
		"observability_initialised",
		extra={
			"event": "observability_initialised",
			"environment": settings.environment,
			"metrics_public": settings.obs_metrics_public,
		},
	)


__all__ = ["init"]
