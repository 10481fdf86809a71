from __future__ import annotations

import pytest

from app.obs import health
from app.settings import settings


@pytest.mark.asyncio
async def test_liveness_reports_service(api_client):
	response = await api_client.get("/health/live")
	assert response.status_code == 200
	assert response.json() == {"status": "ok", "service": settings.service_name}
	assert response.headers.get("X-Request-Id")


@pytest.mark.asyncio
async def test_request_id_is_echoed(api_client):
	response = await api_client.get("/health/live", headers={"X-Request-Id": "req-abc"})
	assert response.headers["X-Request-Id"] == "req-abc"


@pytest.mark.asyncio
async def test_readiness_degrades_when_a_dependency_fails(api_client, monkeypatch):
	async def _pg_ok():
		return {"ok": True, "latency_ms": 1.0}, object()

	async def _migrations(pool, min_version):
		return {"ok": False, "version": "0000", "required": min_version}

	monkeypatch.setattr(health, "_postgres_status", _pg_ok)
	monkeypatch.setattr(health, "_migration_status", _migrations)

	response = await api_client.get("/health/ready")
	assert response.status_code == 503
	body = response.json()
	assert body["status"] == "degraded"
	assert body["checks"]["redis"]["ok"] is True
	assert body["checks"]["migrations"]["required"] == settings.health_min_migration


@pytest.mark.asyncio
async def test_readiness_ok_when_all_checks_pass(api_client, monkeypatch):
	async def _pg_ok():
		return {"ok": True, "latency_ms": 1.0}, object()

	async def _migrations(pool, min_version):
		return {"ok": True, "version": "0001", "required": min_version}

	monkeypatch.setattr(health, "_postgres_status", _pg_ok)
	monkeypatch.setattr(health, "_migration_status", _migrations)

	response = await api_client.get("/health/ready")
	assert response.status_code == 200
	assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_metrics_fail_closed_without_token(api_client, monkeypatch):
	monkeypatch.setattr(settings, "obs_metrics_public", False)
	monkeypatch.setattr(settings, "obs_admin_token", None)

	response = await api_client.get("/metrics")
	assert response.status_code == 403
	assert response.json()["detail"] == "admin_token_not_configured"


@pytest.mark.asyncio
async def test_metrics_require_matching_token(api_client, monkeypatch):
	monkeypatch.setattr(settings, "obs_metrics_public", False)
	monkeypatch.setattr(settings, "obs_admin_token", "secret-token")

	wrong = await api_client.get("/metrics", headers={"X-Admin-Token": "nope"})
	assert wrong.status_code == 403
	assert wrong.json()["detail"] == "forbidden"

	response = await api_client.get("/metrics", headers={"Authorization": "Bearer secret-token"})
	assert response.status_code == 200
	assert "studenthub_http_requests_total" in response.text
