import pytest

from contribrank.infra import postgres
from contribrank.settings import settings


@pytest.mark.asyncio
async def test_liveness(api_client):
	response = await api_client.get("/health/live")
	assert response.status_code == 200
	assert response.json() == {"status": "ok"}
	assert response.headers.get("X-Request-Id")


@pytest.mark.asyncio
async def test_readiness_degrades_when_postgres_is_down(api_client, monkeypatch):
	async def _no_pool():
		raise RuntimeError("postgres unavailable")

	monkeypatch.setattr(postgres, "get_pool", _no_pool)

	response = await api_client.get("/health/ready")

	assert response.status_code == 503
	body = response.json()
	assert body["status"] == "degraded"
	assert body["checks"]["redis"]["ok"] is True
	assert body["checks"]["postgres"]["ok"] is False


@pytest.mark.asyncio
async def test_metrics_require_admin_token(api_client, monkeypatch):
	monkeypatch.setattr(settings, "obs_admin_token", "admin-secret")

	denied = await api_client.get("/metrics")
	wrong = await api_client.get("/metrics", headers={"X-Admin-Token": "nope"})
	allowed = await api_client.get("/metrics", headers={"X-Admin-Token": "admin-secret"})

	assert denied.status_code == 403
	assert wrong.status_code == 403
	assert allowed.status_code == 200
	assert "contrib_refresh_total" in allowed.text


@pytest.mark.asyncio
async def test_metrics_fail_closed_without_token(api_client, monkeypatch):
	monkeypatch.setattr(settings, "obs_admin_token", None)
	response = await api_client.get("/metrics", headers={"X-Admin-Token": "anything"})
	assert response.status_code == 403


@pytest.mark.asyncio
async def test_public_metrics(api_client, monkeypatch):
	monkeypatch.setattr(settings, "obs_metrics_public", True)
	response = await api_client.get("/metrics")
	assert response.status_code == 200
	assert "contribrank_http_requests_total" in response.text
