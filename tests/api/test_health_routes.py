"""Tests for health check endpoint."""

from unittest.mock import patch


class TestHealthEndpoint:
    async def test_health_check(self, async_client):
        with patch("src.api.routes.health.get_session_factory", return_value=None):
            response = await async_client.get("/api/v1/health")
            assert response.status_code == 200
            data = response.json()
            assert data["status"] == "healthy"
            assert data["version"] == "1.0.0"
            assert data["openrouter_configured"] is False
            assert data["database_configured"] is False
            assert data["storage_configured"] is False
            assert data["generation_mode"] == "offline"
            assert data["story_store"] == "memory"
            assert data["text_model"]

    async def test_live_mode_reported(self, async_client, monkeypatch):
        monkeypatch.setenv("OPENROUTER_API_KEY", "test-key")
        response = await async_client.get("/api/v1/health")
        data = response.json()
        assert data["openrouter_configured"] is True
        assert data["generation_mode"] == "live"

    async def test_offline_flag_wins(self, async_client, monkeypatch):
        monkeypatch.setenv("OPENROUTER_API_KEY", "test-key")
        monkeypatch.setenv("GENERATION_OFFLINE", "true")
        response = await async_client.get("/api/v1/health")
        assert response.json()["generation_mode"] == "offline"


class TestRootEndpoint:
    async def test_root(self, async_client):
        response = await async_client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert "docs" in data
        assert "message" in data
