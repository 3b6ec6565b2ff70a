"""
Health and service information tests.

The browser version probe is patched out so no subprocess is started.
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from app.config import Settings
from app.main import create_app, get_cors_origin_regex, get_cors_origins
from app.services.health import HEALTH_CACHE_TTL_SECONDS, HealthReporter


class FakeClock:
    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


def _settings(tmp_path, **overrides) -> Settings:
    values = {"pdf_storage_dir": str(tmp_path)}
    values.update(overrides)
    return Settings(**values)


# ===========================================================================
# HealthReporter
# ===========================================================================

class TestHealthReporter:
    @pytest.mark.asyncio
    async def test_report_contents(self, tmp_path):
        reporter = HealthReporter(
            _settings(tmp_path, smtp_host="smtp.example.com"),
            queue_status=lambda: {"pending": 0, "running": False},
        )

        with patch(
            "app.services.health.detect_browser_version",
            AsyncMock(return_value="Chromium 120.0"),
        ):
            report = await reporter.report()

        assert report["status"] == "healthy"
        assert report["chrome"] == "Chromium 120.0"
        assert report["pdfDirectory"] == "ok"
        assert report["smtp"]["host"] == "smtp.example.com"
        assert report["smtp"]["configured"] is False
        assert report["queue"] == {"pending": 0, "running": False}
        assert "max_rss_mb" in report["memory"]

    @pytest.mark.asyncio
    async def test_missing_pdf_directory_is_reported(self, tmp_path):
        reporter = HealthReporter(_settings(tmp_path / "missing"))

        with patch("app.services.health.detect_browser_version", AsyncMock(return_value=None)):
            report = await reporter.report()

        assert report["pdfDirectory"] == "error"
        assert report["chrome"] is None

    @pytest.mark.asyncio
    async def test_report_is_cached_for_one_minute(self, tmp_path):
        clock = FakeClock()
        reporter = HealthReporter(_settings(tmp_path), clock=clock)
        probe = AsyncMock(return_value="Chromium 120.0")

        with patch("app.services.health.detect_browser_version", probe):
            first = await reporter.report()
            clock.now += HEALTH_CACHE_TTL_SECONDS - 1
            second = await reporter.report()
            clock.now += 2
            third = await reporter.report()

        assert first is second
        assert third is not first
        assert probe.await_count == 2

    @pytest.mark.asyncio
    async def test_internal_error_gives_cached_fallback(self, tmp_path):
        reporter = HealthReporter(_settings(tmp_path))
        probe = AsyncMock(side_effect=RuntimeError("probe exploded"))

        with patch("app.services.health.detect_browser_version", probe):
            first = await reporter.report()
            second = await reporter.report()

        assert first["status"] == "healthy"
        assert first["error"] == "probe exploded"
        assert first is second
        assert probe.await_count == 1

    @pytest.mark.asyncio
    async def test_fallback_error_is_masked_in_production(self, tmp_path):
        reporter = HealthReporter(_settings(tmp_path, environment="production"))

        with patch(
            "app.services.health.detect_browser_version",
            AsyncMock(side_effect=RuntimeError("/secret/path missing")),
        ):
            report = await reporter.report()

        assert report["error"] == "internal error"


# ===========================================================================
# Endpoints
# ===========================================================================

class TestHealthEndpoints:
    def test_root_lists_endpoints(self, tmp_path):
        client = TestClient(create_app(_settings(tmp_path)))

        data = client.get("/").json()

        assert data["name"] == "Bedoui API"
        assert data["status"] == "running"
        assert "/send-quote" in data["endpoints"]

    def test_health_endpoint_needs_no_api_key(self, tmp_path):
        client = TestClient(create_app(_settings(tmp_path, api_key="k")))

        with patch("app.services.health.detect_browser_version", AsyncMock(return_value=None)):
            response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_debug_browser_outside_production(self, tmp_path):
        settings = _settings(tmp_path, chromium_executable_path="/opt/chromium/chrome")
        client = TestClient(create_app(settings))

        data = client.get("/debug/browser").json()

        assert data["configured"] == "/opt/chromium/chrome"
        assert data["candidates"][0] == "/opt/chromium/chrome"
        assert data["checks"]["/opt/chromium/chrome"] is False

    def test_debug_browser_hidden_in_production(self, tmp_path):
        client = TestClient(create_app(_settings(tmp_path, environment="production")))

        assert client.get("/debug/browser").status_code == 404


# ===========================================================================
# CORS
# ===========================================================================

class TestCors:
    def test_frontend_origin_is_added_once(self):
        settings = Settings(
            frontend_origin="https://shop.example",
            cors_origins=["https://shop.example", "http://localhost:5173"],
        )

        origins = get_cors_origins(settings)

        assert origins.count("https://shop.example") == 1
        assert origins.count("http://localhost:5173") == 1

    def test_private_networks_allowed_only_outside_production(self):
        assert "192\\.168" in get_cors_origin_regex(Settings())
        assert "192\\.168" not in get_cors_origin_regex(Settings(environment="production"))

    def test_preflight_from_local_network_is_allowed(self, tmp_path):
        client = TestClient(create_app(_settings(tmp_path)))

        response = client.options(
            "/send-quote",
            headers={
                "Origin": "http://192.168.1.20:5173",
                "Access-Control-Request-Method": "POST",
            },
        )

        assert response.headers["access-control-allow-origin"] == "http://192.168.1.20:5173"
