"""
Application-level tests: health, the timing middleware headers, service
selection in the factory and error rendering.
"""
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import IntegrityError

from campusnet import __version__
from campusnet.config import settings
from campusnet.exceptions import Conflict, ServiceUnavailable
from campusnet.main import SERVICE_ROUTERS, app, create_app, resolve_services


def _client(application) -> AsyncClient:
    application.dependency_overrides = app.dependency_overrides
    transport = ASGITransport(app=application, raise_app_exceptions=False)
    return AsyncClient(transport=transport, base_url="http://test")


# ---------------------------------------------------------------------------
# Health and middleware
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_health(async_client: AsyncClient):
    resp = await async_client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert body["version"] == __version__
    assert body["services"] == list(SERVICE_ROUTERS)
    assert body["cache"]["connected"] is False


@pytest.mark.asyncio
async def test_timing_headers(async_client: AsyncClient):
    """Every response carries its duration and the number of SQL statements run."""
    health = await async_client.get("/health")
    assert float(health.headers["x-response-time-ms"]) >= 0
    assert health.headers["x-query-count"] == "0"

    news = await async_client.get("/api/news")
    assert int(news.headers["x-query-count"]) >= 1


# ---------------------------------------------------------------------------
# Service selection
# ---------------------------------------------------------------------------

def test_resolve_services():
    assert resolve_services({"all"}) == list(SERVICE_ROUTERS)
    assert resolve_services({"news", "auth"}) == ["auth", "news"]
    with pytest.raises(ValueError, match="gossip"):
        resolve_services({"news", "gossip"})


@pytest.mark.asyncio
async def test_app_mounts_only_selected_services():
    async with _client(create_app({"news"})) as client:
        health = (await client.get("/health")).json()
        assert health["services"] == ["news"]
        assert (await client.get("/api/news")).status_code == 200
        assert (await client.get("/api/feed")).status_code == 404
        assert (await client.post("/api/auth/login", json={})).status_code == 404


# ---------------------------------------------------------------------------
# Error rendering
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_domain_errors_render_code_and_details():
    application = create_app({"news"})

    @application.get("/boom/conflict")
    async def conflict():
        raise Conflict("Profile already exists", code="PROFILE_EXISTS")

    @application.get("/boom/unavailable")
    async def unavailable():
        raise ServiceUnavailable("Mail relay down", code="MAIL_FAILED", details="connection refused")

    async with _client(application) as client:
        resp = await client.get("/boom/conflict")
        assert resp.status_code == 409
        assert resp.json() == {"detail": "Profile already exists", "code": "PROFILE_EXISTS"}

        resp = await client.get("/boom/unavailable")
        assert resp.status_code == 503
        assert resp.json() == {"detail": "Mail relay down", "code": "MAIL_FAILED", "details": "connection refused"}


@pytest.mark.asyncio
async def test_integrity_error_is_409():
    """A unique-constraint violation that slips past a service check renders as 409."""
    application = create_app({"news"})

    @application.get("/boom/duplicate")
    async def duplicate():
        raise IntegrityError("INSERT INTO likes ...", {}, Exception("UNIQUE constraint failed: likes.user_id, likes.post_id"))

    async with _client(application) as client:
        resp = await client.get("/boom/duplicate")
    assert resp.status_code == 409
    assert resp.json() == {"detail": "Resource already exists", "code": "CONFLICT"}


@pytest.mark.asyncio
async def test_unhandled_error_is_500(monkeypatch):
    """Unexpected exceptions are logged and hidden behind a generic message."""
    monkeypatch.setattr(settings, "DEBUG", False)
    application = create_app({"news"})

    @application.get("/boom")
    async def boom():
        raise RuntimeError("secret internals")

    async with _client(application) as client:
        resp = await client.get("/boom")
    assert resp.status_code == 500
    assert resp.json()["code"] == "INTERNAL_ERROR"
    assert "secret internals" not in resp.json()["detail"]
