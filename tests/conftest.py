"""Shared test fixtures."""

import json
import os
from collections.abc import AsyncGenerator
from datetime import date, timedelta
from urllib.parse import parse_qs

# The app module builds its engine on import; keep it off PostgreSQL
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("USE_REDIS_RATE_LIMITER", "false")

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from analytics_import.api.deps import get_services
from analytics_import.core.config import Settings
from analytics_import.data_pipeline.adapters.google_oauth import ANALYTICS_SCOPE
from analytics_import.import_engine.stores import (
    InMemoryCredentialStore,
    InMemoryHistoricalStore,
    InMemoryImportJobStore,
    InMemorySiteRegistry,
)
from analytics_import.main import app
from analytics_import.services import ServiceContainer, build_services

USER_ID = "user-1"
OTHER_USER_ID = "user-2"
SITE_ID = "site-1"
PROPERTY_ID = "properties/123456789"


class FakeGoogleApi:
    """In-process stand-in for the reporting and OAuth endpoints.

    Serves ``total_rows`` rows for the requested dimensions, paged by the
    request's ``limit``/``offset``. Row ``i`` is day ``start + i`` for a
    ``date`` dimension and ``"{name}-{i}"`` for any other. Status codes
    queued in ``report_failures`` are returned by the next report calls
    before any data.
    """

    def __init__(self, total_rows: int = 0, start: date = date(2024, 1, 1)):
        self.total_rows = total_rows
        self.start = start
        self.report_failures: list[int] = []
        self.requests: list[httpx.Request] = []
        self.properties = [{"name": PROPERTY_ID, "displayName": "Example Site"}]
        self.access_token_counter = 0

    @property
    def report_calls(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(":runReport")]

    def _row(self, index: int, dimensions: list[str]) -> dict:
        day = self.start + timedelta(days=index)
        values = [
            day.strftime("%Y%m%d") if name == "date" else f"{name}-{index}" for name in dimensions
        ]
        return {
            "dimensionValues": [{"value": v} for v in values],
            "metricValues": [{"value": str(index + 1)}, {"value": "10"}],
        }

    def _report(self, request: httpx.Request) -> httpx.Response:
        if self.report_failures:
            status = self.report_failures.pop(0)
            return httpx.Response(status, json={"error": {"message": f"status {status}"}})

        body = json.loads(request.content)
        offset = body.get("offset", 0)
        limit = body.get("limit", self.total_rows)
        dimensions = [d["name"] for d in body.get("dimensions", [{"name": "date"}])]
        end = min(offset + limit, self.total_rows)
        return httpx.Response(
            200,
            json={
                "dimensionHeaders": [{"name": name} for name in dimensions],
                "metricHeaders": [
                    {"name": "sessions", "type": "TYPE_INTEGER"},
                    {"name": "screenPageViews", "type": "TYPE_INTEGER"},
                ],
                "rows": [self._row(i, dimensions) for i in range(offset, end)],
                "rowCount": self.total_rows,
            },
        )

    def _token(self, request: httpx.Request) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        if form.get("code") == "bad-code" or form.get("refresh_token") == "revoked":
            return httpx.Response(
                400, json={"error": "invalid_grant", "error_description": "Bad Request"}
            )

        self.access_token_counter += 1
        data = {
            "access_token": f"access-{self.access_token_counter}",
            "expires_in": 3600,
            "token_type": "Bearer",
            "scope": ANALYTICS_SCOPE,
        }
        if form.get("grant_type") == "authorization_code":
            data["refresh_token"] = "refresh-1"
        return httpx.Response(200, json=data)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host, path = request.url.host, request.url.path

        if host == "analyticsdata.googleapis.com":
            if path.endswith(":runReport"):
                return self._report(request)
            if path.endswith("/properties"):
                return httpx.Response(200, json={"properties": self.properties})
        if host == "oauth2.googleapis.com":
            if path == "/token":
                return self._token(request)
            if path == "/revoke":
                return httpx.Response(200)
            if path == "/tokeninfo":
                if request.url.params.get("access_token") == "valid-token":
                    return httpx.Response(200, json={"exp": "1700000000", "scope": ANALYTICS_SCOPE})
                return httpx.Response(400, json={"error": "invalid_token"})

        return httpx.Response(404, json={"error": {"message": "Not found"}})


def make_settings(**overrides) -> Settings:
    """Settings isolated from the environment and any .env file."""
    values = {
        "database_url": "sqlite+aiosqlite:///:memory:",
        "use_redis_rate_limiter": False,
        "google_client_id": "client-id",
        "google_client_secret": "client-secret",
        "ga_retry_delay": 0,
        "import_batch_size": 10,
        "import_cleanup_interval_seconds": 3600,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def fake_api() -> FakeGoogleApi:
    return FakeGoogleApi()


@pytest.fixture
def sites() -> InMemorySiteRegistry:
    return InMemorySiteRegistry({SITE_ID: USER_ID})


@pytest.fixture
def job_store() -> InMemoryImportJobStore:
    return InMemoryImportJobStore()


@pytest.fixture
def credential_store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def historical_store() -> InMemoryHistoricalStore:
    return InMemoryHistoricalStore()


@pytest_asyncio.fixture
async def services(
    fake_api: FakeGoogleApi,
    job_store: InMemoryImportJobStore,
    credential_store: InMemoryCredentialStore,
    historical_store: InMemoryHistoricalStore,
    sites: InMemorySiteRegistry,
) -> AsyncGenerator[ServiceContainer, None]:
    """Service graph on in-memory stores, talking to the fake API."""
    container = build_services(
        make_settings(),
        job_store=job_store,
        credential_store=credential_store,
        historical_store=historical_store,
        ownership=sites,
        transport=httpx.MockTransport(fake_api.handler),
    )
    yield container
    await container.close()


@pytest_asyncio.fixture
async def connected_user(services: ServiceContainer) -> str:
    """USER_ID with a stored, unexpired token set."""
    tokens = await services.token_manager.exchange_code_for_tokens("good-code")
    await services.token_manager.save_tokens(USER_ID, tokens)
    return USER_ID


@pytest_asyncio.fixture
async def client(services: ServiceContainer) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client bound to the in-memory services."""
    app.dependency_overrides[get_services] = lambda: services

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


def auth(user_id: str = USER_ID) -> dict[str, str]:
    return {"X-User-ID": user_id}
