"""
Application and HTTP client fixtures.

Each test gets its own app built by `create_app` around a temp directory,
a fake task bridge and a private metrics registry.
"""
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from omnidrop.client_registry import ClientRegistry
from omnidrop.config import Settings
from omnidrop.main import create_app
from omnidrop.metrics import PrometheusMetrics
from tests.fixtures.helpers import FakeExecutor, client_entry, make_settings, write_registry

SVC_A_SECRET = "hunter2"
FILES_SECRET = "files-secret"
ALL_SECRET = "star-secret"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def registry(settings: Settings) -> ClientRegistry:
    write_registry(
        settings.OAUTH_CLIENTS_FILE,
        [
            client_entry("svc-a", SVC_A_SECRET, ["tasks:write"]),
            client_entry("svc-files", FILES_SECRET, ["files:write"]),
            client_entry("svc-all", ALL_SECRET, ["*"]),
            client_entry("svc-off", "disabled-secret", ["*"], disabled=True),
        ],
    )
    return ClientRegistry.load(settings.OAUTH_CLIENTS_FILE)


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor(output="success")


@pytest.fixture
def metrics() -> PrometheusMetrics:
    return PrometheusMetrics()


@pytest.fixture
def app(settings, registry, fake_executor, metrics) -> FastAPI:
    return create_app(settings, registry=registry, executor=fake_executor, metrics=metrics)


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """
    Provides an HTTP client that calls the app in-process.
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client


async def fetch_token(client: AsyncClient, client_id: str, secret: str) -> str:
    response = await client.post(
        "/oauth/token",
        json={
            "grant_type": "client_credentials",
            "client_id": client_id,
            "client_secret": secret,
        },
    )
    assert response.status_code == 200, response.text
    return response.json()["access_token"]


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
