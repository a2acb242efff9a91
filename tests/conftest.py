"""Shared fixtures.

The durable store is an in-memory SQLite database and the Discord webhook is
an ``httpx.MockTransport`` that records every request.
"""
from typing import List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from database import create_db_engine
from main import create_app
from security import hash_password
from services.notifier import OrderNotifier
from storage import StorageGateway

ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "valkyrie-secret"
WEBHOOK_URL = "https://discord.test/api/webhooks/123/token"


class WebhookRecorder:
    """MockTransport handler capturing webhook deliveries."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.error: Optional[Exception] = None
        self.status_code = 204

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code)


@pytest.fixture(scope="session")
def admin_password_hash() -> str:
    return hash_password(ADMIN_PASSWORD)


@pytest.fixture
def gateway(admin_password_hash):
    """Gateway over a fresh in-memory SQLite database, already connected."""
    gw = StorageGateway(create_db_engine("sqlite://"), ADMIN_USERNAME, admin_password_hash)
    assert gw.connect()
    yield gw
    gw.close()


@pytest.fixture
def webhook() -> WebhookRecorder:
    return WebhookRecorder()


@pytest.fixture
def notifier(webhook) -> OrderNotifier:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(webhook))
    return OrderNotifier(http_client, webhook_url=WEBHOOK_URL, timeout=1.0)


@pytest.fixture
def app(gateway, notifier):
    return create_app(
        gateway=gateway,
        notifier=notifier,
        rate_limit_enabled=False,
        healthcheck_interval=0
    )


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def ak47(client) -> dict:
    """A product created through the API."""
    response = client.post("/api/products", json={
        "name": "AK-47",
        "category": "senjata",
        "price": 15000,
        "stock": 10,
    })
    assert response.status_code == 201
    return response.json()["data"]
