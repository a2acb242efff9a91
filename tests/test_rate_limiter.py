"""Tests for the Redis rate limiting middleware."""
import fakeredis
import pytest
import redis
from fastapi.testclient import TestClient

from config import LOGIN_RATE_LIMIT_PER_MINUTE
from main import create_app


@pytest.fixture
def fake_redis():
    return fakeredis.FakeRedis(decode_responses=True)


def limited_client(gateway, notifier, redis_client) -> TestClient:
    app = create_app(
        gateway=gateway,
        notifier=notifier,
        redis_client=redis_client,
        rate_limit_enabled=True,
        healthcheck_interval=0
    )
    return TestClient(app)


class TestRedisRateLimiter:

    def test_login_attempts_are_limited(self, gateway, notifier, fake_redis):
        with limited_client(gateway, notifier, fake_redis) as client:
            statuses = [
                client.post("/api/admin/login", json={"username": "admin", "password": "guess"}).status_code
                for _ in range(LOGIN_RATE_LIMIT_PER_MINUTE)
            ]
            blocked = client.post("/api/admin/login", json={"username": "admin", "password": "guess"})

        assert statuses == [401] * LOGIN_RATE_LIMIT_PER_MINUTE
        assert blocked.status_code == 429
        assert blocked.headers["Retry-After"] == "60"
        assert blocked.json()["success"] is False
        assert blocked.json()["error"] == "Too Many Requests"

    def test_login_limit_does_not_block_catalog(self, gateway, notifier, fake_redis):
        with limited_client(gateway, notifier, fake_redis) as client:
            for _ in range(LOGIN_RATE_LIMIT_PER_MINUTE + 1):
                client.post("/api/admin/login", json={"username": "admin", "password": "guess"})
            response = client.get("/api/products")

        assert response.status_code == 200

    def test_limits_are_per_client_ip(self, gateway, notifier, fake_redis):
        with limited_client(gateway, notifier, fake_redis) as client:
            for _ in range(LOGIN_RATE_LIMIT_PER_MINUTE + 1):
                client.post(
                    "/api/admin/login",
                    json={"username": "admin", "password": "guess"},
                    headers={"X-Forwarded-For": "10.0.0.1"}
                )
            other = client.post(
                "/api/admin/login",
                json={"username": "admin", "password": "guess"},
                headers={"X-Forwarded-For": "10.0.0.2"}
            )

        assert other.status_code == 401

    def test_failed_logins_are_tracked(self, gateway, notifier, fake_redis):
        with limited_client(gateway, notifier, fake_redis) as client:
            for _ in range(3):
                client.post(
                    "/api/admin/login",
                    json={"username": "admin", "password": "guess"},
                    headers={"X-Forwarded-For": "10.0.0.9"}
                )

        assert fake_redis.zcard("suspicious:401:10.0.0.9") == 3

    def test_redis_outage_fails_open(self, gateway, notifier):
        unreachable = redis.Redis(host="127.0.0.1", port=1, socket_connect_timeout=0.1, decode_responses=True)

        with limited_client(gateway, notifier, unreachable) as client:
            response = client.get("/api/products")

        assert response.status_code == 200
