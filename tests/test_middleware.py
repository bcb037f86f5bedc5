import uuid
from datetime import timedelta

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from jose import jwt

from widgetgate.core.config import settings
from widgetgate.middleware import rate_limiter
from widgetgate.middleware.auth import AuthMiddleware, TokenManager, default_exempt_paths
from widgetgate.middleware.logging import filter_headers
from widgetgate.middleware.rate_limiter import RateLimitingMiddleware


class _Pipeline:
    def __init__(self, counts):
        self.counts = counts
        self.keys = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def incr(self, key):
        self.keys.append(key)

    def expire(self, key, seconds):
        pass

    async def execute(self):
        key = self.keys[0]
        self.counts[key] = self.counts.get(key, 0) + 1
        return [self.counts[key], True]


class _Redis:
    def __init__(self):
        self.counts = {}

    def pipeline(self, transaction=True):
        return _Pipeline(self.counts)


def _ping_app(middleware, **options):
    app = FastAPI()
    app.add_middleware(middleware, **options)

    @app.get("/api/ping")
    async def ping(request: Request):
        contractor = getattr(request.state, "contractor", None)
        return {"contractor": str(contractor["id"]) if contractor else None}

    @app.get("/api/widget-keys")
    async def keys(request: Request):
        return {"contractor": str(request.state.contractor["id"])}

    return app


@pytest.mark.parametrize(
    "path, exempt",
    [
        ("/api/widget-validate", True),
        ("/api/widget-lead-capture", True),
        ("/api/calculator-types", True),
        ("/api/health", True),
        ("/api/health/ready", True),
        ("/widget/v1/embed.js", True),
        ("/api/widget-key-generate", False),
        ("/api/widget-keys", False),
        ("/api/widget-validate/extra", False),
    ],
)
def test_exempt_paths(path, exempt):
    middleware = AuthMiddleware(None, exempt_paths=default_exempt_paths("/api"))
    assert middleware._is_exempt_path(path) is exempt


def test_auth_sets_contractor_from_token():
    contractor_id = uuid.uuid4()
    client = TestClient(_ping_app(AuthMiddleware))
    token = TokenManager.create_contractor_token(contractor_id)

    response = client.get("/api/widget-keys", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    assert response.json() == {"contractor": str(contractor_id)}


def test_auth_rejects_expired_token():
    client = TestClient(_ping_app(AuthMiddleware))
    token = TokenManager.create_contractor_token(uuid.uuid4(), expires_delta=timedelta(seconds=-30))

    response = client.get("/api/widget-keys", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"
    assert response.json()["code"] == "expired_token"


def test_auth_rejects_token_without_expiry():
    client = TestClient(_ping_app(AuthMiddleware))
    token = jwt.encode({"sub": str(uuid.uuid4())}, settings.secret_key, algorithm=settings.algorithm)

    response = client.get("/api/widget-keys", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401
    assert response.json()["code"] == "invalid_token"


def test_auth_rejects_non_uuid_subject():
    client = TestClient(_ping_app(AuthMiddleware))
    token = TokenManager.create_access_token({"sub": "admin"})

    response = client.get("/api/widget-keys", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401
    assert response.json()["code"] == "invalid_token"


def test_throttle_blocks_after_budget(monkeypatch):
    redis = _Redis()

    async def _client():
        return redis

    monkeypatch.setattr(rate_limiter, "get_redis_client", _client)
    client = TestClient(_ping_app(RateLimitingMiddleware, requests=2, period=3600))

    assert client.get("/api/ping").status_code == 200
    second = client.get("/api/ping")
    assert second.headers["X-RateLimit-Remaining"] == "0"

    third = client.get("/api/ping")
    assert third.status_code == 429
    assert third.json()["code"] == "rate_limited"
    assert int(third.headers["Retry-After"]) >= 1


def test_throttle_fails_open_without_redis(monkeypatch):
    async def _client():
        raise ConnectionError("redis down")

    monkeypatch.setattr(rate_limiter, "get_redis_client", _client)
    client = TestClient(_ping_app(RateLimitingMiddleware, requests=1, period=3600))

    for _ in range(3):
        assert client.get("/api/ping").status_code == 200


def test_filter_headers_redacts_credentials():
    filtered = filter_headers({"Authorization": "Bearer abc", "apikey": "k", "Content-Type": "application/json"})
    assert filtered == {"Authorization": "[REDACTED]", "apikey": "[REDACTED]", "Content-Type": "application/json"}
