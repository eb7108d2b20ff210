"""
Tests routes FastAPI (login, callback, info) avec TestClient
"""
import time
from urllib.parse import parse_qs, urlparse

import jwt
import pytest
from fastapi.testclient import TestClient

from core.engine import build_engine
from core.token_store import ACCESS_TOKEN
from twitchapi.transports.eventsub_client import EventSubConfig
from web.backend.config import get_settings
from web.backend.dependencies import create_mock_token, limiter
from web.backend.main import create_app

SCOPE = "user:read:chat bits:read"


def _bearer(settings, sub="U1", exp_delta=3600):
    token = jwt.encode(
        {"sub": sub, "aud": "authenticated", "role": "authenticated", "exp": int(time.time()) + exp_delta},
        settings.jwt_secret,
        algorithm="HS256",
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def engine(settings, http):
    return build_engine(settings, http=http, eventsub_config=EventSubConfig())


@pytest.fixture
def client(engine, settings, monkeypatch):
    monkeypatch.setattr(limiter, "enabled", False)
    app = create_app(engine, settings)
    app.dependency_overrides[get_settings] = lambda: settings
    return TestClient(app)


def _login(client, headers, provider="twitch"):
    return client.get(f"/auth/v1/{provider}/login", headers=headers, follow_redirects=False)


@pytest.mark.integration
class TestInfoRoutes:

    def test_index(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.text == "hello world from aonyxengine!"

    def test_version(self, client):
        assert client.get("/version").json() == {"application": "aonyxengine", "version": "1.0.0"}

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "ok"
        assert isinstance(body["timeStamp"], int)

    def test_security_headers(self, client):
        headers = client.get("/health").headers
        assert headers["X-Frame-Options"] == "DENY"
        assert headers["X-Content-Type-Options"] == "nosniff"
        assert "frame-ancestors 'none'" in headers["Content-Security-Policy"]


@pytest.mark.integration
class TestLogin:

    def test_requires_identity(self, client):
        response = _login(client, {})
        assert response.status_code == 401
        assert response.json()["error"] == "unauthenticated"

    def test_expired_token_rejected(self, client, settings):
        assert _login(client, _bearer(settings, exp_delta=-60)).status_code == 401

    def test_wrong_secret_rejected(self, client):
        token = jwt.encode({"sub": "U1", "aud": "authenticated"}, "another-secret-of-sufficient-length!!", "HS256")
        assert _login(client, {"Authorization": f"Bearer {token}"}).status_code == 401

    def test_unknown_provider(self, client, settings):
        response = _login(client, _bearer(settings), provider="kick")
        assert response.status_code == 404
        assert response.json()["error"] == "provider-error"

    def test_redirects_to_provider(self, client, settings, db):
        response = _login(client, _bearer(settings))

        assert response.status_code == 302
        location = response.headers["location"]
        assert location.startswith("https://id.twitch.tv/oauth2/authorize?")
        query = parse_qs(urlparse(location).query)
        assert query["force_verify"] == ["false"]
        assert len(query["state"][0]) == 32
        assert db.get_stats()["states_count"] == 1

    def test_session_cookie(self, client, settings):
        token = _bearer(settings)["Authorization"].split(" ", 1)[1]
        client.cookies.set("session", token)
        assert _login(client, {}).status_code == 302

    def test_dev_mode_mock_user(self, client, settings, engine):
        settings.environment = "development"

        response = _login(client, {})

        assert response.status_code == 302
        state = parse_qs(urlparse(response.headers["location"]).query)["state"][0]
        assert engine.db.consume_state("dev_mock_user_id", state, "0000") is not None

    def test_mock_token_claims(self, settings):
        claims = jwt.decode(create_mock_token(settings), settings.jwt_secret,
                            algorithms=["HS256"], audience="authenticated")
        assert claims["sub"] == settings.mock_user_id
        assert claims["role"] == "authenticated"
        assert claims["exp"] - claims["iat"] == 3600


@pytest.mark.integration
class TestCallback:

    def test_full_flow(self, client, settings, engine):
        headers = _bearer(settings, sub="U1")
        location = _login(client, headers).headers["location"]
        state = parse_qs(urlparse(location).query)["state"][0]

        response = client.get(
            "/auth/v1/callback",
            params={"code": "the-code", "state": state, "scope": SCOPE},
            headers=headers,
        )

        assert response.status_code == 200
        assert "authentication successful!" in response.text
        assert "window.location.replace" in response.text
        row = engine.db.get_token_row("U1", "twitch", "chatbot", ACCESS_TOKEN)
        assert row["provider_user_id"] == "tw_42"

    def test_invalid_state(self, client, settings):
        response = client.get(
            "/auth/v1/callback",
            params={"code": "c", "state": "f" * 32, "scope": SCOPE},
            headers=_bearer(settings),
        )

        assert response.status_code == 400
        assert "authentication failed" in response.text
        assert "test_client_secret" not in response.text

    def test_provider_denied(self, client, settings):
        response = client.get(
            "/auth/v1/callback",
            params={"error": "access_denied", "error_description": "The user denied you access"},
            headers=_bearer(settings),
        )
        assert response.status_code == 400

    def test_anonymous_callback(self, client):
        response = client.get("/auth/v1/callback", params={"code": "c", "state": "s"})
        assert response.status_code == 400
