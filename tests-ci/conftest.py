"""
Pytest configuration for CI tests
Provides common fixtures: temporary SQLite database, cipher, components,
and a fake provider API served through httpx.MockTransport (no network).
"""
import json
import os
from urllib.parse import parse_qs

import httpx
import pytest

from core.authorization import AuthorizationPipeline
from core.state_manager import StateManager
from core.token_store import TokenStore
from database.crypto import TokenCipher
from database.init_db import init_database
from database.manager import DatabaseManager
from twitchapi.auth_manager import AuthManager
from twitchapi.providers import ProviderRegistry
from web.backend.config import Settings

TEST_JWT_SECRET = "test-jwt-secret-with-enough-bytes-for-hs256!"
TWITCH_USER_ID = "tw_42"
DISCORD_USER_ID = "dc_7"


class FakeProviderAPI:
    """
    Stand-in for id.twitch.tv, discord.com and the Helix EventSub endpoint.

    Tests tweak the payloads/status codes before exercising the code.
    """

    def __init__(self):
        self.requests = []
        self.token_payload = {
            "access_token": "access-from-code",
            "refresh_token": "refresh-from-code",
            "expires_in": 14400,
            "scope": ["bits:read", "user:read:chat"],
            "token_type": "bearer",
        }
        self.refresh_payload = {
            "access_token": "access-from-refresh",
            "refresh_token": "refresh-from-refresh",
            "expires_in": 14400,
            "scope": ["bits:read", "user:read:chat"],
            "token_type": "bearer",
        }
        self.validate_status = 200
        self.validate_body = {"client_id": "test_client_id", "login": "u1", "user_id": TWITCH_USER_ID}
        self.discord_me_body = {"id": DISCORD_USER_ID, "username": "u1"}
        self.subscription_status = {}  # broadcaster_user_id -> status code

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host, path = request.url.host, request.url.path

        if path.endswith("/oauth2/token"):
            form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
            payload = self.token_payload if form.get("grant_type") == "authorization_code" else self.refresh_payload
            if isinstance(payload, str):
                return httpx.Response(200, text=payload)
            status = 200 if "access_token" in payload else payload.get("status", 400)
            return httpx.Response(status, json=payload)

        if host == "id.twitch.tv" and path == "/oauth2/validate":
            return httpx.Response(self.validate_status, json=self.validate_body)

        if host == "discord.com" and path.endswith("me"):
            return httpx.Response(200, json=self.discord_me_body)

        if host == "api.twitch.tv" and path == "/helix/eventsub/subscriptions":
            body = json.loads(request.content)
            status = self.subscription_status.get(body["condition"]["broadcaster_user_id"], 202)
            if status >= 400:
                return httpx.Response(status, json={"error": "Error", "status": status, "message": "rejected"})
            return httpx.Response(status, json={"data": [{"id": "sub-1", "type": body["type"], "status": "enabled"}]})

        return httpx.Response(404, json={"message": "not found"})

    def calls(self, path_suffix: str):
        return [r for r in self.requests if r.url.path.endswith(path_suffix)]

    def forms(self, path_suffix: str = "/oauth2/token"):
        return [{k: v[0] for k, v in parse_qs(r.content.decode()).items()} for r in self.calls(path_suffix)]


@pytest.fixture
def db_path(tmp_path):
    """Fresh initialized SQLite database"""
    path = str(tmp_path / "test.db")
    assert init_database(path)
    return path


@pytest.fixture
def db(db_path):
    return DatabaseManager(db_path)


@pytest.fixture
def cipher():
    return TokenCipher(os.urandom(32))


@pytest.fixture
def store(db, cipher):
    return TokenStore(db, cipher)


@pytest.fixture
def states(db):
    return StateManager(db)


@pytest.fixture
def settings(db_path):
    """Settings built explicitly (no .env, no real API keys needed)"""
    return Settings(
        _env_file=None,
        environment="production",
        database_path=db_path,
        aonyxengine_secret_key=os.urandom(32).hex(),
        jwt_secret=TEST_JWT_SECRET,
        twitch_client_id="test_client_id",
        twitch_client_secret="test_client_secret",
        discord_client_id="discord_client_id",
        discord_client_secret="discord_client_secret",
        config_file="does/not/exist.yaml",
    )


@pytest.fixture
def fake_api():
    return FakeProviderAPI()


@pytest.fixture
def http(fake_api):
    return httpx.AsyncClient(transport=httpx.MockTransport(fake_api))


@pytest.fixture
def providers(settings, http):
    return ProviderRegistry.from_settings(settings, http=http)


@pytest.fixture
def auth(store, providers):
    return AuthManager(store, providers)


@pytest.fixture
def pipeline(states, providers, store):
    return AuthorizationPipeline(states, providers, store)
