"""
Tests ProviderRegistry + providers Twitch/Discord (HTTP mocké)
"""
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from core.errors import RefreshFailedError, TokenExchangeError, UnknownProviderError, VerificationError
from twitchapi.providers import DiscordProvider, ProviderRegistry, TwitchProvider


def _query(url: str) -> dict:
    parsed = urlparse(url)
    return {k: v[0] for k, v in parse_qs(parsed.query).items()}


@pytest.mark.unit
class TestRegistry:

    def test_configured_providers(self, providers):
        assert providers.names() == ["discord", "twitch"]
        assert isinstance(providers.get("twitch"), TwitchProvider)
        assert isinstance(providers.get("discord"), DiscordProvider)

    @pytest.mark.parametrize("name", ["kick", "", None, "TWITCH"])
    def test_unknown_provider(self, providers, name):
        with pytest.raises(UnknownProviderError) as exc:
            providers.get(name)
        assert exc.value.reason == "provider-error"

    def test_unconfigured_provider_not_registered(self, settings, http):
        settings.discord_client_id = ""
        registry = ProviderRegistry.from_settings(settings, http=http)
        assert registry.names() == ["twitch"]
        with pytest.raises(UnknownProviderError):
            registry.get("discord")

    def test_config_repr_hides_secret(self, providers):
        assert "test_client_secret" not in repr(providers.get("twitch").config)


@pytest.mark.unit
class TestAuthorizeUrl:

    def test_twitch_params(self, providers):
        url = providers.get("twitch").authorize_url("abc123", force_verify=False)
        assert url.startswith("https://id.twitch.tv/oauth2/authorize?")

        query = _query(url)
        assert query["client_id"] == "test_client_id"
        assert query["force_verify"] == "false"
        assert query["response_type"] == "code"
        assert query["state"] == "abc123"
        assert query["redirect_uri"] == "http://localhost:3000/auth/v1/callback"
        assert "user:read:chat" in query["scope"].split(" ")
        assert len(query["scope"].split(" ")) == 9

    def test_twitch_force_verify(self, providers):
        assert _query(providers.get("twitch").authorize_url("s", force_verify=True))["force_verify"] == "true"

    def test_discord_uses_prompt(self, providers):
        query = _query(providers.get("discord").authorize_url("s", force_verify=True))
        assert "force_verify" not in query
        assert query["prompt"] == "consent"
        assert query["scope"] == "identify"


@pytest.mark.integration
class TestTokenEndpoint:

    @pytest.mark.asyncio
    async def test_exchange_code(self, providers, fake_api):
        grant = await providers.get("twitch").exchange_code("the-code")

        assert grant.access_token == "access-from-code"
        assert grant.refresh_token == "refresh-from-code"
        assert grant.scopes == ["bits:read", "user:read:chat"]

        form = fake_api.forms()[0]
        assert form == {
            "client_id": "test_client_id",
            "client_secret": "test_client_secret",
            "code": "the-code",
            "grant_type": "authorization_code",
            "redirect_uri": "http://localhost:3000/auth/v1/callback",
        }

    @pytest.mark.asyncio
    async def test_provider_expiry_not_interpreted(self, providers, fake_api):
        fake_api.token_payload = dict(fake_api.token_payload, expires_in="soon")
        grant = await providers.get("twitch").exchange_code("c")
        assert grant.access_token == "access-from-code"

    @pytest.mark.asyncio
    async def test_discord_scope_string_normalised(self, providers, fake_api):
        fake_api.token_payload = {"access_token": "a", "refresh_token": "r", "scope": "identify email"}
        grant = await providers.get("discord").exchange_code("c")
        assert grant.scopes == ["email", "identify"]

    @pytest.mark.asyncio
    async def test_exchange_error_payload(self, providers, fake_api):
        fake_api.token_payload = {"status": 400, "message": "Invalid authorization code"}

        with pytest.raises(TokenExchangeError) as exc:
            await providers.get("twitch").exchange_code("bad-code")

        assert exc.value.payload["message"] == "Invalid authorization code"
        assert exc.value.reason == "token-req-error"
        assert "test_client_secret" not in str(exc.value)

    @pytest.mark.asyncio
    async def test_exchange_non_json(self, providers, fake_api):
        fake_api.token_payload = "<html>bad gateway</html>"
        with pytest.raises(TokenExchangeError):
            await providers.get("twitch").exchange_code("c")

    @pytest.mark.asyncio
    async def test_exchange_transport_failure(self, settings):
        def unreachable(request):
            raise httpx.ConnectError("connection refused", request=request)

        registry = ProviderRegistry.from_settings(
            settings, http=httpx.AsyncClient(transport=httpx.MockTransport(unreachable))
        )
        with pytest.raises(TokenExchangeError):
            await registry.get("twitch").exchange_code("c")

    @pytest.mark.asyncio
    async def test_refresh(self, providers, fake_api):
        grant = await providers.get("twitch").refresh("old-refresh")

        assert grant.access_token == "access-from-refresh"
        form = fake_api.forms()[0]
        assert form["grant_type"] == "refresh_token"
        assert form["refresh_token"] == "old-refresh"

    @pytest.mark.asyncio
    async def test_refresh_error(self, providers, fake_api):
        fake_api.refresh_payload = {"error": "Bad Request", "status": 400, "message": "Invalid refresh token"}
        with pytest.raises(RefreshFailedError) as exc:
            await providers.get("twitch").refresh("revoked")
        assert exc.value.payload["error"] == "Bad Request"


@pytest.mark.integration
class TestVerifyToken:

    @pytest.mark.asyncio
    async def test_twitch_validate(self, providers, fake_api):
        assert await providers.get("twitch").verify_token("tok") == "tw_42"

        request = fake_api.calls("/oauth2/validate")[0]
        assert request.headers["Authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_twitch_rejected(self, providers, fake_api):
        fake_api.validate_status = 401
        fake_api.validate_body = {"status": 401, "message": "invalid access token"}
        with pytest.raises(VerificationError):
            await providers.get("twitch").verify_token("tok")

    @pytest.mark.asyncio
    async def test_missing_identity_field(self, providers, fake_api):
        fake_api.validate_body = {"login": "u1"}
        with pytest.raises(VerificationError):
            await providers.get("twitch").verify_token("tok")

    @pytest.mark.asyncio
    async def test_discord_me(self, providers):
        assert await providers.get("discord").verify_token("tok") == "dc_7"
