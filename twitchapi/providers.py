"""
🔑 OAuth Providers - Registry + per-provider behaviour

Each provider knows its endpoints, client credentials and scopes, and how
to turn an access token back into the provider-side user id. Everything
else (state, storage, refresh policy) lives outside this module.

All providers of a registry share one httpx.AsyncClient with a bounded
timeout.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type
from urllib.parse import urlencode

import httpx

from core.errors import (
    RefreshFailedError,
    TokenExchangeError,
    UnknownProviderError,
    VerificationError,
)
from twitchapi.scope_validator import join_scopes, scope_list

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 5.0


@dataclass(frozen=True)
class ProviderConfig:
    """Configuration statique d'un provider OAuth (jamais mutée)."""
    name: str
    code_endpoint: str
    token_endpoint: str
    validate_endpoint: str
    client_id: str
    client_secret: str = field(repr=False)
    redirect_uri: str
    scopes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class TokenGrant:
    """Réponse du token endpoint, scopes normalisés en liste."""
    access_token: str = field(repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)
    scopes: List[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "TokenGrant":
        return cls(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            scopes=scope_list(payload.get("scope")),
        )


class OAuthProvider:
    """
    Authorization-code grant against one provider.

    Subclasses set ``name`` and ``identity_field`` and may override
    ``authorize_params`` / ``verify_headers``.
    """

    name = "oauth"
    identity_field = "id"

    def __init__(self, config: ProviderConfig, http: httpx.AsyncClient):
        self.config = config
        self.http = http

    @property
    def scopes(self) -> List[str]:
        return list(self.config.scopes)

    # ==================== AUTHORIZE ====================

    def authorize_params(self, state: str, force_verify: bool = False) -> Dict[str, str]:
        return {
            "client_id": self.config.client_id,
            "force_verify": "true" if force_verify else "false",
            "redirect_uri": self.config.redirect_uri,
            "response_type": "code",
            "scope": join_scopes(self.config.scopes),
            "state": state,
        }

    def authorize_url(self, state: str, force_verify: bool = False) -> str:
        """URL vers laquelle rediriger le navigateur pour démarrer le flow."""
        return f"{self.config.code_endpoint}?{urlencode(self.authorize_params(state, force_verify))}"

    # ==================== TOKEN ENDPOINT ====================

    async def _token_request(self, data: Dict[str, str], error_cls: Type[Exception]) -> TokenGrant:
        form = {
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "redirect_uri": self.config.redirect_uri,
            **data,
        }
        grant_type = data.get("grant_type")

        try:
            response = await self.http.post(self.config.token_endpoint, data=form)
        except httpx.HTTPError as e:
            LOGGER.error(f"❌ {self.name} token endpoint unreachable ({grant_type}): {type(e).__name__}")
            raise error_cls(f"{self.name} token endpoint unreachable") from e

        try:
            payload = response.json()
        except ValueError as e:
            LOGGER.error(f"❌ {self.name} token endpoint returned non-JSON body (HTTP {response.status_code})")
            raise error_cls(f"{self.name} token endpoint returned non-JSON body") from e

        if not isinstance(payload, dict):
            raise error_cls(f"{self.name} token endpoint returned unexpected body")

        if "error" in payload or not payload.get("access_token"):
            LOGGER.warning(
                f"⚠️ {self.name} token endpoint error ({grant_type}): "
                f"status={payload.get('status', response.status_code)} message={payload.get('message')}"
            )
            raise error_cls(f"{self.name} token endpoint error", payload=payload)

        return TokenGrant.from_payload(payload)

    async def exchange_code(self, code: str) -> TokenGrant:
        """
        Échange un authorization code contre des tokens.

        Raises:
            TokenExchangeError: réseau, corps non-JSON ou payload d'erreur
        """
        return await self._token_request(
            {"code": code, "grant_type": "authorization_code"},
            TokenExchangeError,
        )

    async def refresh(self, refresh_token: str) -> TokenGrant:
        """
        Obtient un nouvel access token à partir d'un refresh token.

        Raises:
            RefreshFailedError: réseau, corps non-JSON ou payload d'erreur
        """
        return await self._token_request(
            {"refresh_token": refresh_token, "grant_type": "refresh_token"},
            RefreshFailedError,
        )

    # ==================== IDENTITY ====================

    def verify_headers(self, token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    async def verify_token(self, token: str) -> str:
        """
        Map an access token to the provider-side user id.

        Raises:
            VerificationError: réseau, statut non-2xx ou champ d'identité absent
        """
        try:
            response = await self.http.get(self.config.validate_endpoint, headers=self.verify_headers(token))
        except httpx.HTTPError as e:
            raise VerificationError(f"{self.name} validate endpoint unreachable", provider=self.name) from e

        if not response.is_success:
            raise VerificationError("token rejected", provider=self.name, status=response.status_code)

        try:
            body = response.json()
        except ValueError as e:
            raise VerificationError("validate endpoint returned non-JSON body", provider=self.name) from e

        provider_user_id = body.get(self.identity_field) if isinstance(body, dict) else None
        if not provider_user_id:
            raise VerificationError(f"missing {self.identity_field}", provider=self.name)

        return str(provider_user_id)


class TwitchProvider(OAuthProvider):
    """id.twitch.tv ; /oauth2/validate renvoie user_id."""

    name = "twitch"
    identity_field = "user_id"


class DiscordProvider(OAuthProvider):
    """discord.com ; /users/@me renvoie id. Pas de force_verify, prompt=consent à la place."""

    name = "discord"
    identity_field = "id"

    def authorize_params(self, state: str, force_verify: bool = False) -> Dict[str, str]:
        params = super().authorize_params(state, force_verify)
        del params["force_verify"]
        if force_verify:
            params["prompt"] = "consent"
        return params


PROVIDER_CLASSES: Dict[str, Type[OAuthProvider]] = {
    TwitchProvider.name: TwitchProvider,
    DiscordProvider.name: DiscordProvider,
}


class ProviderRegistry:
    """
    Providers indexed by name.

    Built once at startup; unknown names are an error, never a default.
    """

    def __init__(self, providers: Iterable[OAuthProvider] = ()):
        self._providers: Dict[str, OAuthProvider] = {}
        for provider in providers:
            self.register(provider)

    def register(self, provider: OAuthProvider) -> None:
        self._providers[provider.name] = provider

    def get(self, name: Optional[str]) -> OAuthProvider:
        """
        Raises:
            UnknownProviderError: provider absent ou non configuré
        """
        provider = self._providers.get(name) if name else None
        if provider is None:
            raise UnknownProviderError(name)
        return provider

    def names(self) -> List[str]:
        return sorted(self._providers)

    @classmethod
    def from_settings(cls, settings, http: Optional[httpx.AsyncClient] = None) -> "ProviderRegistry":
        """
        Build every provider that has a client id configured.

        Args:
            settings: web.backend.config.Settings
            http: client partagé (créé avec provider_timeout_seconds si absent)
        """
        if http is None:
            http = httpx.AsyncClient(timeout=httpx.Timeout(settings.provider_timeout_seconds))

        registry = cls()
        for name, provider_cls in PROVIDER_CLASSES.items():
            client_id = getattr(settings, f"{name}_client_id", "")
            if not client_id:
                LOGGER.warning(f"⚠️ Provider {name} not configured ({name.upper()}_CLIENT_ID missing)")
                continue

            config = ProviderConfig(
                name=name,
                code_endpoint=getattr(settings, f"{name}_code_endpoint"),
                token_endpoint=getattr(settings, f"{name}_token_endpoint"),
                validate_endpoint=getattr(settings, f"{name}_validate_endpoint"),
                client_id=client_id,
                client_secret=getattr(settings, f"{name}_client_secret"),
                redirect_uri=getattr(settings, f"{name}_redirect_url"),
                scopes=tuple(scope_list(getattr(settings, f"{name}_scopes"))),
            )
            registry.register(provider_cls(config, http))
            LOGGER.info(f"✅ Provider {name} registered ({len(config.scopes)} scopes)")

        return registry
