"""
Engine - Assemblage des composants (construit une seule fois au démarrage)

    DatabaseManager + TokenCipher
        → StateManager, TokenStore
        → ProviderRegistry (httpx partagé)
        → AuthManager, AuthorizationPipeline, SubscriptionFanout
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from core.authorization import AuthorizationPipeline
from core.message_bus import MessageBus
from core.state_manager import StateManager
from core.token_store import TokenStore
from database.crypto import TokenCipher, load_key
from database.manager import DatabaseManager
from twitchapi.auth_manager import AuthManager
from twitchapi.providers import ProviderRegistry
from twitchapi.subscriptions import SubscriptionFanout
from twitchapi.transports.eventsub_client import EventSubConfig

LOGGER = logging.getLogger(__name__)


@dataclass
class Engine:
    """Toutes les instances partagées du process."""
    db: DatabaseManager
    cipher: TokenCipher
    states: StateManager
    store: TokenStore
    providers: ProviderRegistry
    auth: AuthManager
    pipeline: AuthorizationPipeline
    fanout: SubscriptionFanout
    bus: MessageBus
    http: httpx.AsyncClient

    async def aclose(self) -> None:
        await self.states.stop_sweeper()
        await self.http.aclose()
        LOGGER.info("✅ Engine closed")


def build_engine(settings, http: Optional[httpx.AsyncClient] = None,
                 eventsub_config: Optional[EventSubConfig] = None) -> Engine:
    """
    Construit l'Engine à partir des Settings.

    Args:
        settings: web.backend.config.Settings
        http: client httpx (tests: MockTransport)
        eventsub_config: types de subscriptions (défaut: fichier YAML des settings)

    Raises:
        ValueError: clé de chiffrement invalide
        FileNotFoundError: base non initialisée
    """
    cipher = TokenCipher(load_key(settings.aonyxengine_secret_key))
    LOGGER.info(f"🔐 Token cipher ready (key fingerprint: {cipher.get_key_fingerprint()})")

    db = DatabaseManager(db_path=settings.database_path)

    if http is None:
        http = httpx.AsyncClient(timeout=httpx.Timeout(settings.provider_timeout_seconds))

    if eventsub_config is None:
        eventsub_config = EventSubConfig.from_file(settings.config_file)

    states = StateManager(db, ttl_seconds=settings.state_ttl_seconds)
    store = TokenStore(db, cipher, ttl_seconds=settings.token_ttl_seconds)
    providers = ProviderRegistry.from_settings(settings, http=http)
    LOGGER.info(f"🔑 OAuth providers: {', '.join(providers.names()) or 'none'}")
    auth = AuthManager(store, providers)

    return Engine(
        db=db,
        cipher=cipher,
        states=states,
        store=store,
        providers=providers,
        auth=auth,
        pipeline=AuthorizationPipeline(states, providers, store),
        fanout=SubscriptionFanout(
            db,
            auth,
            http,
            client_id=settings.twitch_client_id,
            subscriptions=eventsub_config.subscriptions,
            endpoint=settings.twitch_subscription_endpoint,
        ),
        bus=MessageBus(),
        http=http,
    )
