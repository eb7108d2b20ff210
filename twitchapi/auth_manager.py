#!/usr/bin/env python3
"""
AuthManager
Fournit un access token valide par utilisateur (refresh transparent)
"""

import logging
from typing import Set, Tuple

from core.errors import (
    DecryptionError,
    NoRefreshTokenError,
    NotFoundError,
    RefreshFailedError,
    StorageError,
)
from core.token_store import ACCESS_TOKEN, REFRESH_TOKEN, TokenData, TokenStore
from twitchapi.providers import ProviderRegistry

LOGGER = logging.getLogger(__name__)

DEFAULT_PROVIDER = "twitch"
DEFAULT_PURPOSE = "chatbot"


class AuthManager:
    """
    Token refresher on top of the TokenStore.

    - access token présent → retourné tel quel (pas de contrôle d'expiration)
    - access token refusé par le provider (401) → refresh au prochain appel
    - sinon refresh via le provider, puis écriture refresh → access
    """

    def __init__(self, store: TokenStore, providers: ProviderRegistry):
        self.store = store
        self.providers = providers
        self._rejected: Set[Tuple[str, str, str]] = set()

        LOGGER.info("AuthManager initialisé")

    async def get_valid_token(self, user_id: str, provider: str = DEFAULT_PROVIDER,
                              purpose: str = DEFAULT_PURPOSE) -> TokenData:
        """
        Retourne un access token utilisable.

        Args:
            user_id: ID utilisateur (côté application)
            provider: "twitch" par défaut
            purpose: "chatbot" par défaut

        Returns:
            TokenData (token + provider_user_id)

        Raises:
            NoRefreshTokenError: refresh token absent, illisible ou lecture impossible
            RefreshFailedError: le provider a refusé ou l'écriture a échoué
            UnknownProviderError: provider non configuré
        """
        key = (user_id, provider, purpose)
        try:
            if key not in self._rejected:
                return await self.store.get(user_id, provider, purpose, ACCESS_TOKEN)
            LOGGER.info(f"🔄 Access token rejected by {provider} for user {user_id}, refreshing")
        except NotFoundError:
            LOGGER.info(f"🔄 No access token for user {user_id} ({provider}/{purpose}), refreshing")
        except DecryptionError:
            LOGGER.warning(f"⚠️ Unreadable access token for user {user_id} ({provider}/{purpose}), refreshing")

        try:
            stored_refresh = await self.store.get(user_id, provider, purpose, REFRESH_TOKEN)
        except (NotFoundError, DecryptionError, StorageError) as e:
            LOGGER.error(f"❌ [{NoRefreshTokenError.reason}] user={user_id} provider={provider} ({e.reason})")
            raise NoRefreshTokenError("no usable refresh token", user_id=user_id, provider=provider,
                                      purpose=purpose) from e

        oauth_provider = self.providers.get(provider)

        try:
            grant = await oauth_provider.refresh(stored_refresh.token)
        except RefreshFailedError as e:
            LOGGER.error(f"❌ [{e.reason}] user={user_id} provider={provider}: {e}")
            raise

        provider_user_id = stored_refresh.provider_user_id
        new_refresh = TokenData(token=grant.refresh_token or stored_refresh.token,
                                provider_user_id=provider_user_id)
        new_access = TokenData(token=grant.access_token, provider_user_id=provider_user_id)

        # Refresh token first: losing it means a forced re-login
        try:
            await self.store.set(user_id, provider, purpose, REFRESH_TOKEN, new_refresh)
            await self.store.set(user_id, provider, purpose, ACCESS_TOKEN, new_access)
        except StorageError as e:
            LOGGER.error(f"❌ [{RefreshFailedError.reason}] user={user_id} provider={provider}: {e}")
            raise RefreshFailedError("failed to store refreshed tokens") from e

        self._rejected.discard(key)
        LOGGER.info(f"✅ Token refreshed for user {user_id} ({provider}/{purpose})")
        return new_access

    def invalidate_access_token(self, user_id: str, provider: str = DEFAULT_PROVIDER,
                                purpose: str = DEFAULT_PURPOSE) -> None:
        """
        Provider answered 401: drop the cached access token and refresh on
        the next get_valid_token. The stored row is left as is.
        """
        self._rejected.add((user_id, provider, purpose))
        self.store.invalidate(user_id, provider, purpose, ACCESS_TOKEN)
        LOGGER.debug(f"Access token marked stale for user {user_id} ({provider}/{purpose})")
