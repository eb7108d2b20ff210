"""
TokenStore - Tokens OAuth chiffrés + cache mémoire

Read-through cache in front of the oauth_tokens table:
    get: cache → DB row → decrypt → cache
    set: encrypt → upsert → cache (only once the write is durable)

The cache is a plain dict shared by every caller of the process. No
per-key lock: concurrent writes to the same key are last-write-wins.
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, Optional, Tuple

from core.errors import NotFoundError, StorageError
from database.crypto import TokenCipher
from database.manager import DatabaseManager, to_db_time, utcnow

LOGGER = logging.getLogger(__name__)

ACCESS_TOKEN = "access_token"
REFRESH_TOKEN = "refresh_token"
TOKEN_KINDS = (ACCESS_TOKEN, REFRESH_TOKEN)

TOKEN_TTL_SECONDS = 60 * 60

CacheKey = Tuple[str, str, str, str]


@dataclass(frozen=True)
class TokenData:
    """Token déchiffré + identité côté provider"""
    token: str = field(repr=False)
    provider_user_id: Optional[str] = None


@dataclass
class CacheEntry:
    """Miroir mémoire d'un TokenRecord déchiffré."""
    token: str = field(repr=False)
    provider_user_id: Optional[str]

    def to_data(self) -> TokenData:
        return TokenData(token=self.token, provider_user_id=self.provider_user_id)


class TokenStore:
    """
    Encrypted token persistence keyed by (user_id, provider, purpose, token_kind).

    ``expires_at`` is an internal horizon (one hour), not the provider's
    expiry; presence of a row is what the refresher relies on.
    """

    def __init__(self, db: DatabaseManager, cipher: TokenCipher, ttl_seconds: int = TOKEN_TTL_SECONDS):
        self.db = db
        self.cipher = cipher
        self.ttl = timedelta(seconds=ttl_seconds)
        self._cache: Dict[CacheKey, CacheEntry] = {}

    @staticmethod
    def _key(user_id: str, provider: str, purpose: str, token_kind: str) -> CacheKey:
        if token_kind not in TOKEN_KINDS:
            raise ValueError(f"Unknown token kind: {token_kind}")
        return (user_id, provider, purpose, token_kind)

    async def get(self, user_id: str, provider: str, purpose: str, token_kind: str) -> TokenData:
        """
        Récupère un token déchiffré.

        Raises:
            NotFoundError: aucune ligne pour cette clé
            DecryptionError: ligne illisible (le cache n'est pas alimenté)
            StorageError: lecture impossible
        """
        key = self._key(user_id, provider, purpose, token_kind)

        cached = self._cache.get(key)
        if cached is not None:
            return cached.to_data()

        try:
            row = await self.db.run(self.db.get_token_row, user_id, provider, purpose, token_kind)
        except sqlite3.Error as e:
            raise StorageError("failed to read token", user_id=user_id, provider=provider,
                               token_kind=token_kind) from e

        if row is None:
            raise NotFoundError("token not found", user_id=user_id, provider=provider,
                                purpose=purpose, token_kind=token_kind)

        # DecryptionError propagates: a corrupt row is never a valid empty token
        token = self.cipher.decrypt(row["token"])

        entry = CacheEntry(token=token, provider_user_id=row["provider_user_id"])
        self._cache[key] = entry
        return entry.to_data()

    async def set(self, user_id: str, provider: str, purpose: str, token_kind: str, data: TokenData) -> None:
        """
        Chiffre et persiste un token, puis met à jour le cache.

        Raises:
            StorageError: écriture refusée (cache inchangé)
        """
        key = self._key(user_id, provider, purpose, token_kind)

        now = utcnow()
        row = {
            "user_id": user_id,
            "provider": provider,
            "purpose": purpose,
            "token_type": token_kind,
            "token": self.cipher.encrypt(data.token),
            "provider_user_id": data.provider_user_id,
            "created_at": to_db_time(now),
            "expires_at": to_db_time(now + self.ttl),
        }

        try:
            await self.db.run(self.db.upsert_token_row, row)
        except sqlite3.Error as e:
            raise StorageError("failed to set token", user_id=user_id, provider=provider,
                               token_kind=token_kind) from e

        self._cache[key] = CacheEntry(token=data.token, provider_user_id=data.provider_user_id)
        LOGGER.debug(f"Token {token_kind} stored for user {user_id} ({provider}/{purpose})")

    def invalidate(self, user_id: str, provider: str, purpose: str, token_kind: str) -> None:
        """Drop one cache entry; the next get re-reads the store."""
        self._cache.pop(self._key(user_id, provider, purpose, token_kind), None)

    def clear_cache(self) -> None:
        self._cache.clear()

    def get_stats(self) -> Dict[str, int]:
        return {"cached_tokens": len(self._cache)}
