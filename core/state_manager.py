"""
🔐 StateManager - States OAuth anti-CSRF

Each login attempt gets a single-use random state bound to the user who
started it. The callback consumes it (delete-on-read); a background sweep
removes the ones that were never used.
"""

import asyncio
import logging
import secrets
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from core.errors import StateNotFoundError, StorageError
from database.manager import DatabaseManager, from_db_time, to_db_time, utcnow

LOGGER = logging.getLogger(__name__)

STATE_TTL_SECONDS = 5 * 60


@dataclass(frozen=True)
class AuthorizationState:
    """Un state OAuth persisté"""
    state: str
    user_id: str
    provider: str
    purpose: str
    created_at: datetime
    expires_at: datetime

    @classmethod
    def from_row(cls, row: dict) -> "AuthorizationState":
        return cls(
            state=row["state"],
            user_id=row["user_id"],
            provider=row["provider"],
            purpose=row["purpose"],
            created_at=from_db_time(row["created_at"]),
            expires_at=from_db_time(row["expires_at"]),
        )


class StateManager:
    """
    Issues and consumes CSRF states.

    The sweep interval equals the expiry window: a state lives at most
    two windows in the table, and is never consumable after expires_at.
    """

    def __init__(self, db: DatabaseManager, ttl_seconds: int = STATE_TTL_SECONDS):
        self.db = db
        self.ttl = timedelta(seconds=ttl_seconds)
        self._sweep_task: Optional[asyncio.Task] = None

    async def create(self, user_id: str, provider: str, purpose: str) -> AuthorizationState:
        """
        Crée un state pour un flow de login.

        Args:
            user_id: ID de l'utilisateur qui démarre le flow
            provider: "twitch", "discord"...
            purpose: Usage des tokens ("chatbot")

        Returns:
            AuthorizationState persisté

        Raises:
            StorageError: écriture refusée
        """
        now = utcnow()
        row = {
            "user_id": user_id,
            "state": secrets.token_hex(16),
            "provider": provider,
            "purpose": purpose,
            "created_at": to_db_time(now),
            "expires_at": to_db_time(now + self.ttl),
        }
        try:
            await self.db.run(self.db.insert_state, row)
        except sqlite3.Error as e:
            raise StorageError("failed to create state", user_id=user_id, provider=provider) from e
        LOGGER.debug(f"State created for user {user_id} ({provider}/{purpose})")
        return AuthorizationState.from_row(row)

    async def use(self, user_id: str, state: str) -> AuthorizationState:
        """
        Consomme un state (une seule fois).

        Raises:
            StateNotFoundError: state consommé, expiré, forgé ou d'un autre user
            StorageError: lecture impossible
        """
        try:
            row = await self.db.run(self.db.consume_state, user_id, state, to_db_time(utcnow()))
        except sqlite3.Error as e:
            raise StorageError("failed to consume state", user_id=user_id) from e
        if row is None:
            raise StateNotFoundError("state not found", user_id=user_id)
        return AuthorizationState.from_row(row)

    async def sweep(self) -> int:
        """Delete every expired state. Returns the number of rows removed."""
        deleted = await self.db.run(self.db.delete_expired_states, to_db_time(utcnow()))
        if deleted:
            LOGGER.info(f"🧹 Removed {deleted} expired OAuth states")
        return deleted

    # ==================== SWEEPER ====================

    def start_sweeper(self) -> None:
        if self._sweep_task and not self._sweep_task.done():
            LOGGER.warning("⚠️ State sweeper already running")
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop_sweeper(self) -> None:
        if not self._sweep_task:
            return
        self._sweep_task.cancel()
        try:
            await self._sweep_task
        except asyncio.CancelledError:
            pass
        self._sweep_task = None

    async def _sweep_loop(self):
        interval = self.ttl.total_seconds()
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep()
            except Exception as e:
                LOGGER.error(f"❌ Failed to delete expired states: {e}")
