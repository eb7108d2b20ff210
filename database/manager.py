#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
AonyxEngine - Database Manager

Row-level CRUD over the three tables the engine needs:
    - oauth_states    (CSRF states, delete-on-read)
    - oauth_tokens    (encrypted tokens, upsert per key)
    - twitch_chatbots (EventSub subscriber roster)

The manager never sees plaintext tokens: encryption is done by the
Token Store before rows reach this layer.
"""

import asyncio
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db_time(value: datetime) -> str:
    """Fixed-width ISO format so string comparison matches time order."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def from_db_time(value: str) -> datetime:
    return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S.%fZ").replace(tzinfo=timezone.utc)


class DatabaseManager:
    """
    Gestionnaire principal de la base de données.

    One short-lived SQLite connection per call, so every method is safe
    to run from the default executor (see ``run``).
    """

    def __init__(self, db_path: str = "aonyxengine.db"):
        """
        Args:
            db_path: Chemin vers le fichier SQLite
        """
        self.db_path = db_path

        if not Path(db_path).exists():
            raise FileNotFoundError(
                f"Database file not found: {db_path}\n"
                f"Run: python -m database.init_db --db {db_path}"
            )

        self._setup_connection()
        logger.info(f"DatabaseManager initialized: {db_path}")

    def _setup_connection(self):
        """Configure les paramètres SQLite."""
        with self._get_connection() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA busy_timeout = 5000")
            conn.execute("PRAGMA synchronous = NORMAL")

    @contextmanager
    def _get_connection(self):
        """
        Context manager pour les connexions SQLite.

        Usage:
            with manager._get_connection() as conn:
                cursor = conn.execute(...)
        """
        conn = sqlite3.connect(self.db_path, timeout=5.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"Database error: {e}")
            raise
        finally:
            conn.close()

    async def run(self, func: Callable[..., Any], *args: Any) -> Any:
        """Run a blocking manager call in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    # ==================== OAUTH STATES ====================

    def insert_state(self, row: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insère un state OAuth.

        Args:
            row: user_id, state, provider, purpose, created_at, expires_at

        Returns:
            La ligne insérée
        """
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO oauth_states (user_id, state, provider, purpose, created_at, expires_at)
                VALUES (:user_id, :state, :provider, :purpose, :created_at, :expires_at)
                """,
                row
            )
        return dict(row)

    def consume_state(self, user_id: str, state: str, now: str) -> Optional[Dict[str, Any]]:
        """
        Supprime et retourne un state non expiré, en une seule transaction.

        BEGIN IMMEDIATE takes the write lock before the SELECT, so two
        concurrent callbacks cannot both read the same row.

        Returns:
            La ligne supprimée ou None
        """
        conn = sqlite3.connect(self.db_path, timeout=5.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                """
                SELECT user_id, state, provider, purpose, created_at, expires_at
                FROM oauth_states
                WHERE user_id = ? AND state = ? AND expires_at > ?
                """,
                (user_id, state, now)
            ).fetchone()

            if row is None:
                conn.execute("COMMIT")
                return None

            conn.execute(
                "DELETE FROM oauth_states WHERE user_id = ? AND state = ?",
                (user_id, state)
            )
            conn.execute("COMMIT")
            return dict(row)
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def delete_expired_states(self, now: str) -> int:
        """
        Supprime les states expirés.

        Returns:
            Nombre de lignes supprimées
        """
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM oauth_states WHERE expires_at <= ?", (now,))
            return cursor.rowcount

    # ==================== OAUTH TOKENS ====================

    def get_token_row(self, user_id: str, provider: str, purpose: str,
                      token_type: str) -> Optional[Dict[str, Any]]:
        """
        Récupère une ligne de token (toujours chiffrée).

        Returns:
            Dict avec token, provider_user_id, expires_at... ou None
        """
        with self._get_connection() as conn:
            row = conn.execute(
                """
                SELECT user_id, provider, purpose, token_type, token, provider_user_id,
                       created_at, expires_at
                FROM oauth_tokens
                WHERE user_id = ? AND provider = ? AND purpose = ? AND token_type = ?
                """,
                (user_id, provider, purpose, token_type)
            ).fetchone()
            return dict(row) if row else None

    def upsert_token_row(self, row: Dict[str, Any]) -> None:
        """
        Insère ou remplace un token sur la clé (user_id, provider, purpose, token_type).

        Args:
            row: user_id, provider, purpose, token_type, token (chiffré),
                 provider_user_id, created_at, expires_at
        """
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO oauth_tokens
                    (user_id, provider, purpose, token_type, token, provider_user_id, created_at, expires_at)
                VALUES
                    (:user_id, :provider, :purpose, :token_type, :token, :provider_user_id, :created_at, :expires_at)
                ON CONFLICT (user_id, provider, purpose, token_type) DO UPDATE SET
                    token = excluded.token,
                    provider_user_id = excluded.provider_user_id,
                    created_at = excluded.created_at,
                    expires_at = excluded.expires_at
                """,
                row
            )

    # ==================== SUBSCRIBERS ====================

    def list_chatbots(self) -> List[Dict[str, Any]]:
        """Retourne tout le roster EventSub."""
        with self._get_connection() as conn:
            cursor = conn.execute("SELECT id, user_id, created_at FROM twitch_chatbots ORDER BY id")
            return [dict(row) for row in cursor.fetchall()]

    def add_chatbot(self, user_id: str) -> int:
        """
        Ajoute un utilisateur au roster (idempotent).

        Returns:
            L'ID de la ligne
        """
        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO twitch_chatbots (user_id, created_at) VALUES (?, ?)",
                (user_id, to_db_time(utcnow()))
            )
            row = conn.execute("SELECT id FROM twitch_chatbots WHERE user_id = ?", (user_id,)).fetchone()
            logger.info(f"Chatbot registered for user {user_id}")
            return row["id"]

    def remove_chatbot(self, user_id: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM twitch_chatbots WHERE user_id = ?", (user_id,))
            return cursor.rowcount > 0

    # ==================== MAINTENANCE ====================

    def get_stats(self) -> Dict[str, int]:
        """
        Récupère des statistiques sur la base de données.

        Returns:
            Dict avec states_count, tokens_count, chatbots_count
        """
        with self._get_connection() as conn:
            return {
                "states_count": conn.execute("SELECT COUNT(*) FROM oauth_states").fetchone()[0],
                "tokens_count": conn.execute("SELECT COUNT(*) FROM oauth_tokens").fetchone()[0],
                "chatbots_count": conn.execute("SELECT COUNT(*) FROM twitch_chatbots").fetchone()[0],
            }
