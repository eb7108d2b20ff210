"""
Tests AuthManager (access token valide, refresh transparent)
"""
import sqlite3
from unittest.mock import patch

import pytest

from core.errors import NoRefreshTokenError, RefreshFailedError
from core.token_store import ACCESS_TOKEN, REFRESH_TOKEN, TokenData

KEY = ("U1", "twitch", "chatbot")


@pytest.mark.integration
class TestGetValidToken:

    @pytest.mark.asyncio
    async def test_stored_access_token_returned(self, store, auth, fake_api):
        await store.set(*KEY, ACCESS_TOKEN, TokenData("current", "tw_42"))

        data = await auth.get_valid_token("U1")

        assert data.token == "current"
        assert fake_api.requests == []

    @pytest.mark.asyncio
    async def test_refresh_when_only_refresh_token(self, db, store, auth, fake_api):
        await store.set(*KEY, REFRESH_TOKEN, TokenData("old-refresh", "tw_42"))

        data = await auth.get_valid_token("U1", "twitch", "chatbot")

        assert data.token == "access-from-refresh"
        assert data.provider_user_id == "tw_42"
        assert len(fake_api.calls("/oauth2/token")) == 1
        assert fake_api.forms()[0]["refresh_token"] == "old-refresh"

        store.clear_cache()
        assert (await store.get(*KEY, ACCESS_TOKEN)).token == "access-from-refresh"
        refresh = await store.get(*KEY, REFRESH_TOKEN)
        assert refresh.token == "refresh-from-refresh"
        assert refresh.provider_user_id == "tw_42"
        assert db.get_stats()["tokens_count"] == 2

    @pytest.mark.asyncio
    async def test_refresh_token_written_first(self, store, auth):
        await store.set(*KEY, REFRESH_TOKEN, TokenData("old-refresh", "tw_42"))

        with patch.object(store, "set", wraps=store.set) as spy:
            await auth.get_valid_token("U1")

        kinds = [call.args[3] for call in spy.call_args_list]
        assert kinds == [REFRESH_TOKEN, ACCESS_TOKEN]

    @pytest.mark.asyncio
    async def test_keeps_refresh_token_when_not_rotated(self, store, auth, fake_api):
        fake_api.refresh_payload = {"access_token": "new-access", "scope": []}
        await store.set(*KEY, REFRESH_TOKEN, TokenData("old-refresh", "tw_42"))

        await auth.get_valid_token("U1")

        store.clear_cache()
        assert (await store.get(*KEY, REFRESH_TOKEN)).token == "old-refresh"

    @pytest.mark.asyncio
    async def test_no_refresh_token(self, auth, fake_api):
        with pytest.raises(NoRefreshTokenError) as exc:
            await auth.get_valid_token("U1")
        assert exc.value.reason == "no-refresh-token"
        assert fake_api.requests == []

    @pytest.mark.asyncio
    async def test_refresh_rejected(self, db, store, auth, fake_api):
        fake_api.refresh_payload = {"error": "Bad Request", "status": 400, "message": "Invalid refresh token"}
        await store.set(*KEY, REFRESH_TOKEN, TokenData("revoked", "tw_42"))

        with pytest.raises(RefreshFailedError):
            await auth.get_valid_token("U1")
        assert db.get_stats()["tokens_count"] == 1

    @pytest.mark.asyncio
    async def test_rejected_access_token_refreshed(self, store, auth, fake_api):
        await store.set(*KEY, ACCESS_TOKEN, TokenData("rejected", "tw_42"))
        await store.set(*KEY, REFRESH_TOKEN, TokenData("old-refresh", "tw_42"))

        auth.invalidate_access_token("U1")
        assert (await auth.get_valid_token("U1")).token == "access-from-refresh"

        # Back to the stored token once refreshed
        assert (await auth.get_valid_token("U1")).token == "access-from-refresh"
        assert len(fake_api.calls("/oauth2/token")) == 1

    @pytest.mark.asyncio
    async def test_rejected_without_refresh_token(self, store, auth):
        await store.set(*KEY, ACCESS_TOKEN, TokenData("rejected", "tw_42"))
        auth.invalidate_access_token("U1")

        with pytest.raises(NoRefreshTokenError):
            await auth.get_valid_token("U1")

    @pytest.mark.asyncio
    async def test_refresh_storage_failure(self, db, store, auth, fake_api):
        await store.set(*KEY, ACCESS_TOKEN, TokenData("rejected", "tw_42"))
        await store.set(*KEY, REFRESH_TOKEN, TokenData("old-refresh", "tw_42"))
        auth.invalidate_access_token("U1")

        with patch.object(db, "upsert_token_row", side_effect=sqlite3.OperationalError("database is locked")):
            with pytest.raises(RefreshFailedError) as exc:
                await auth.get_valid_token("U1")

        assert "access-from-refresh" not in str(exc.value)
        assert len(fake_api.calls("/oauth2/token")) == 1
        # Still stale: the next call refreshes again
        assert KEY in auth._rejected
        store.clear_cache()
        assert (await store.get(*KEY, REFRESH_TOKEN)).token == "old-refresh"

    @pytest.mark.asyncio
    async def test_refresh_token_unreadable_storage(self, db, auth, fake_api):
        read_row = db.get_token_row

        def locked_on_refresh(user_id, provider, purpose, token_kind):
            if token_kind == REFRESH_TOKEN:
                raise sqlite3.OperationalError("database is locked")
            return read_row(user_id, provider, purpose, token_kind)

        with patch.object(db, "get_token_row", side_effect=locked_on_refresh):
            with pytest.raises(NoRefreshTokenError):
                await auth.get_valid_token("U1")

        assert fake_api.requests == []
