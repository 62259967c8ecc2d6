"""Tests for authflow.auth.token_store -- key/value stores and token caching."""

from __future__ import annotations

import os
import stat
import threading
from datetime import timedelta
from pathlib import Path

import pytest

from authflow.auth.token_store import FileKeyValueStore, MemoryKeyValueStore, TokenStore
from authflow.exceptions import ProviderError
from authflow.models import AccessToken, AuthorizationContext


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _context(context_id: str = "req-1", **kwargs: str) -> AuthorizationContext:
    defaults = {
        "client_id": "client",
        "access_token_url": "https://auth.example.com/token",
        "authorization_url": "https://auth.example.com/authorize",
    }
    defaults.update(kwargs)
    return AuthorizationContext(context_id=context_id, **defaults)


# ---------------------------------------------------------------------------
# MemoryKeyValueStore
# ---------------------------------------------------------------------------


class TestMemoryKeyValueStore:
    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self) -> None:
        store = MemoryKeyValueStore()
        assert await store.get("nope") is None

    @pytest.mark.asyncio
    async def test_values_are_copied(self) -> None:
        store = MemoryKeyValueStore()
        value = {"nested": {"a": 1}}
        await store.set("k", value)
        value["nested"]["a"] = 2

        fetched = await store.get("k")
        assert fetched == {"nested": {"a": 1}}
        fetched["nested"]["a"] = 3
        assert await store.get("k") == {"nested": {"a": 1}}

    @pytest.mark.asyncio
    async def test_delete_reports_presence(self) -> None:
        store = MemoryKeyValueStore()
        await store.set("k", "v")
        assert await store.delete("k") is True
        assert await store.delete("k") is False
        assert store.keys() == []


# ---------------------------------------------------------------------------
# FileKeyValueStore
# ---------------------------------------------------------------------------


class TestFileKeyValueStore:
    @pytest.mark.asyncio
    async def test_set_get_delete(self, tmp_path: Path) -> None:
        store = FileKeyValueStore(tmp_path / "store")
        await store.set("token_abc", {"access_token": "tok"})

        assert await store.get("token_abc") == {"access_token": "tok"}
        assert await store.delete("token_abc") is True
        assert await store.get("token_abc") is None
        assert await store.delete("token_abc") is False

    @pytest.mark.asyncio
    async def test_file_access_runs_off_the_event_loop(self, tmp_path: Path) -> None:
        threads: list[int] = []

        class _RecordingStore(FileKeyValueStore):
            def path_for(self, key: str) -> Path:
                threads.append(threading.get_ident())
                return super().path_for(key)

        store = _RecordingStore(tmp_path)
        await store.set("token_abc", {"access_token": "tok"})
        await store.get("token_abc")
        await store.delete("token_abc")

        assert len(threads) == 3
        assert threading.get_ident() not in threads

    @pytest.mark.asyncio
    async def test_files_are_private(self, tmp_path: Path) -> None:
        store = FileKeyValueStore(tmp_path)
        await store.set("token_abc", {"access_token": "tok"})

        mode = stat.S_IMODE(os.stat(store.path_for("token_abc")).st_mode)
        assert mode == 0o600

    def test_unsafe_keys_are_hashed(self, tmp_path: Path) -> None:
        store = FileKeyValueStore(tmp_path)
        path = store.path_for("../../etc/passwd")
        assert path.parent == tmp_path
        assert path.name.startswith("k_")

    def test_safe_keys_map_directly(self, tmp_path: Path) -> None:
        store = FileKeyValueStore(tmp_path)
        assert store.path_for("token_abc") == tmp_path / "token_abc.json"

    @pytest.mark.asyncio
    async def test_unreadable_entry_is_ignored(self, tmp_path: Path) -> None:
        store = FileKeyValueStore(tmp_path)
        store.path_for("broken").write_text("{not json")
        assert await store.get("broken") is None

    def test_default_directory_under_data_dir(self, isolated_config: Path) -> None:
        store = FileKeyValueStore()
        assert store.directory == isolated_config / "data" / "authflow" / "store"
        assert store.directory.is_dir()


# ---------------------------------------------------------------------------
# TokenStore
# ---------------------------------------------------------------------------


class TestTokenStore:
    @pytest.mark.asyncio
    async def test_expiry_follows_clock(self, clock) -> None:
        tokens = TokenStore(MemoryKeyValueStore(), clock=clock)
        token = await tokens.store_token(
            _context(), {"access_token": "tok", "expires_in": 3600}
        )

        assert token.expires_at == clock.now + timedelta(seconds=3600)
        assert not tokens.is_expired(token)

        clock.advance(3600)
        assert not tokens.is_expired(token)

        clock.advance(1)
        assert tokens.is_expired(token)

    @pytest.mark.asyncio
    async def test_token_without_expiry_never_expires(self, clock) -> None:
        tokens = TokenStore(MemoryKeyValueStore(), clock=clock)
        token = await tokens.store_token(_context(), {"access_token": "tok"})

        clock.advance(10 * 365 * 24 * 3600)
        assert token.expires_at is None
        assert not tokens.is_expired(token)

    @pytest.mark.asyncio
    async def test_round_trip_through_store(self, clock) -> None:
        tokens = TokenStore(MemoryKeyValueStore(), clock=clock)
        stored = await tokens.store_token(
            _context(),
            {
                "access_token": "tok",
                "token_type": "Bearer",
                "expires_in": "120",
                "refresh_token": "ref",
                "scope": "read write",
            },
        )

        loaded = await tokens.get_token(_context())
        assert loaded == stored
        assert isinstance(loaded, AccessToken)
        assert loaded.refresh_token == "ref"
        assert loaded.scope == "read write"
        assert loaded.raw["expires_in"] == "120"

    @pytest.mark.asyncio
    async def test_contexts_are_isolated(self, clock) -> None:
        tokens = TokenStore(MemoryKeyValueStore(), clock=clock)
        await tokens.store_token(_context(), {"access_token": "one"})

        assert await tokens.get_token(_context("req-2")) is None
        assert await tokens.get_token(_context(client_id="other")) is None
        assert (await tokens.get_token(_context())).access_token == "one"

    @pytest.mark.asyncio
    async def test_missing_token_name_raises(self, clock) -> None:
        tokens = TokenStore(MemoryKeyValueStore(), clock=clock)
        with pytest.raises(ProviderError, match="id_token not found in response access_token"):
            await tokens.store_token(_context(), {"access_token": "tok"}, token_name="id_token")

    @pytest.mark.asyncio
    async def test_id_token_only_response(self, clock) -> None:
        tokens = TokenStore(MemoryKeyValueStore(), clock=clock)
        token = await tokens.store_token(_context(), {"id_token": "idt"}, token_name="id_token")
        assert token.access_token is None
        assert token.value("id_token") == "idt"

    @pytest.mark.asyncio
    async def test_malformed_entry_is_discarded(self, clock) -> None:
        backing = MemoryKeyValueStore()
        tokens = TokenStore(backing, clock=clock)
        await backing.set(_context().store_key, {"access_token": "tok"})  # no fetched_at

        assert await tokens.get_token(_context()) is None

    @pytest.mark.asyncio
    async def test_delete_token(self, clock) -> None:
        tokens = TokenStore(MemoryKeyValueStore(), clock=clock)
        await tokens.store_token(_context(), {"access_token": "tok"})

        assert await tokens.delete_token(_context()) is True
        assert await tokens.get_token(_context()) is None
        assert await tokens.delete_token(_context()) is False

    @pytest.mark.asyncio
    async def test_data_dir_key_is_stable_until_reset(self) -> None:
        tokens = TokenStore(MemoryKeyValueStore())
        first = await tokens.get_data_dir_key("req-1")

        assert await tokens.get_data_dir_key("req-1") == first
        assert await tokens.get_data_dir_key("req-2") != first

        reset = await tokens.reset_data_dir_key("req-1")
        assert reset != first
        assert await tokens.get_data_dir_key("req-1") == reset

    @pytest.mark.asyncio
    async def test_file_backed_token_survives_new_store(self, tmp_path: Path, clock) -> None:
        await TokenStore(FileKeyValueStore(tmp_path), clock=clock).store_token(
            _context(), {"access_token": "tok", "expires_in": 60}
        )

        loaded = await TokenStore(FileKeyValueStore(tmp_path), clock=clock).get_token(_context())
        assert loaded is not None
        assert loaded.access_token == "tok"
        assert loaded.expires_at == clock.now + timedelta(seconds=60)
