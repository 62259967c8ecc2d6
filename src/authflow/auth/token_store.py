"""Persistent token cache keyed by authorization context.

Tokens live in a host-provided :class:`KeyValueStore`. Two implementations
ship with the package:

- :class:`FileKeyValueStore` -- one JSON file per key under
  ``~/.local/share/authflow/store/`` (XDG) or the platform-equivalent
  directory, written atomically with ``0o600`` permissions so tokens are
  never world-readable, even momentarily.
- :class:`MemoryKeyValueStore` -- process-local, for tests and hosts that
  do their own persistence.

:class:`TokenStore` layers the token semantics on top: it builds an
:class:`~authflow.models.AccessToken` from a provider response, computes its
expiry from an injectable clock, and manages the per-context key that
isolates embedded browser sessions.

Writes are last-write-wins and unlocked.
"""

from __future__ import annotations

import asyncio
import copy
import hashlib
import json
import logging
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

from pydantic import ValidationError

from authflow.config import atomic_write, get_data_dir
from authflow.exceptions import ProviderError
from authflow.models import AccessToken, AuthorizationContext

logger = logging.getLogger(__name__)

_SAFE_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]{1,128}$")


class KeyValueStore(Protocol):
    """Asynchronous key/value persistence provided by the host."""

    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def delete(self, key: str) -> bool: ...


class MemoryKeyValueStore:
    """In-memory :class:`KeyValueStore`. Values are deep-copied on the way in and out."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    async def get(self, key: str) -> Optional[Any]:
        value = self._data.get(key)
        return copy.deepcopy(value)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def keys(self) -> list[str]:
        return sorted(self._data)


def _default_store_dir() -> Path:
    path = get_data_dir() / "store"
    path.mkdir(parents=True, exist_ok=True)
    return path


class FileKeyValueStore:
    """File-backed :class:`KeyValueStore`, one JSON document per key.

    Keys made of ``[A-Za-z0-9_.-]`` map directly to file names; anything
    else is hashed so callers cannot escape the store directory.

    Args:
        directory: Where to keep the files. Defaults to
            ``<data_dir>/store``.

    Example::

        store = FileKeyValueStore()
        await store.set("token_abc", {"access_token": "tok"})
        assert (await store.get("token_abc"))["access_token"] == "tok"
    """

    def __init__(self, directory: Optional[Path] = None) -> None:
        self._directory = directory

    @property
    def directory(self) -> Path:
        if self._directory is None:
            self._directory = _default_store_dir()
        return self._directory

    def path_for(self, key: str) -> Path:
        """Return the file a key is stored in."""
        if _SAFE_KEY_RE.match(key):
            name = key
        else:
            name = "k_" + hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.directory / f"{name}.json"

    async def get(self, key: str) -> Optional[Any]:
        return await asyncio.to_thread(self._read, key)

    async def set(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self._write, key, value)

    async def delete(self, key: str) -> bool:
        return await asyncio.to_thread(self._remove, key)

    def _read(self, key: str) -> Optional[Any]:
        path = self.path_for(key)
        if not path.is_file():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Ignoring unreadable store entry %s: %s", path.name, exc)
            return None

    def _write(self, key: str, value: Any) -> None:
        text = json.dumps(value, indent=2) + "\n"
        atomic_write(self.path_for(key), text, mode=0o600)

    def _remove(self, key: str) -> bool:
        path = self.path_for(key)
        if not path.is_file():
            return False
        path.unlink()
        return True


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenStore:
    """Read and write cached tokens for authorization contexts.

    Args:
        store: Backing key/value store.
        clock: Returns the current time; replaced in tests to move time
            forward without sleeping.
    """

    def __init__(
        self,
        store: KeyValueStore,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def is_expired(self, token: AccessToken) -> bool:
        """Whether *token* has expired according to this store's clock."""
        return token.is_expired(self._clock())

    async def get_token(self, context: AuthorizationContext) -> Optional[AccessToken]:
        """Return the cached token for *context*, expired or not, or ``None``."""
        data = await self._store.get(context.store_key)
        if data is None:
            return None
        try:
            return AccessToken.model_validate(data)
        except ValidationError as exc:
            logger.warning("Discarding malformed cached token for %s: %s", context.context_id, exc)
            return None

    async def store_token(
        self,
        context: AuthorizationContext,
        response: dict[str, Any],
        token_name: str = "access_token",
    ) -> AccessToken:
        """Build an :class:`AccessToken` from a provider response and persist it.

        Args:
            context: Slot to write.
            response: Parsed token-endpoint response (or callback fragment).
            token_name: Field that must be present, ``access_token`` or
                ``id_token``.

        Raises:
            ProviderError: If the response lacks *token_name*.
        """
        if not response.get(token_name):
            keys = ", ".join(sorted(response)) or "(empty)"
            raise ProviderError(f"{token_name} not found in response {keys}")
        token = AccessToken.from_response(response, fetched_at=self._clock())
        await self._store.set(context.store_key, token.model_dump(mode="json"))
        logger.debug(
            "Stored token for context %s (expires_at=%s)", context.context_id, token.expires_at
        )
        return token

    async def delete_token(self, context: AuthorizationContext) -> bool:
        """Remove the cached token. Returns ``False`` if there was none."""
        return await self._store.delete(context.store_key)

    @staticmethod
    def _data_dir_store_key(context_id: str) -> str:
        digest = hashlib.sha256(context_id.encode("utf-8")).hexdigest()[:32]
        return f"data_dir_{digest}"

    async def get_data_dir_key(self, context_id: str) -> str:
        """Return the embedded-browser session key for *context_id*, creating it on first use."""
        store_key = self._data_dir_store_key(context_id)
        existing = await self._store.get(store_key)
        if isinstance(existing, str) and existing:
            return existing
        return await self.reset_data_dir_key(context_id)

    async def reset_data_dir_key(self, context_id: str) -> str:
        """Replace the session key so the next embedded window starts without cookies."""
        value = uuid.uuid4().hex
        await self._store.set(self._data_dir_store_key(context_id), value)
        return value
