"""
Key-value stores backing provider health and provider secrets.

The engine never holds process-wide state: trackers and secret stores are
handed a KeyValueStore at construction. Values are JSON-compatible and are
copied on the way in and out, so callers cannot mutate stored records.
"""

import asyncio
import copy
from typing import Any, Optional, Protocol

import structlog

from llm_consensus.state.database import Database

logger = structlog.get_logger(__name__)

SECRET_KEY_PREFIX = "provider_key:"


class KeyValueStore(Protocol):
    """Async key-value storage used by the health tracker and secret store."""

    async def get(self, key: str) -> Optional[Any]:
        ...

    async def set(self, key: str, value: Any) -> None:
        ...

    async def delete(self, key: str) -> bool:
        ...


class InMemoryStore:
    """Dict-backed store for tests and single-shot runs."""

    def __init__(self, initial: Optional[dict[str, Any]] = None):
        self._data: dict[str, Any] = copy.deepcopy(initial) if initial else {}

    async def get(self, key: str) -> Optional[Any]:
        value = self._data.get(key)
        return copy.deepcopy(value) if value is not None else None

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def keys(self) -> list[str]:
        return list(self._data)


class DatabaseStore:
    """
    Store backed by the system_state table.

    SQLite calls are blocking, so each one runs in a worker thread to keep
    the event loop free while other providers are in flight.
    """

    def __init__(self, db: Database):
        self.db = db

    async def get(self, key: str) -> Optional[Any]:
        return await asyncio.to_thread(self.db.get_state, key)

    async def set(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self.db.set_state, key, value)

    async def delete(self, key: str) -> bool:
        return await asyncio.to_thread(self.db.delete_state, key)


class SecretStore:
    """
    Per-provider secret bundles.

    Secrets are stored as one mapping per provider, e.g.
    {"API_KEY": "sk-..."}, and referenced from header/body templates
    as {{API_KEY}}.
    """

    def __init__(self, store: KeyValueStore):
        self._store = store

    @staticmethod
    def _key(provider_id: str) -> str:
        return f"{SECRET_KEY_PREFIX}{provider_id}"

    async def get_secrets(self, provider_id: str) -> Optional[dict[str, str]]:
        """Return a snapshot of the provider's secrets, or None if none stored."""
        secrets = await self._store.get(self._key(provider_id))
        if secrets is None:
            return None
        return {str(k): str(v) for k, v in secrets.items()}

    async def set_secret(self, provider_id: str, name: str, value: str) -> None:
        """Store or replace one named secret for a provider."""
        secrets = await self._store.get(self._key(provider_id)) or {}
        secrets[name] = value
        await self._store.set(self._key(provider_id), secrets)
        # Never log the value itself
        logger.info("provider_secret_stored", provider_id=provider_id, name=name)

    async def delete_secrets(self, provider_id: str) -> bool:
        return await self._store.delete(self._key(provider_id))
