"""
Credential Store

Holds the single opaque API token used by the remote backend. The
orchestrator only ever awaits get(); acquiring a token interactively is the
job of the calling layer (API route or CLI prompt).

All operations are coroutines so that network-backed stores never block the
event loop.
"""

import json
import asyncio
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from bgzap.core.config import settings
from bgzap.core.logging import get_logger

logger = get_logger(__name__)

TOKEN_ENTRY = "api_token"


def _normalize(token: str) -> str:
    token = (token or "").strip()
    if not token:
        raise ValueError("API token must not be empty")
    return token


class CredentialStore(ABC):
    """get/set/clear contract for the API token."""

    @abstractmethod
    async def get(self) -> Optional[str]:
        """Return the stored token or None."""

    @abstractmethod
    async def set(self, token: str) -> None:
        """Store a token (surrounding whitespace is stripped)."""

    @abstractmethod
    async def clear(self) -> None:
        """Remove the stored token."""

    async def has_credential(self) -> bool:
        return bool(await self.get())

    async def aclose(self) -> None:
        """Release any connection held by the store."""


class InMemoryCredentialStore(CredentialStore):
    """Process-local store, used in tests and as a fallback."""

    def __init__(self, token: Optional[str] = None):
        self._token = _normalize(token) if token else None

    async def get(self) -> Optional[str]:
        return self._token

    async def set(self, token: str) -> None:
        self._token = _normalize(token)

    async def clear(self) -> None:
        self._token = None


class FileCredentialStore(CredentialStore):
    """
    JSON file with a single "api_token" entry.

    The file is created with owner-only permissions. A missing or unreadable
    file reads as "no credential". File access runs in a worker thread.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> dict:
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning("credential_file_unreadable", path=str(self.path), error=str(e))
            return {}

    def _write(self, data: dict):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data), encoding="utf-8")
        self.path.chmod(0o600)

    def _get_sync(self) -> Optional[str]:
        with self._lock:
            return self._read().get(TOKEN_ENTRY) or None

    def _set_sync(self, token: str):
        with self._lock:
            data = self._read()
            data[TOKEN_ENTRY] = token
            self._write(data)

    def _clear_sync(self) -> bool:
        with self._lock:
            data = self._read()
            if TOKEN_ENTRY not in data:
                return False
            del data[TOKEN_ENTRY]
            self._write(data)
            return True

    async def get(self) -> Optional[str]:
        return await asyncio.to_thread(self._get_sync)

    async def set(self, token: str) -> None:
        await asyncio.to_thread(self._set_sync, _normalize(token))
        logger.info("credential_stored", backend="file")

    async def clear(self) -> None:
        if await asyncio.to_thread(self._clear_sync):
            logger.info("credential_cleared", backend="file")


class RedisCredentialStore(CredentialStore):
    """Single Redis key, for deployments that share the token across workers."""

    def __init__(self, redis_client, key: str = "bgzap:api_token"):
        self.redis = redis_client
        self.key = key

    @classmethod
    def from_url(cls, url: str, key: str) -> "RedisCredentialStore":
        import redis.asyncio as redis

        return cls(redis.from_url(url, decode_responses=True), key=key)

    async def get(self) -> Optional[str]:
        value = await self.redis.get(self.key)
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value or None

    async def set(self, token: str) -> None:
        await self.redis.set(self.key, _normalize(token))
        logger.info("credential_stored", backend="redis")

    async def clear(self) -> None:
        await self.redis.delete(self.key)
        logger.info("credential_cleared", backend="redis")

    async def aclose(self) -> None:
        await self.redis.aclose()


class CredentialStoreFactory:
    """Builds the configured store once per process."""

    _instance: Optional[CredentialStore] = None

    @staticmethod
    def _build() -> CredentialStore:
        backend = settings.CREDENTIAL_BACKEND.lower()
        if backend == "memory":
            return InMemoryCredentialStore()
        if backend == "file":
            return FileCredentialStore(settings.CREDENTIAL_FILE_PATH)
        if backend == "redis":
            return RedisCredentialStore.from_url(settings.REDIS_URL, key=settings.CREDENTIAL_REDIS_KEY)
        raise ValueError(f"Unknown CREDENTIAL_BACKEND: {settings.CREDENTIAL_BACKEND}")

    @classmethod
    async def get_store(cls) -> CredentialStore:
        if cls._instance is None:
            store = cls._build()
            if settings.REPLICATE_API_TOKEN and not await store.has_credential():
                await store.set(settings.REPLICATE_API_TOKEN)

            logger.info("credential_store_ready", backend=settings.CREDENTIAL_BACKEND.lower())
            cls._instance = store
        return cls._instance

    @classmethod
    async def close(cls):
        """Close and forget the process-wide store."""
        store, cls._instance = cls._instance, None
        if store is not None:
            await store.aclose()

    @classmethod
    def reset(cls):
        """Reset the singleton instance (useful for testing)."""
        cls._instance = None


async def get_credential_store() -> CredentialStore:
    """Get the credential store - ready for FastAPI Depends()."""
    return await CredentialStoreFactory.get_store()


async def close_credential_store():
    await CredentialStoreFactory.close()
