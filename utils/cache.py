"""
Key-value store for short-lived flags: dedup markers, conversation
locks, bot-pause cache.

Redis when REDIS_URL is configured, otherwise an in-process TTL store.
"""

import asyncio
import time
from typing import Dict, Optional, Tuple

import redis.asyncio as redis

from config.environments import current_config
from utils.logger import get_logger

log = get_logger("cache")


class KVStore:
    """Interface shared by the Redis and in-memory stores"""

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, key: str, value: str, ex: Optional[int] = None, nx: bool = False) -> bool:
        """Store value; with nx=True only if the key is absent. Returns True if written."""
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class MemoryStore(KVStore):
    """In-process store with per-key expiry"""

    def __init__(self):
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = asyncio.Lock()

    def _alive(self, key: str) -> bool:
        entry = self._data.get(key)
        if entry is None:
            return False
        _, expires_at = entry
        if expires_at is not None and expires_at <= time.monotonic():
            del self._data[key]
            return False
        return True

    async def get(self, key: str) -> Optional[str]:
        if not self._alive(key):
            return None
        return self._data[key][0]

    async def set(self, key: str, value: str, ex: Optional[int] = None, nx: bool = False) -> bool:
        async with self._lock:
            if nx and self._alive(key):
                return False
            expires_at = time.monotonic() + ex if ex else None
            self._data[key] = (str(value), expires_at)
            return True

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()


class RedisStore(KVStore):
    def __init__(self, url: str):
        self.client = redis.from_url(url, decode_responses=True)

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def set(self, key: str, value: str, ex: Optional[int] = None, nx: bool = False) -> bool:
        result = await self.client.set(key, value, ex=ex, nx=nx)
        return bool(result)

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    async def ping(self) -> bool:
        return bool(await self.client.ping())

    async def close(self) -> None:
        await self.client.aclose()


def create_store(url: str = None) -> KVStore:
    url = current_config.REDIS_URL if url is None else url
    if url:
        log.info("Using Redis key-value store")
        return RedisStore(url)
    log.info("Using in-process key-value store")
    return MemoryStore()


# Singleton instance
kv_store = create_store()
