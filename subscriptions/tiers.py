"""
Key-value persistence tiers.

Every tier exposes the same async capability so callers can treat them as
interchangeable and iterate them in priority order:

    await tier.get(key)          -> Optional[str]
    await tier.set(key, value)
    await tier.remove(key)

Implementations:
- MemoryTier:        process-local dict (tests, ephemeral deployments)
- JsonFileTier:      one file per key in a directory (durable platform store)
- JsonDocumentTier:  all keys in a single JSON document (legacy store)
- RedisTier:         Redis strings (service-level store)

Blocking backends run in a worker thread so the event loop is never stalled.
Tiers raise on failure; callers decide how to degrade.
"""

import asyncio
import json
import logging
import os
import re
import tempfile
from pathlib import Path
from threading import RLock
from typing import Dict, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

_SAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]")


@runtime_checkable
class KeyValueTier(Protocol):
    name: str

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...


class MemoryTier:
    """In-memory tier."""

    def __init__(self, name: str = "memory") -> None:
        self.name = name
        self._data: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileTier:
    """Stores each key as its own file under a directory. Writes are atomic."""

    def __init__(self, directory: str, name: str = "preferences") -> None:
        self.name = name
        self._directory = Path(directory)

    def _path(self, key: str) -> Path:
        if not key:
            raise ValueError("key is required")
        return self._directory / f"{_SAFE_KEY.sub('_', key)}.value"

    def _read(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def _write(self, key: str, value: str) -> None:
        path = self._path(key)
        self._directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=str(self._directory), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(value)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._read, key)

    async def set(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._write, key, value)

    async def remove(self, key: str) -> None:
        await asyncio.to_thread(self._delete, key)


class JsonDocumentTier:
    """All keys live in one JSON object on disk, like a browser localStorage dump."""

    def __init__(self, path: str, name: str = "legacy") -> None:
        self.name = name
        self._path = Path(path)
        self._lock = RLock()

    def _load(self) -> Dict[str, str]:
        if not self._path.exists():
            return {}
        with self._path.open("r", encoding="utf-8") as handle:
            raw = json.load(handle)
        if not isinstance(raw, dict):
            raise ValueError(f"{self._path} must contain a top-level object")
        return raw

    def _dump(self, data: Dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as handle:
            json.dump(data, handle)
        os.replace(tmp, self._path)

    def _read(self, key: str) -> Optional[str]:
        with self._lock:
            value = self._load().get(key)
        return None if value is None else str(value)

    def _write(self, key: str, value: str) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._dump(data)

    def _delete(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if key in data:
                del data[key]
                self._dump(data)

    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._read, key)

    async def set(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._write, key, value)

    async def remove(self, key: str) -> None:
        await asyncio.to_thread(self._delete, key)


class RedisTier:
    """Redis-backed tier. Values are plain strings under a key prefix."""

    def __init__(self, redis_client, name: str = "redis", key_prefix: str = "subscriptions:") -> None:
        self.name = name
        self._redis = redis_client
        self._key_prefix = key_prefix

    @classmethod
    def from_url(cls, redis_url: str, **kwargs) -> "RedisTier":
        import redis

        return cls(redis.from_url(redis_url, decode_responses=True), **kwargs)

    def _key(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    def _read(self, key: str) -> Optional[str]:
        raw = self._redis.get(self._key(key))
        if raw is None:
            return None
        return raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)

    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._read, key)

    async def set(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._redis.set, self._key(key), value)

    async def remove(self, key: str) -> None:
        await asyncio.to_thread(self._redis.delete, self._key(key))
