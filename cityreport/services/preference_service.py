#!/usr/bin/env python3
"""
Key-value preference store.

Holds the two persisted settings of the app:
- ``dark_mode``: boolean theme flag
- ``last_sweep_at``: epoch milliseconds of the last successful lifecycle sweep

Two backends share one interface: a JSON file (default, survives restarts on a
single device) and Redis (shared deployments).
"""

import asyncio
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional, Union

import redis.asyncio as redis
from redis.exceptions import RedisError

from cityreport.core.errors import StoreUnavailable

logger = logging.getLogger(__name__)

DARK_MODE_KEY = "dark_mode"
LAST_SWEEP_AT_KEY = "last_sweep_at"


class PreferenceStore(ABC):
    """Generic persisted key-value preferences (bool and int values)."""

    @abstractmethod
    async def get_bool(self, key: str, default: bool = False) -> bool: ...

    @abstractmethod
    async def set_bool(self, key: str, value: bool) -> None: ...

    @abstractmethod
    async def get_int(self, key: str, default: int = 0) -> int: ...

    @abstractmethod
    async def set_int(self, key: str, value: int) -> None: ...

    async def close(self) -> None:
        return None


class JsonFilePreferenceStore(PreferenceStore):
    """Preferences kept in a small JSON document, replaced atomically on write."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def get_bool(self, key: str, default: bool = False) -> bool:
        value = (await asyncio.to_thread(self._read)).get(key)
        return value if isinstance(value, bool) else default

    async def set_bool(self, key: str, value: bool) -> None:
        await self._write(key, bool(value))

    async def get_int(self, key: str, default: int = 0) -> int:
        value = (await asyncio.to_thread(self._read)).get(key)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        return default

    async def set_int(self, key: str, value: int) -> None:
        await self._write(key, int(value))

    async def _write(self, key: str, value: Any) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
            data[key] = value
            await asyncio.to_thread(self._dump, data)

    def _read(self) -> Dict[str, Any]:
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as e:
            logger.warning(f"⚠️ Corrupt preference file {self.path}, starting empty: {e}")
            return {}
        except OSError as e:
            raise StoreUnavailable("read preferences", e) from e
        return data if isinstance(data, dict) else {}

    def _dump(self, data: Dict[str, Any]) -> None:
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".prefs_", suffix=".part", dir=directory)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(data, fh, indent=2, sort_keys=True)
                os.replace(tmp_name, self.path)
            finally:
                if os.path.exists(tmp_name):
                    os.remove(tmp_name)
        except OSError as e:
            raise StoreUnavailable("write preferences", e) from e


class RedisPreferenceStore(PreferenceStore):
    """Preferences in a Redis hash; values are stored as strings."""

    def __init__(self, client: "redis.Redis", namespace: str = "cityreport:prefs"):
        self.client = client
        self.namespace = namespace

    @classmethod
    def from_url(cls, redis_url: str, namespace: str = "cityreport:prefs") -> "RedisPreferenceStore":
        if not redis_url.startswith(("redis://", "rediss://", "unix://")):
            logger.warning(f"⚠️ Malformed REDIS_URL detected. Auto-fixing to 'redis://{redis_url}'")
            redis_url = f"redis://{redis_url}"
        client = redis.Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
        )
        return cls(client, namespace)

    async def get_bool(self, key: str, default: bool = False) -> bool:
        raw = await self._get(key)
        if raw is None:
            return default
        return str(raw).strip().lower() in ("1", "true", "yes", "on")

    async def set_bool(self, key: str, value: bool) -> None:
        await self._set(key, "1" if value else "0")

    async def get_int(self, key: str, default: int = 0) -> int:
        raw = await self._get(key)
        if raw is None:
            return default
        try:
            return int(raw)
        except (TypeError, ValueError):
            logger.warning(f"⚠️ Non-integer preference {key}={raw!r}, using default")
            return default

    async def set_int(self, key: str, value: int) -> None:
        await self._set(key, str(int(value)))

    async def close(self) -> None:
        try:
            await self.client.aclose()
            logger.info("🔌 Redis preference store closed")
        except RedisError as e:
            logger.error(f"❌ Error closing Redis connection: {str(e)}")

    async def _get(self, key: str) -> Optional[str]:
        try:
            return await self.client.hget(self.namespace, key)
        except RedisError as e:
            raise StoreUnavailable(f"read preference {key}", e) from e

    async def _set(self, key: str, value: str) -> None:
        try:
            await self.client.hset(self.namespace, key, value)
        except RedisError as e:
            raise StoreUnavailable(f"write preference {key}", e) from e
