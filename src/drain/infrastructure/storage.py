"""Storage abstractions with Redis and atomic JSON-file implementations."""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from .database import DatabaseClient


class KeyValueStore(ABC):
    """Abstract key-value store with minimal operations used by repositories."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    async def set_many(self, mapping: Mapping[str, str]) -> None:
        """Write several keys atomically (all or none become visible)."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> int:
        pass

    @abstractmethod
    async def keys(self, prefix: str) -> List[str]:
        """All keys starting with ``prefix``, sorted."""
        pass


class RedisKeyValueStore(KeyValueStore):
    """Redis-backed implementation of KeyValueStore."""

    def __init__(self, db_client: DatabaseClient):
        self._db_client = db_client

    async def get(self, key: str) -> Optional[str]:
        async with self._db_client.get_connection() as conn:
            return await conn.get(key)

    async def set(self, key: str, value: str) -> None:
        async with self._db_client.get_connection() as conn:
            await conn.set(key, value)

    async def set_many(self, mapping: Mapping[str, str]) -> None:
        async with self._db_client.get_connection() as conn:
            await conn.mset(dict(mapping))

    async def delete(self, key: str) -> int:
        async with self._db_client.get_connection() as conn:
            return await conn.delete(key)

    async def keys(self, prefix: str) -> List[str]:
        async with self._db_client.get_connection() as conn:
            found = [key async for key in conn.scan_iter(match=f"{prefix}*")]
        return sorted(found)


class JsonFileKeyValueStore(KeyValueStore):
    """Single JSON document on disk, suitable for low-volume deployments.

    Every mutation rewrites the whole document to a temp file in the same
    directory, fsyncs it, and renames it over the original, so a crash
    mid-write leaves either the old or the new document, never a torn one.
    """

    def __init__(self, path: str | os.PathLike[str]):
        self._path = Path(path)
        self._lock = asyncio.Lock()
        self._data: Dict[str, str] = self._load()

    def _load(self) -> Dict[str, str]:
        if not self._path.exists():
            return {}
        with self._path.open("r", encoding="utf-8") as f:
            raw = json.load(f)
        if not isinstance(raw, dict):
            raise ValueError(f"Storage file {self._path} is not a JSON object")
        return {str(k): str(v) for k, v in raw.items()}

    def _write_atomic(self, snapshot: Dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(snapshot, f, indent=2, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self._path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    async def _commit(self, updates: Mapping[str, Optional[str]]) -> None:
        async with self._lock:
            snapshot = dict(self._data)
            for key, value in updates.items():
                if value is None:
                    snapshot.pop(key, None)
                else:
                    snapshot[key] = value
            await asyncio.to_thread(self._write_atomic, snapshot)
            self._data = snapshot

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        await self._commit({key: value})

    async def set_many(self, mapping: Mapping[str, str]) -> None:
        await self._commit(dict(mapping))

    async def delete(self, key: str) -> int:
        if key not in self._data:
            return 0
        await self._commit({key: None})
        return 1

    async def keys(self, prefix: str) -> List[str]:
        return sorted(k for k in self._data if k.startswith(prefix))
