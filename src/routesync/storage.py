"""Persistent key-value store for route session state.

Values are plain strings, mirroring the on-device key-value storage the
mobile apps use.  Every call completes before the caller proceeds, so a
multi-key write is never observed half-applied by another coroutine of
the same client.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ConfigDict

from routesync._constants import (
    KEY_ACTIVE_ROUTE_ID,
    KEY_CURRENT_SEGMENT_INDEX,
    KEY_IS_ON_ROUTE,
    KEY_VEHICLE_ID,
    KEY_WATERMARK_PREFIX,
)
from routesync.ingestion.normalize import safe_index, safe_str

_logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    """Structural store interface used by the session manager."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...

    async def remove_many(self, keys: Iterable[str]) -> None: ...


def watermark_key(vehicle_id: str) -> str:
    """Store key of the last-event-timestamp watermark for *vehicle_id*."""
    return f"{KEY_WATERMARK_PREFIX}{vehicle_id}"


class MemorySessionStore:
    """Process-local store.  Used by tests and embedders with their own persistence."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def remove_many(self, keys: Iterable[str]) -> None:
        for key in keys:
            self._data.pop(key, None)

    def snapshot(self) -> dict[str, str]:
        return dict(self._data)


class JsonFileSessionStore:
    """Store backed by a single JSON object on disk.

    The whole map is rewritten on every mutation through a temporary file
    and ``os.replace`` so a crash never leaves a truncated file behind.
    File I/O runs in the default executor; an ``asyncio.Lock`` serializes
    mutations.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()
        self._cache: dict[str, str] | None = None

    @property
    def path(self) -> Path:
        return self._path

    def _read_file(self) -> dict[str, str]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            _logger.warning("Session store %s is not valid JSON; starting empty", self._path)
            return {}
        if not isinstance(data, dict):
            _logger.warning("Session store %s does not hold an object; starting empty", self._path)
            return {}
        return {str(k): str(v) for k, v in data.items() if v is not None}

    def _write_file(self, data: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self._path.name}.", dir=self._path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, separators=(",", ":"), sort_keys=True)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def _load(self) -> dict[str, str]:
        if self._cache is None:
            loop = asyncio.get_running_loop()
            self._cache = await loop.run_in_executor(None, self._read_file)
        return self._cache

    async def _flush(self, data: dict[str, str]) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write_file, dict(data))

    async def get(self, key: str) -> str | None:
        async with self._lock:
            data = await self._load()
            return data.get(key)

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            data = await self._load()
            data[key] = value
            await self._flush(data)

    async def remove(self, key: str) -> None:
        await self.remove_many((key,))

    async def remove_many(self, keys: Iterable[str]) -> None:
        async with self._lock:
            data = await self._load()
            removed = False
            for key in keys:
                if data.pop(key, None) is not None:
                    removed = True
            if removed:
                await self._flush(data)


class PersistedSession(BaseModel):
    """Typed view over the persisted session keys."""

    model_config = ConfigDict(frozen=True)

    active_route_id: str | None = None
    current_segment_index: int | None = None
    vehicle_id: str | None = None
    is_on_route: bool = False

    @classmethod
    async def load(cls, store: SessionStore) -> PersistedSession:
        """Read the session keys; unparseable values read as absent."""
        return cls(
            active_route_id=safe_str(await store.get(KEY_ACTIVE_ROUTE_ID)),
            current_segment_index=safe_index(await store.get(KEY_CURRENT_SEGMENT_INDEX)),
            vehicle_id=safe_str(await store.get(KEY_VEHICLE_ID)),
            is_on_route=(await store.get(KEY_IS_ON_ROUTE)) == "true",
        )
