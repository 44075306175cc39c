"""
Durable Store - pluggable key-value backend for conversation state

Provides a Protocol so applications choose the storage implementation:
- InMemoryStore: process memory (tests / quick start)
- JsonFileStore: one JSON file per key in a directory
- Applications may implement Redis, SQL, object storage, ...

Keys used by the engine: ``context:{id}``, ``working-memory:{id}`` and
``contexts`` (the index of known conversation ids).
"""

from __future__ import annotations

import asyncio
import copy
import json
import uuid
from pathlib import Path
from typing import Any, Protocol, runtime_checkable
from urllib.parse import quote, unquote

from pydantic_core import to_jsonable_python


@runtime_checkable
class DurableStore(Protocol):
    """Key-value persistence contract."""

    async def get(self, key: str) -> Any | None:
        """Return the stored value, or None when absent."""
        ...

    async def set(self, key: str, value: Any) -> None:
        """Store (replace) a value."""
        ...

    async def delete(self, key: str) -> None:
        """Remove a key; absent keys are ignored."""
        ...


class InMemoryStore:
    """Dictionary-backed store. Values are deep-copied in and out like a real backend."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    async def get(self, key: str) -> Any | None:
        value = self._data.get(key)
        return copy.deepcopy(value) if value is not None else None

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self) -> list[str]:
        return list(self._data)

    async def clear(self) -> None:
        self._data.clear()


class JsonFileStore:
    """Directory-backed store; each key is a ``<quoted key>.json`` file."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.directory / f"{quote(key, safe='')}.json"

    async def get(self, key: str) -> Any | None:
        path = self._path(key)

        def read() -> Any | None:
            if not path.exists():
                return None
            return json.loads(path.read_text(encoding="utf-8"))

        return await asyncio.to_thread(read)

    async def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        payload = json.dumps(to_jsonable_python(value, fallback=str), ensure_ascii=False)

        def write() -> None:
            # one temp file per write; concurrent sets of a key race only on replace
            tmp = path.with_name(f"{path.name}.{uuid.uuid4().hex}.tmp")
            tmp.write_text(payload, encoding="utf-8")
            tmp.replace(path)

        await asyncio.to_thread(write)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._path(key).unlink, True)

    async def keys(self) -> list[str]:
        return [unquote(p.stem) for p in self.directory.glob("*.json")]
