"""Object storage collaborators for raw uploaded bytes.

Durable storage is an external concern; the pipeline only needs the
three-call :class:`ObjectStorage` surface.  :class:`LocalObjectStorage`
writes below a directory, :class:`InMemoryObjectStorage` keeps bytes in a
dict for development and tests.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class ObjectStorage(Protocol):
    async def save(self, key: str, data: bytes) -> str: ...

    async def load(self, key: str) -> bytes: ...

    async def delete(self, key: str) -> None: ...


class LocalObjectStorage:
    """Filesystem storage; blocking I/O runs in a worker thread."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Storage key escapes the storage root: {key!r}")
        return path

    async def save(self, key: str, data: bytes) -> str:
        path = self._path(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        await asyncio.to_thread(_write)
        logger.debug("Stored %d bytes at %s", len(data), path)
        return str(path)

    async def load(self, key: str) -> bytes:
        return await asyncio.to_thread(self._path(key).read_bytes)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._path(key).unlink, True)


class InMemoryObjectStorage:
    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}

    async def save(self, key: str, data: bytes) -> str:
        self.objects[key] = bytes(data)
        return f"memory://{key}"

    async def load(self, key: str) -> bytes:
        try:
            return self.objects[key]
        except KeyError:
            raise FileNotFoundError(key) from None

    async def delete(self, key: str) -> None:
        self.objects.pop(key, None)
