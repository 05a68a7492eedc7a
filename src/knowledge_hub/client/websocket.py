"""WebSocket transport connecting a client :class:`EventChannel` to the ``/ws`` route."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable
from urllib.parse import urlencode

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosedError

logger = logging.getLogger(__name__)


class WebSocketTransport:
    """Persistent socket to the server's event channel.

    Parameters
    ----------
    url:
        Address of the ``/ws`` route, e.g. ``ws://localhost:8000/ws``.
    tenant_id, user_id, user_name:
        Identity sent as query parameters on connect.

    Inbound frames are decoded as JSON and handed to the ``on_message``
    callback from a reader task, one at a time.
    """

    def __init__(self, url: str, *, tenant_id: str, user_id: str, user_name: str = "") -> None:
        query = urlencode({"tenantId": tenant_id, "userId": user_id, "userName": user_name})
        self.url = f"{url}?{query}"
        self._connection: ClientConnection | None = None
        self._reader: asyncio.Task[None] | None = None

    @property
    def open(self) -> bool:
        return self._connection is not None

    async def connect(self, on_message: Callable[[dict[str, Any]], None]) -> None:
        connection = await connect(self.url)
        self._connection = connection
        self._reader = asyncio.create_task(self._read(connection, on_message))
        logger.info("Connected to %s", self.url)

    async def send(self, message: dict[str, Any]) -> None:
        if self._connection is None:
            raise RuntimeError("WebSocket transport is not connected")
        await self._connection.send(json.dumps(message))

    async def close(self) -> None:
        connection, self._connection = self._connection, None
        reader, self._reader = self._reader, None
        if connection is not None:
            await connection.close()
        if reader is not None:
            await reader

    async def _read(self, connection: ClientConnection, on_message: Callable[[dict[str, Any]], None]) -> None:
        try:
            async for frame in connection:
                try:
                    message = json.loads(frame)
                except ValueError:
                    message = None
                if not isinstance(message, dict):
                    logger.warning("Dropping frame that is not a JSON object: %r", frame)
                    continue
                on_message(message)
        except ConnectionClosedError:
            logger.warning("Event socket to %s closed unexpectedly", self.url, exc_info=True)
