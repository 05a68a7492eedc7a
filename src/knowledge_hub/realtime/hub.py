"""Server-side event hub — rooms, fan-out, and typing relay.

Each connected client is registered with its tenant and user.  Rooms are
``documents:<tenant>`` and ``conversation:<id>``; a connection only
receives events for rooms it explicitly joined.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol
from uuid import uuid4

from pydantic import BaseModel, ValidationError

from knowledge_hub.documents.lifecycle import LifecycleEvent
from knowledge_hub.realtime import events as ev

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """Anything that can push a JSON message (e.g. a Starlette WebSocket)."""

    async def send_json(self, data: Any) -> None: ...


@dataclass
class Client:
    connection: Connection
    tenant_id: str
    user_id: str
    user_name: str
    id: str = field(default_factory=lambda: uuid4().hex)
    rooms: set[str] = field(default_factory=set)
    typing_in: set[str] = field(default_factory=set)


def documents_room(tenant_id: str) -> str:
    return f"documents:{tenant_id}"


def conversation_room(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


class EventHub:
    """Fan-out of channel events to joined connections."""

    def __init__(self) -> None:
        self._clients: dict[str, Client] = {}
        self._rooms: dict[str, set[str]] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    # -- connections ----------------------------------------------------------

    def connect(self, connection: Connection, *, tenant_id: str, user_id: str, user_name: str = "") -> Client:
        client = Client(connection, tenant_id, user_id, user_name or user_id)
        self._clients[client.id] = client
        logger.info("Client %s connected (tenant=%s, user=%s)", client.id, tenant_id, user_id)
        return client

    async def disconnect(self, client: Client) -> None:
        """Drop *client*, relaying a typing stop for any conversation it was typing in."""
        for conversation_id in list(client.typing_in):
            await self._typing_stop(client, conversation_id)
        for room in list(client.rooms):
            self._leave(client, room)
        self._clients.pop(client.id, None)
        logger.info("Client %s disconnected", client.id)

    def members(self, room: str) -> list[Client]:
        return [self._clients[cid] for cid in self._rooms.get(room, ()) if cid in self._clients]

    # -- inbound --------------------------------------------------------------

    async def handle_message(self, client: Client, message: dict[str, Any]) -> None:
        """Apply one client → server message."""
        try:
            event, payload = ev.decode(message)
        except (ValueError, ValidationError):
            logger.warning("Client %s sent a malformed message: %r", client.id, message)
            return

        if event == ev.JOIN_DOCUMENTS:
            self._join(client, documents_room(client.tenant_id))
        elif event == ev.LEAVE_DOCUMENTS:
            self._leave(client, documents_room(client.tenant_id))
        elif event == ev.JOIN_CONVERSATION:
            self._join(client, conversation_room(payload.conversation_id))
        elif event == ev.LEAVE_CONVERSATION:
            self._leave(client, conversation_room(payload.conversation_id))
        elif event == ev.TYPING_START:
            client.typing_in.add(payload.conversation_id)
            await self.broadcast(
                conversation_room(payload.conversation_id),
                ev.USER_TYPING_START,
                ev.UserTypingStart(
                    user_id=client.user_id,
                    user_name=client.user_name,
                    conversation_id=payload.conversation_id,
                ),
                exclude=client.id,
            )
        elif event == ev.TYPING_STOP:
            await self._typing_stop(client, payload.conversation_id)
        else:
            logger.warning("Client %s sent unsupported event %r", client.id, event)

    # -- outbound -------------------------------------------------------------

    async def broadcast(
        self,
        room: str,
        event: str,
        payload: BaseModel | dict[str, Any],
        *,
        exclude: str | None = None,
    ) -> int:
        """Send to every member of *room*; returns the number delivered."""
        message = ev.encode(event, payload)
        delivered = 0
        for client in self.members(room):
            if client.id == exclude:
                continue
            try:
                await client.connection.send_json(message)
                delivered += 1
            except Exception:
                logger.warning("Failed to deliver %s to client %s", event, client.id, exc_info=True)
        return delivered

    def publish_lifecycle(self, event: LifecycleEvent) -> None:
        """Lifecycle listener: broadcast the change to the owning tenant."""
        tenant_id = event.document.tenant_id
        if tenant_id is None:
            return
        name, payload = ev.from_lifecycle(event)
        task = asyncio.get_running_loop().create_task(self._publish(documents_room(tenant_id), name, payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def flush(self) -> None:
        """Wait for queued lifecycle broadcasts to be delivered."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    # -- internals ------------------------------------------------------------

    async def _publish(self, room: str, event: str, payload: BaseModel) -> None:
        await self.broadcast(room, event, payload)

    async def _typing_stop(self, client: Client, conversation_id: str) -> None:
        client.typing_in.discard(conversation_id)
        await self.broadcast(
            conversation_room(conversation_id),
            ev.USER_TYPING_STOP,
            ev.UserTypingStop(user_id=client.user_id, conversation_id=conversation_id),
            exclude=client.id,
        )

    def _join(self, client: Client, room: str) -> None:
        self._rooms.setdefault(room, set()).add(client.id)
        client.rooms.add(room)

    def _leave(self, client: Client, room: str) -> None:
        members = self._rooms.get(room)
        if members is not None:
            members.discard(client.id)
            if not members:
                del self._rooms[room]
        client.rooms.discard(room)
