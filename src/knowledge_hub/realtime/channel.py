"""Client-side event channel shared by every subsystem of one session.

Subsystems join named scopes (``documents``, ``conversation:<id>``) and
get a :class:`ScopeHandle` back.  Scopes are reference counted: the join
signal goes out on the first join of a scope, the leave signal on the
last leave.  The underlying transport connects on the first join and is
closed only once no scope remains joined.  Leaving is always explicit.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Callable, Protocol

from knowledge_hub.realtime.events import Scope, decode, encode

logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]


class Transport(Protocol):
    """Bidirectional message pipe (WebSocket, loopback, …)."""

    async def connect(self, on_message: Callable[[dict[str, Any]], None]) -> None: ...

    async def send(self, message: dict[str, Any]) -> None: ...

    async def close(self) -> None: ...


class ScopeHandle:
    """Membership in one scope; :meth:`leave` is idempotent."""

    def __init__(self, channel: EventChannel, scope: Scope) -> None:
        self._channel = channel
        self.scope = scope
        self._left = False

    @property
    def active(self) -> bool:
        return not self._left

    async def leave(self) -> None:
        if self._left:
            return
        self._left = True
        await self._channel._release(self.scope)

    async def __aenter__(self) -> ScopeHandle:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.leave()


class EventChannel:
    """Reference-counted scopes over a single :class:`Transport`."""

    def __init__(self, transport: Transport) -> None:
        self._transport = transport
        self._refcounts: dict[Scope, int] = {}
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._lock = asyncio.Lock()
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def active_scopes(self) -> list[Scope]:
        return list(self._refcounts)

    # -- handlers -------------------------------------------------------------

    def on(self, event: str, handler: Handler) -> Callable[[], None]:
        """Register *handler* for *event*; the returned callable removes it."""
        self._handlers[event].append(handler)
        return lambda: self.off(event, handler)

    def handlers(self, event: str) -> list[Handler]:
        return list(self._handlers.get(event, []))

    def off(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def dispatch(self, message: dict[str, Any]) -> None:
        """Deliver an inbound message to every handler, in registration order."""
        try:
            event, payload = decode(message)
        except ValueError:
            logger.warning("Dropping malformed message: %r", message, exc_info=True)
            return
        for handler in list(self._handlers.get(event, [])):
            try:
                handler(payload)
            except Exception:
                logger.warning("Handler for %s failed", event, exc_info=True)

    # -- scopes ---------------------------------------------------------------

    async def join(self, scope: Scope) -> ScopeHandle:
        async with self._lock:
            if not self._connected:
                await self._transport.connect(self.dispatch)
                self._connected = True
                logger.info("Event channel connected")
            count = self._refcounts.get(scope, 0)
            if count == 0:
                try:
                    await self._transport.send(scope.join_message())
                except Exception:
                    if not self._refcounts:
                        await self._disconnect()
                    raise
            # Counted only once the server has been told.
            self._refcounts[scope] = count + 1
        return ScopeHandle(self, scope)

    async def send(self, event: str, data: dict[str, Any] | None = None) -> None:
        if not self._connected:
            raise RuntimeError("Event channel is not connected")
        await self._transport.send(encode(event, data))

    async def _release(self, scope: Scope) -> None:
        async with self._lock:
            count = self._refcounts.get(scope, 0)
            if count == 0:
                return
            if count > 1:
                self._refcounts[scope] = count - 1
                return
            del self._refcounts[scope]
            await self._transport.send(scope.leave_message())
            if not self._refcounts:
                await self._disconnect()

    async def _disconnect(self) -> None:
        if self._connected:
            await self._transport.close()
            self._connected = False
            logger.info("Event channel closed: no scopes joined")
