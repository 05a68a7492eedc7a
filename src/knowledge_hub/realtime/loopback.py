"""In-process transport connecting a client :class:`EventChannel` to an :class:`EventHub`.

Used for local development and end-to-end tests without a network socket.
"""

from __future__ import annotations

from typing import Any, Callable

from knowledge_hub.realtime.hub import Client, EventHub


class _Inbox:
    def __init__(self, deliver: Callable[[dict[str, Any]], None]) -> None:
        self._deliver = deliver

    async def send_json(self, data: Any) -> None:
        self._deliver(data)


class LoopbackTransport:
    """Transport whose far end is an in-process hub.

    Attributes
    ----------
    sent:
        Every message sent to the hub, in order.
    connects:
        Number of times :meth:`connect` was called.
    """

    def __init__(self, hub: EventHub, *, tenant_id: str, user_id: str, user_name: str = "") -> None:
        self._hub = hub
        self._tenant_id = tenant_id
        self._user_id = user_id
        self._user_name = user_name
        self._client: Client | None = None
        self.sent: list[dict[str, Any]] = []
        self.connects = 0

    @property
    def open(self) -> bool:
        return self._client is not None

    async def connect(self, on_message: Callable[[dict[str, Any]], None]) -> None:
        self.connects += 1
        self._client = self._hub.connect(
            _Inbox(on_message), tenant_id=self._tenant_id, user_id=self._user_id, user_name=self._user_name
        )

    async def send(self, message: dict[str, Any]) -> None:
        if self._client is None:
            raise RuntimeError("Loopback transport is not connected")
        self.sent.append(message)
        await self._hub.handle_message(self._client, message)

    async def close(self) -> None:
        if self._client is not None:
            await self._hub.disconnect(self._client)
            self._client = None
