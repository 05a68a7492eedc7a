"""Typing indicators — who is typing, and when to tell others we are.

:class:`TypingAggregator` tracks remote users per conversation and
sweeps out entries that have not been refreshed within the timeout.
:class:`TypingSignaler` throttles the local user's start signal and
debounces the stop signal with a cancellable timer.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from knowledge_hub.config import settings
from knowledge_hub.realtime import events as ev
from knowledge_hub.realtime.channel import EventChannel
from knowledge_hub.realtime.timers import TimerHandle, TimerScheduler

logger = logging.getLogger(__name__)


@dataclass
class TypingEntry:
    conversation_id: str
    user_id: str
    user_name: str
    last_seen: float


class TypingAggregator:
    """Remote typing state for one conversation.

    Parameters
    ----------
    conversation_id:
        Conversation whose events are tracked; others are ignored.
    timers:
        Clock and timer source.
    current_user_id:
        The local user, whose own echoes are ignored.
    timeout_ms:
        Age after which an entry is evicted by the sweep.
    sweep_interval_ms:
        Period of the eviction sweep.
    """

    def __init__(
        self,
        conversation_id: str,
        timers: TimerScheduler,
        *,
        current_user_id: str | None = None,
        timeout_ms: int = settings.typing_timeout_ms,
        sweep_interval_ms: int = settings.typing_sweep_interval_ms,
    ) -> None:
        self.conversation_id = conversation_id
        self.current_user_id = current_user_id
        self.timeout = timeout_ms / 1000
        self.sweep_interval = sweep_interval_ms / 1000
        self._timers = timers
        self._entries: dict[str, TypingEntry] = {}
        self._sweeper: TimerHandle | None = None

    def start(self) -> None:
        if self._sweeper is None:
            self._sweeper = self._timers.call_every(self.sweep_interval, self.sweep)

    def close(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            self._sweeper = None
        self._entries.clear()

    @property
    def typing_users(self) -> list[TypingEntry]:
        return list(self._entries.values())

    @property
    def is_anyone_typing(self) -> bool:
        return bool(self._entries)

    def on_typing_start(self, event: ev.UserTypingStart) -> None:
        if event.conversation_id != self.conversation_id or event.user_id == self.current_user_id:
            return
        entry = self._entries.get(event.user_id)
        now = self._timers.now()
        if entry is None:
            self._entries[event.user_id] = TypingEntry(event.conversation_id, event.user_id, event.user_name, now)
        else:
            entry.last_seen = now

    def on_typing_stop(self, event: ev.UserTypingStop) -> None:
        if event.conversation_id == self.conversation_id:
            self._entries.pop(event.user_id, None)

    def sweep(self) -> None:
        """Evict entries not refreshed within the timeout."""
        now = self._timers.now()
        stale = [uid for uid, entry in self._entries.items() if now - entry.last_seen >= self.timeout]
        for uid in stale:
            del self._entries[uid]

    def typing_text(self) -> str:
        names = [entry.user_name for entry in self._entries.values()]
        if not names:
            return ""
        if len(names) == 1:
            return f"{names[0]} is typing..."
        if len(names) == 2:
            return f"{names[0]} and {names[1]} are typing..."
        return f"{names[0]} and {len(names) - 1} others are typing..."

    def bind(self, channel: EventChannel) -> Callable[[], None]:
        offs = [
            channel.on(ev.USER_TYPING_START, self.on_typing_start),
            channel.on(ev.USER_TYPING_STOP, self.on_typing_stop),
        ]

        def unbind() -> None:
            for off in offs:
                off()

        return unbind


class TypingSignaler:
    """Outgoing typing signals for the local user in one conversation."""

    def __init__(
        self,
        conversation_id: str,
        channel: EventChannel,
        timers: TimerScheduler,
        *,
        timeout_ms: int = settings.typing_timeout_ms,
        throttle_ms: int = settings.typing_throttle_ms,
    ) -> None:
        self.conversation_id = conversation_id
        self.timeout = timeout_ms / 1000
        self.throttle = throttle_ms / 1000
        self._channel = channel
        self._timers = timers
        self._last_start: float | None = None
        self._stop_timer: TimerHandle | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self.is_typing = False

    async def keystroke(self) -> None:
        """Record local typing activity."""
        if not self._channel.connected:
            return
        now = self._timers.now()
        if self._last_start is None or now - self._last_start > self.throttle:
            await self._channel.send(ev.TYPING_START, {"conversationId": self.conversation_id})
            self._last_start = now
        self.is_typing = True
        self._cancel_timer()
        self._stop_timer = self._timers.call_later(self.timeout, self._on_timeout)

    async def stop(self) -> None:
        """Tell the conversation the local user stopped typing."""
        self._cancel_timer()
        if not self._channel.connected:
            self.is_typing = False
            return
        await self._channel.send(ev.TYPING_STOP, {"conversationId": self.conversation_id})
        self.is_typing = False

    async def close(self) -> None:
        """Cancel the timer and send a final stop if still typing."""
        self._cancel_timer()
        if self.is_typing:
            await self.stop()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _on_timeout(self) -> None:
        self._stop_timer = None
        task = asyncio.get_running_loop().create_task(self.stop())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _cancel_timer(self) -> None:
        if self._stop_timer is not None:
            self._stop_timer.cancel()
            self._stop_timer = None
