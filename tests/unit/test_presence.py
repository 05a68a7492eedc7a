"""Unit tests for typing indicators and the manual timer clock."""

from __future__ import annotations

import asyncio

import pytest

from knowledge_hub.realtime import events as ev
from knowledge_hub.realtime.channel import EventChannel
from knowledge_hub.realtime.events import Scope
from knowledge_hub.realtime.presence import TypingAggregator, TypingSignaler
from knowledge_hub.realtime.timers import ManualTimers

from conftest import RecordingTransport


def start(user_id: str, name: str | None = None, conversation_id: str = "c1") -> ev.UserTypingStart:
    return ev.UserTypingStart(user_id=user_id, user_name=name or user_id.upper(), conversation_id=conversation_id)


@pytest.fixture()
def timers() -> ManualTimers:
    return ManualTimers()


@pytest.fixture()
def aggregator(timers: ManualTimers) -> TypingAggregator:
    agg = TypingAggregator("c1", timers, current_user_id="me", timeout_ms=3000, sweep_interval_ms=1000)
    agg.start()
    return agg


async def settle() -> None:
    for _ in range(3):
        await asyncio.sleep(0)


# ── Manual clock ────────────────────────────────────────────────────────


class TestManualTimers:
    def test_call_later_fires_once(self, timers: ManualTimers) -> None:
        fired: list[float] = []
        timers.call_later(2.0, lambda: fired.append(timers.now()))
        timers.advance(1.0)
        assert fired == []
        timers.advance(5.0)
        assert fired == [2.0]
        assert timers.now() == 6.0

    def test_call_every_repeats_until_cancelled(self, timers: ManualTimers) -> None:
        fired: list[float] = []
        handle = timers.call_every(1.0, lambda: fired.append(timers.now()))
        timers.advance(3.5)
        handle.cancel()
        timers.advance(3.0)
        assert fired == [1.0, 2.0, 3.0]
        assert timers.pending() == 0


# ── Aggregator ──────────────────────────────────────────────────────────


class TestTypingAggregator:
    def test_entry_is_evicted_after_timeout(self, aggregator: TypingAggregator, timers: ManualTimers) -> None:
        aggregator.on_typing_start(start("alice"))
        timers.advance(2.0)
        assert aggregator.is_anyone_typing
        timers.advance(1.0)
        assert not aggregator.is_anyone_typing

    def test_refresh_extends_entry(self, aggregator: TypingAggregator, timers: ManualTimers) -> None:
        aggregator.on_typing_start(start("alice"))
        timers.advance(2.0)
        aggregator.on_typing_start(start("alice"))
        timers.advance(2.0)
        assert [e.user_id for e in aggregator.typing_users] == ["alice"]

    def test_stop_removes_immediately(self, aggregator: TypingAggregator) -> None:
        aggregator.on_typing_start(start("alice"))
        aggregator.on_typing_stop(ev.UserTypingStop(user_id="alice", conversation_id="c1"))
        assert aggregator.typing_users == []

    def test_ignores_self_and_other_conversations(self, aggregator: TypingAggregator) -> None:
        aggregator.on_typing_start(start("me"))
        aggregator.on_typing_start(start("bob", conversation_id="c2"))
        assert not aggregator.is_anyone_typing

    @pytest.mark.parametrize(
        ("users", "expected"),
        [
            ([], ""),
            (["alice"], "Alice is typing..."),
            (["alice", "bob"], "Alice and Bob are typing..."),
            (["alice", "bob", "carol"], "Alice and 2 others are typing..."),
        ],
    )
    def test_typing_text(self, aggregator: TypingAggregator, users: list[str], expected: str) -> None:
        for user in users:
            aggregator.on_typing_start(start(user, user.capitalize()))
        assert aggregator.typing_text() == expected

    def test_close_stops_sweeping(self, aggregator: TypingAggregator, timers: ManualTimers) -> None:
        aggregator.on_typing_start(start("alice"))
        aggregator.close()
        assert aggregator.typing_users == []
        assert timers.pending() == 0

    @pytest.mark.asyncio
    async def test_bind_routes_channel_events(self, aggregator: TypingAggregator) -> None:
        transport = RecordingTransport()
        channel = EventChannel(transport)
        unbind = aggregator.bind(channel)
        await channel.join(Scope.conversation("c1"))

        transport.push(ev.encode(ev.USER_TYPING_START, start("alice")))
        assert aggregator.typing_text() == "ALICE is typing..."

        unbind()
        transport.push(ev.encode(ev.USER_TYPING_STOP, ev.UserTypingStop(user_id="alice", conversation_id="c1")))
        assert aggregator.is_anyone_typing


# ── Signaler ────────────────────────────────────────────────────────────


@pytest.fixture()
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture()
def channel(transport: RecordingTransport) -> EventChannel:
    return EventChannel(transport)


def typing_events(transport: RecordingTransport) -> list[str]:
    return [m["event"] for m in transport.sent if m["event"].startswith("typing_")]


class TestTypingSignaler:
    @pytest.mark.asyncio
    async def test_start_is_throttled(
        self, channel: EventChannel, transport: RecordingTransport, timers: ManualTimers
    ) -> None:
        await channel.join(Scope.conversation("c1"))
        signaler = TypingSignaler("c1", channel, timers, timeout_ms=3000, throttle_ms=1000)

        await signaler.keystroke()
        timers.advance(0.5)
        await signaler.keystroke()
        timers.advance(0.6)
        await signaler.keystroke()

        assert typing_events(transport) == ["typing_start", "typing_start"]
        assert transport.sent[1] == {"event": "typing_start", "data": {"conversationId": "c1"}}

    @pytest.mark.asyncio
    async def test_stop_fires_after_idle_timeout(
        self, channel: EventChannel, transport: RecordingTransport, timers: ManualTimers
    ) -> None:
        await channel.join(Scope.conversation("c1"))
        signaler = TypingSignaler("c1", channel, timers, timeout_ms=3000, throttle_ms=1000)

        await signaler.keystroke()
        timers.advance(2.0)
        await signaler.keystroke()
        timers.advance(2.0)
        await settle()
        assert signaler.is_typing

        timers.advance(1.0)
        await settle()
        assert not signaler.is_typing
        assert typing_events(transport) == ["typing_start", "typing_start", "typing_stop"]

    @pytest.mark.asyncio
    async def test_close_sends_final_stop(
        self, channel: EventChannel, transport: RecordingTransport, timers: ManualTimers
    ) -> None:
        await channel.join(Scope.conversation("c1"))
        signaler = TypingSignaler("c1", channel, timers)
        await signaler.keystroke()
        await signaler.close()

        assert typing_events(transport) == ["typing_start", "typing_stop"]
        assert timers.pending() == 0

    @pytest.mark.asyncio
    async def test_keystroke_without_connection_is_a_noop(
        self, channel: EventChannel, transport: RecordingTransport, timers: ManualTimers
    ) -> None:
        signaler = TypingSignaler("c1", channel, timers)
        await signaler.keystroke()
        await signaler.close()
        assert transport.sent == []
        assert not signaler.is_typing
