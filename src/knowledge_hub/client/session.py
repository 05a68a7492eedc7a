"""Client session — one shared channel, one document list, many conversations.

A session owns a single :class:`EventChannel`.  The document list and
each open conversation join their own scope on it and leave explicitly;
the channel disconnects once the last scope is gone.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from knowledge_hub.client.api import ApiClient
from knowledge_hub.documents.models import Document
from knowledge_hub.realtime.channel import EventChannel, ScopeHandle, Transport
from knowledge_hub.realtime.events import Scope
from knowledge_hub.realtime.presence import TypingAggregator, TypingSignaler
from knowledge_hub.realtime.reconciliation import DocumentListState
from knowledge_hub.realtime.timers import AsyncioTimers, TimerScheduler

logger = logging.getLogger(__name__)


@dataclass
class ConversationView:
    """Typing state and signals for one joined conversation."""

    conversation_id: str
    handle: ScopeHandle
    aggregator: TypingAggregator
    signaler: TypingSignaler
    _unbind: Callable[[], None]

    async def close(self) -> None:
        await self.signaler.close()
        self._unbind()
        self.aggregator.close()
        await self.handle.leave()


class ClientSession:
    """Session-scoped owner of channel, document list, and conversations.

    Parameters
    ----------
    transport:
        Transport for the shared event channel.
    api:
        REST client used for direct uploads and the initial fetch.
    user_id:
        Local user, whose own typing echoes are ignored.
    timers:
        Timer source for typing debounce and sweep.
    """

    def __init__(
        self,
        transport: Transport,
        api: ApiClient,
        *,
        user_id: str,
        timers: TimerScheduler | None = None,
        documents: DocumentListState | None = None,
    ) -> None:
        self.channel = EventChannel(transport)
        self.api = api
        self.user_id = user_id
        self.timers = timers or AsyncioTimers()
        self.documents = documents or DocumentListState()
        self._documents_handle: ScopeHandle | None = None
        self._documents_unbind: Callable[[], None] | None = None
        self._conversations: dict[str, ConversationView] = {}

    # -- documents ------------------------------------------------------------

    async def open_documents(self, *, fetch: bool = True) -> DocumentListState:
        """Join the documents scope and load the current list."""
        if self._documents_handle is None:
            # Bound before joining so no event pushed after the join is missed.
            unbind = self.documents.bind(self.channel)
            try:
                self._documents_handle = await self.channel.join(Scope.documents())
            except Exception:
                unbind()
                raise
            self._documents_unbind = unbind
            if fetch:
                self.documents.load(await self.api.list_documents())
        return self.documents

    async def close_documents(self) -> None:
        if self._documents_handle is not None:
            await self._documents_handle.leave()
            self._documents_handle = None
        if self._documents_unbind is not None:
            self._documents_unbind()
            self._documents_unbind = None

    async def upload(
        self,
        name: str,
        data: bytes,
        *,
        content_type: str = "application/octet-stream",
        agent_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Document:
        """Upload directly, showing a placeholder until the server answers.

        On failure the placeholder is removed and the error re-raised.
        """
        pending = self.documents.begin_upload(
            name, size=len(data), content_type=content_type, agent_id=agent_id, metadata=metadata
        )
        try:
            document = await self.api.upload_document(
                name, data, content_type=content_type, agent_id=agent_id, metadata=metadata
            )
        except Exception:
            logger.warning("Upload of %s failed", name, exc_info=True)
            self.documents.fail_upload(pending.temp_id)
            raise
        self.documents.resolve_upload(pending.temp_id, document)
        return document

    # -- conversations --------------------------------------------------------

    async def open_conversation(self, conversation_id: str) -> ConversationView:
        view = self._conversations.get(conversation_id)
        if view is not None:
            return view
        aggregator = TypingAggregator(conversation_id, self.timers, current_user_id=self.user_id)
        unbind = aggregator.bind(self.channel)
        try:
            handle = await self.channel.join(Scope.conversation(conversation_id))
        except Exception:
            unbind()
            raise
        aggregator.start()
        view = ConversationView(
            conversation_id=conversation_id,
            handle=handle,
            aggregator=aggregator,
            signaler=TypingSignaler(conversation_id, self.channel, self.timers),
            _unbind=unbind,
        )
        self._conversations[conversation_id] = view
        return view

    async def close_conversation(self, conversation_id: str) -> None:
        view = self._conversations.pop(conversation_id, None)
        if view is not None:
            await view.close()

    async def close(self) -> None:
        """Leave every scope; the channel disconnects after the last one."""
        for conversation_id in list(self._conversations):
            await self.close_conversation(conversation_id)
        await self.close_documents()
