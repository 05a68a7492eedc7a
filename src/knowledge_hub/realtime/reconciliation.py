"""Client-side reconciliation of optimistic uploads with pushed server events.

A client performing a direct upload shows a placeholder with a ``temp-``
id before the server answers, while the channel concurrently pushes
``document_uploaded`` to every subscriber, the uploader included.  The
rules, in priority order:

1. While any upload is pending, ``document_uploaded`` never inserts a new
   entry.  The direct upload response swaps the placeholder for the
   canonical record, matched strictly by temporary id.
2. With nothing pending, ``document_uploaded`` updates an existing id in
   place or appends an unseen one.
3. ``document_status_update`` and ``document_processed`` only update
   existing canonical ids; unknown ids are ignored.
4. ``document_deleted`` removes by id; unknown ids are ignored.
5. A failed upload removes its placeholder.

Every handler is a pure upsert by id, so replaying an event is harmless.
"""

from __future__ import annotations

import itertools
import logging
from typing import Any, Callable, Iterable

from knowledge_hub.documents.models import TEMP_ID_PREFIX, Document, DocumentStatus, PendingUpload, is_temporary_id
from knowledge_hub.errors import ReconciliationConflict
from knowledge_hub.realtime import events as ev
from knowledge_hub.realtime.channel import EventChannel

logger = logging.getLogger(__name__)

Listener = Callable[[list[Document]], None]


class DocumentListState:
    """The visible document list of one client session.

    Parameters
    ----------
    temp_ids:
        Source of placeholder ids; defaults to ``temp-1``, ``temp-2``, …
    """

    def __init__(self, temp_ids: Iterable[str] | None = None) -> None:
        self._documents: list[Document] = []
        self._pending: dict[str, PendingUpload] = {}
        self._listeners: list[Listener] = []
        self._temp_ids = iter(temp_ids) if temp_ids is not None else (
            f"{TEMP_ID_PREFIX}{n}" for n in itertools.count(1)
        )

    # -- views ----------------------------------------------------------------

    @property
    def documents(self) -> list[Document]:
        return [doc.model_copy() for doc in self._documents]

    @property
    def ids(self) -> list[str]:
        return [doc.id for doc in self._documents]

    @property
    def pending(self) -> dict[str, PendingUpload]:
        return dict(self._pending)

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    def get(self, document_id: str) -> Document | None:
        index = self._index(document_id)
        return None if index is None else self._documents[index].model_copy()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    # -- local operations -----------------------------------------------------

    def load(self, documents: Iterable[Document]) -> None:
        """Replace the list with a full server fetch, keeping placeholders."""
        fetched = list(documents)
        fetched_ids = {doc.id for doc in fetched}
        placeholders = [doc for doc in self._documents if doc.id in self._pending and doc.id not in fetched_ids]
        self._documents = fetched + placeholders
        self._notify()

    def begin_upload(
        self,
        name: str,
        *,
        size: int = 0,
        content_type: str = "application/octet-stream",
        agent_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> PendingUpload:
        """Show a placeholder for an upload that has not been answered yet."""
        temp_id = next(self._temp_ids)
        if not is_temporary_id(temp_id):
            raise ValueError(f"Placeholder ids must start with {TEMP_ID_PREFIX!r}: {temp_id!r}")
        placeholder = Document(
            id=temp_id,
            name=name,
            size=size,
            type=content_type,
            status=DocumentStatus.UPLOADING,
            agent_id=agent_id,
            metadata=dict(metadata or {}),
        )
        pending = PendingUpload(document=placeholder)
        self._pending[temp_id] = pending
        self._documents.append(placeholder)
        self._notify()
        return pending

    def resolve_upload(self, temp_id: str, document: Document) -> None:
        """Swap the placeholder *temp_id* for the canonical *document*."""
        if self._pending.pop(temp_id, None) is None:
            self._conflict(f"upload response for unknown placeholder {temp_id}")
            return
        temp_index = self._index(temp_id)
        existing = self._index(document.id)
        if existing is not None:
            self._documents[existing] = document
            if temp_index is not None:
                del self._documents[temp_index]
        elif temp_index is not None:
            self._documents[temp_index] = document
        else:
            self._documents.append(document)
        self._notify()

    def fail_upload(self, temp_id: str) -> None:
        """Drop the placeholder of a failed direct upload."""
        self._pending.pop(temp_id, None)
        index = self._index(temp_id)
        if index is not None:
            del self._documents[index]
            self._notify()

    # -- server events --------------------------------------------------------

    def on_document_uploaded(self, event: ev.DocumentUploaded) -> None:
        document = event.document
        if self._rejects(document.id):
            return
        index = self._index(document.id)
        if index is not None:
            self._documents[index] = document
        elif self._pending:
            logger.debug("Suppressed document_uploaded for %s while uploads are pending", document.id)
            return
        else:
            self._documents.append(document)
        self._notify()

    def on_status_update(self, event: ev.DocumentStatusUpdate) -> None:
        if self._rejects(event.document_id):
            return
        index = self._index(event.document_id)
        if index is None:
            return
        doc = self._documents[index]
        metadata = {**doc.metadata, **(event.metadata or {})}
        self._documents[index] = doc.model_copy(update={"status": event.status, "metadata": metadata})
        self._notify()

    def on_document_processed(self, event: ev.DocumentProcessed) -> None:
        if self._rejects(event.document_id):
            return
        index = self._index(event.document_id)
        if index is None:
            return
        doc = self._documents[index]
        metadata = {
            **doc.metadata,
            "chunks": event.chunks,
            "processingTime": event.processing_time,
            **(event.metadata or {}),
        }
        self._documents[index] = doc.model_copy(update={"status": DocumentStatus.READY, "metadata": metadata})
        self._notify()

    def on_document_deleted(self, event: ev.DocumentDeleted) -> None:
        if self._rejects(event.document_id):
            return
        index = self._index(event.document_id)
        if index is None:
            return
        del self._documents[index]
        self._notify()

    def apply(self, message: dict[str, Any]) -> None:
        """Decode and apply one raw wire message."""
        event, payload = ev.decode(message)
        handler = self._handlers().get(event)
        if handler is not None:
            handler(payload)

    def bind(self, channel: EventChannel) -> Callable[[], None]:
        """Register the event handlers on *channel*; returns an unbind callable."""
        unbinds = [channel.on(event, handler) for event, handler in self._handlers().items()]

        def unbind() -> None:
            for off in unbinds:
                off()

        return unbind

    # -- internals ------------------------------------------------------------

    def _handlers(self) -> dict[str, Callable[[Any], None]]:
        return {
            ev.DOCUMENT_UPLOADED: self.on_document_uploaded,
            ev.DOCUMENT_STATUS_UPDATE: self.on_status_update,
            ev.DOCUMENT_PROCESSED: self.on_document_processed,
            ev.DOCUMENT_DELETED: self.on_document_deleted,
        }

    def _index(self, document_id: str) -> int | None:
        for i, doc in enumerate(self._documents):
            if doc.id == document_id:
                return i
        return None

    def _rejects(self, document_id: str) -> bool:
        if is_temporary_id(document_id):
            self._conflict(f"server event references placeholder id {document_id}")
            return True
        return False

    @staticmethod
    def _conflict(message: str) -> None:
        conflict = ReconciliationConflict(message)
        logger.warning("Ignoring event: %s", conflict)

    def _notify(self) -> None:
        snapshot = self.documents
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.warning("Document list listener failed", exc_info=True)
