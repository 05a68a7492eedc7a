"""Document lifecycle — the authoritative ingestion state machine.

::

    UPLOADING ──► PROCESSING ──► READY
        │              │
        └──────────────┴──────► ERROR

``READY`` and ``ERROR`` are terminal; a retry is a fresh ingestion, never
a transition out of ``ERROR``.  Only :class:`LifecycleEngine` writes
``status``.  Other components read documents or request transitions, and
observe changes through :meth:`LifecycleEngine.subscribe`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from knowledge_hub.documents.models import Document, DocumentStatus, utcnow
from knowledge_hub.errors import DocumentNotFound, InvalidTransition

logger = logging.getLogger(__name__)

_ALLOWED: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    DocumentStatus.UPLOADING: frozenset({DocumentStatus.PROCESSING, DocumentStatus.ERROR}),
    DocumentStatus.PROCESSING: frozenset({DocumentStatus.READY, DocumentStatus.ERROR}),
    DocumentStatus.READY: frozenset(),
    DocumentStatus.ERROR: frozenset(),
}


@dataclass
class LifecycleEvent:
    """Notification emitted after every acknowledged change.

    Attributes
    ----------
    kind:
        ``"created"``, ``"status"``, ``"processed"`` or ``"deleted"``.
    document:
        Snapshot of the document after the change.
    previous:
        Status before the change (``None`` for ``"created"``).
    details:
        Extra payload, e.g. ``chunks`` and ``processingTime`` for
        ``"processed"``.
    """

    kind: str
    document: Document
    previous: DocumentStatus | None = None
    details: dict[str, Any] = field(default_factory=dict)


Listener = Callable[[LifecycleEvent], None]


class DocumentStateMachine:
    """State holder for a single document."""

    def __init__(self, document: Document) -> None:
        self._document = document

    @property
    def document(self) -> Document:
        return self._document.model_copy(deep=True)

    @property
    def status(self) -> DocumentStatus:
        return self._document.status

    def can_transition(self, target: DocumentStatus) -> bool:
        return target in _ALLOWED[self._document.status]

    def transition(self, target: DocumentStatus, metadata: dict[str, Any] | None = None) -> DocumentStatus:
        """Move to *target*, merging *metadata*; return the previous status."""
        previous = self._document.status
        if not self.can_transition(target):
            raise InvalidTransition(self._document.id, previous.value, target.value)
        self._document.status = target
        if metadata:
            self._document.metadata = {**self._document.metadata, **metadata}
        self._document.updated_at = utcnow()
        return previous


class LifecycleEngine:
    """Owns every document's state machine and notifies subscribers."""

    def __init__(self) -> None:
        self._machines: dict[str, DocumentStateMachine] = {}
        self._listeners: list[Listener] = []

    # -- subscription ---------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; the returned callable unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: LifecycleEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.warning(
                    "Lifecycle listener failed for %s event on %s", event.kind, event.document.id, exc_info=True
                )

    # -- queries --------------------------------------------------------------

    def get(self, document_id: str) -> Document:
        return self._machine(document_id).document

    def list(self, *, tenant_id: str | None = None, agent_id: str | None = None) -> list[Document]:
        docs = [m.document for m in self._machines.values()]
        if tenant_id is not None:
            docs = [d for d in docs if d.tenant_id == tenant_id]
        if agent_id is not None:
            docs = [d for d in docs if d.agent_id == agent_id]
        return docs

    def __contains__(self, document_id: object) -> bool:
        return document_id in self._machines

    # -- transitions ----------------------------------------------------------

    def create(
        self,
        name: str,
        *,
        size: int = 0,
        content_type: str = "application/octet-stream",
        agent_id: str | None = None,
        tenant_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Document:
        """Create a document in ``UPLOADING``, before any bytes are stored."""
        document = Document(
            name=name,
            size=size,
            type=content_type,
            agent_id=agent_id,
            tenant_id=tenant_id,
            metadata=dict(metadata or {}),
        )
        self._machines[document.id] = DocumentStateMachine(document)
        logger.info("Created document %s (%s, %d bytes)", document.id, name, size)
        snapshot = self.get(document.id)
        self._notify(LifecycleEvent(kind="created", document=snapshot))
        return snapshot

    def begin_processing(self, document_id: str) -> Document:
        """Move to ``PROCESSING``; a no-op if the document is already there."""
        machine = self._machine(document_id)
        if machine.status is DocumentStatus.PROCESSING:
            return machine.document
        previous = machine.transition(DocumentStatus.PROCESSING)
        snapshot = machine.document
        self._notify(LifecycleEvent(kind="status", document=snapshot, previous=previous))
        return snapshot

    def complete(
        self,
        document_id: str,
        *,
        chunks: int,
        processing_time: float,
        metadata: dict[str, Any] | None = None,
    ) -> Document:
        """Move to ``READY`` once every chunk has a persisted embedding.

        *processing_time* is in milliseconds.
        """
        details = {"chunks": chunks, "processingTime": processing_time}
        machine = self._machine(document_id)
        previous = machine.transition(DocumentStatus.READY, {**(metadata or {}), **details})
        snapshot = machine.document
        logger.info("Document %s ready: %d chunks in %.0fms", document_id, chunks, processing_time)
        self._notify(
            LifecycleEvent(
                kind="processed", document=snapshot, previous=previous, details={**details, **(metadata or {})}
            )
        )
        return snapshot

    def fail(self, document_id: str, error: str) -> Document:
        """Move to ``ERROR``, recording *error* in metadata."""
        machine = self._machine(document_id)
        previous = machine.transition(
            DocumentStatus.ERROR, {"error": error, "failedAt": utcnow().isoformat()}
        )
        snapshot = machine.document
        logger.error("Document %s failed: %s", document_id, error)
        self._notify(LifecycleEvent(kind="status", document=snapshot, previous=previous))
        return snapshot

    def delete(self, document_id: str) -> Document:
        machine = self._machines.pop(document_id, None)
        if machine is None:
            raise DocumentNotFound(document_id)
        snapshot = machine.document
        self._notify(LifecycleEvent(kind="deleted", document=snapshot, previous=snapshot.status))
        return snapshot

    # -- internals ------------------------------------------------------------

    def _machine(self, document_id: str) -> DocumentStateMachine:
        try:
            return self._machines[document_id]
        except KeyError:
            raise DocumentNotFound(document_id) from None
