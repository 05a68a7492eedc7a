"""Unit tests for optimistic-upload reconciliation on the client."""

from __future__ import annotations

import pytest

from knowledge_hub.documents.models import Document, DocumentStatus
from knowledge_hub.realtime import events as ev
from knowledge_hub.realtime.reconciliation import DocumentListState


def uploaded(doc_id: str, name: str = "file.txt", **fields) -> ev.DocumentUploaded:
    return ev.DocumentUploaded(document=Document(id=doc_id, name=name, **fields))


@pytest.fixture()
def state() -> DocumentListState:
    return DocumentListState()


# ── Pending uploads ─────────────────────────────────────────────────────


class TestPendingUploads:
    def test_unrelated_upload_waits_for_pending_response(self, state: DocumentListState) -> None:
        pending = state.begin_upload("A.pdf", size=10, content_type="application/pdf")
        assert pending.temp_id == "temp-1"
        assert state.get("temp-1").status is DocumentStatus.UPLOADING

        state.on_document_uploaded(uploaded("B", "B.txt"))
        assert state.ids == ["temp-1"]

        state.resolve_upload("temp-1", Document(id="doc-1", name="A.pdf", status=DocumentStatus.PROCESSING))
        assert state.ids == ["doc-1"]
        assert not state.has_pending

        state.on_document_uploaded(uploaded("B", "B.txt"))
        assert state.ids == ["doc-1", "B"]

    def test_own_upload_event_does_not_duplicate(self, state: DocumentListState) -> None:
        state.begin_upload("A.pdf")
        state.on_document_uploaded(uploaded("doc-1", "A.pdf"))
        state.resolve_upload("temp-1", Document(id="doc-1", name="A.pdf"))
        state.on_document_uploaded(uploaded("doc-1", "A.pdf", status=DocumentStatus.PROCESSING))

        assert state.ids == ["doc-1"]
        assert state.get("doc-1").status is DocumentStatus.PROCESSING

    def test_resolve_when_canonical_id_already_listed(self, state: DocumentListState) -> None:
        state.load([Document(id="doc-1", name="A.pdf")])
        state.begin_upload("A.pdf")
        state.resolve_upload("temp-1", Document(id="doc-1", name="A.pdf", status=DocumentStatus.READY))

        assert state.ids == ["doc-1"]
        assert state.get("doc-1").status is DocumentStatus.READY

    def test_resolve_matches_strictly_by_temp_id(self, state: DocumentListState) -> None:
        state.begin_upload("A.pdf")
        state.begin_upload("C.pdf")
        state.resolve_upload("temp-2", Document(id="doc-2", name="C.pdf"))

        assert state.ids == ["temp-1", "doc-2"]
        assert list(state.pending) == ["temp-1"]

    def test_resolve_unknown_placeholder_is_ignored(self, state: DocumentListState) -> None:
        state.resolve_upload("temp-9", Document(id="doc-9", name="x"))
        assert state.ids == []

    def test_failed_upload_removes_placeholder(self, state: DocumentListState) -> None:
        state.begin_upload("A.pdf")
        state.fail_upload("temp-1")
        assert state.ids == []
        assert not state.has_pending

        state.on_document_uploaded(uploaded("B"))
        assert state.ids == ["B"]

    def test_placeholder_ids_must_carry_prefix(self) -> None:
        state = DocumentListState(temp_ids=["upload-1"])
        with pytest.raises(ValueError):
            state.begin_upload("A.pdf")

    def test_load_keeps_placeholders(self, state: DocumentListState) -> None:
        state.begin_upload("A.pdf")
        state.load([Document(id="doc-7", name="old.txt")])
        assert state.ids == ["doc-7", "temp-1"]


# ── Server events ───────────────────────────────────────────────────────


class TestServerEvents:
    def test_upload_appends_or_updates_in_place(self, state: DocumentListState) -> None:
        state.load([Document(id="doc-1", name="a.txt"), Document(id="doc-2", name="b.txt")])
        state.on_document_uploaded(uploaded("doc-1", "renamed.txt"))
        state.on_document_uploaded(uploaded("doc-3", "c.txt"))

        assert state.ids == ["doc-1", "doc-2", "doc-3"]
        assert state.get("doc-1").name == "renamed.txt"

    def test_processed_is_idempotent(self, state: DocumentListState) -> None:
        state.load([Document(id="doc-1", name="a.txt", status=DocumentStatus.PROCESSING)])
        event = ev.DocumentProcessed(document_id="doc-1", chunks=5, processing_time=12.5)
        state.on_document_processed(event)
        first = state.get("doc-1")
        state.on_document_processed(event)

        assert state.get("doc-1") == first
        assert first.status is DocumentStatus.READY
        assert first.metadata == {"chunks": 5, "processingTime": 12.5}

    def test_status_update_merges_metadata(self, state: DocumentListState) -> None:
        state.load([Document(id="doc-1", name="a.txt", metadata={"owner": "x"})])
        state.on_status_update(
            ev.DocumentStatusUpdate(document_id="doc-1", status=DocumentStatus.ERROR, metadata={"error": "boom"})
        )
        doc = state.get("doc-1")
        assert doc.status is DocumentStatus.ERROR
        assert doc.metadata == {"owner": "x", "error": "boom"}

    def test_events_for_unknown_ids_are_ignored(self, state: DocumentListState) -> None:
        state.load([Document(id="doc-1", name="a.txt")])
        state.on_status_update(ev.DocumentStatusUpdate(document_id="nope", status=DocumentStatus.READY))
        state.on_document_processed(ev.DocumentProcessed(document_id="nope", chunks=1, processing_time=1.0))
        state.on_document_deleted(ev.DocumentDeleted(document_id="nope"))
        assert state.ids == ["doc-1"]

    def test_events_never_touch_placeholders(self, state: DocumentListState) -> None:
        state.begin_upload("A.pdf")
        state.on_status_update(ev.DocumentStatusUpdate(document_id="temp-1", status=DocumentStatus.READY))
        state.on_document_deleted(ev.DocumentDeleted(document_id="temp-1"))
        state.on_document_uploaded(uploaded("temp-1"))

        assert state.ids == ["temp-1"]
        assert state.get("temp-1").status is DocumentStatus.UPLOADING

    def test_deleted_removes_and_replays_harmlessly(self, state: DocumentListState) -> None:
        state.load([Document(id="doc-1", name="a.txt"), Document(id="doc-2", name="b.txt")])
        state.on_document_deleted(ev.DocumentDeleted(document_id="doc-1"))
        state.on_document_deleted(ev.DocumentDeleted(document_id="doc-1"))
        assert state.ids == ["doc-2"]

    def test_apply_decodes_wire_messages(self, state: DocumentListState) -> None:
        state.apply({"event": "document_uploaded", "data": {"document": {"id": "doc-1", "name": "a.txt"}}})
        state.apply({"event": "document_processed", "data": {"documentId": "doc-1", "chunks": 2, "processingTime": 3}})
        state.apply({"event": "user_typing_start", "data": {"userId": "u", "userName": "U", "conversationId": "c"}})

        assert state.get("doc-1").metadata["chunks"] == 2

    def test_listeners_receive_snapshots(self, state: DocumentListState) -> None:
        snapshots: list[list[str]] = []
        unsubscribe = state.subscribe(lambda docs: snapshots.append([d.id for d in docs]))
        state.begin_upload("A.pdf")
        state.resolve_upload("temp-1", Document(id="doc-1", name="A.pdf"))
        unsubscribe()
        state.on_document_deleted(ev.DocumentDeleted(document_id="doc-1"))

        assert snapshots == [["temp-1"], ["doc-1"]]

    def test_documents_view_is_a_copy(self, state: DocumentListState) -> None:
        state.load([Document(id="doc-1", name="a.txt")])
        state.documents[0].name = "mutated"
        assert state.get("doc-1").name == "a.txt"
