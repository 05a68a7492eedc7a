"""Unit tests for the serving layer."""

from __future__ import annotations

import time
from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from knowledge_hub.ingestion.storage import InMemoryObjectStorage
from knowledge_hub.retrieval.memory_store import InMemoryVectorStore
from knowledge_hub.serving.app import Services, build_services, create_app

from conftest import KeywordEmbeddings, make_service

T1 = {"X-Tenant-Id": "t1"}
T2 = {"X-Tenant-Id": "t2"}


@pytest.fixture()
def services() -> Services:
    return build_services(
        store=InMemoryVectorStore(),
        storage=InMemoryObjectStorage(),
        embeddings=make_service(KeywordEmbeddings()),
    )


@pytest.fixture()
def client(services: Services) -> Iterator[TestClient]:
    with TestClient(create_app(services)) as test_client:
        yield test_client


def upload(client: TestClient, name: str, body: bytes, headers: dict[str, str] = T1, **form: str) -> dict:
    response = client.post("/documents", files={"file": (name, body, "text/plain")}, data=form, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def process(client: TestClient, doc_id: str, headers: dict[str, str] = T1) -> dict:
    response = client.post(f"/documents/{doc_id}/process", params={"wait": "true"}, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


def settled(client: TestClient, doc_id: str, headers: dict[str, str] = T1) -> dict:
    """Poll until background processing has left the document in a terminal state."""
    deadline = time.monotonic() + 5
    while True:
        doc = client.get(f"/documents/{doc_id}", headers=headers).json()
        if doc["status"] in ("READY", "ERROR") or time.monotonic() > deadline:
            return doc
        time.sleep(0.01)


def test_health_endpoint(client: TestClient) -> None:
    """GET /health should return 200 with status ok."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


# ── Documents ───────────────────────────────────────────────────────────


class TestDocuments:
    def test_upload_then_process(self, client: TestClient) -> None:
        created = upload(client, "note.txt", b"hello knowledge hub", agentId="bot", metadata='{"team": "docs"}')
        assert created["status"] in ("PROCESSING", "READY")
        assert created["agentId"] == "bot"
        assert created["tenantId"] == "t1"
        assert created["metadata"] == {"team": "docs"}

        ready = process(client, created["id"])
        assert ready["status"] == "READY"
        assert ready["metadata"]["chunks"] == 1

        again = process(client, created["id"])
        assert again["status"] == "READY"
        assert again["id"] == created["id"]

    def test_list_is_scoped_to_tenant_and_agent(self, client: TestClient) -> None:
        upload(client, "a.txt", b"alpha", agentId="bot")
        upload(client, "b.txt", b"beta")
        upload(client, "c.txt", b"gamma", headers=T2)

        names = [d["name"] for d in client.get("/documents", headers=T1).json()["documents"]]
        assert names == ["a.txt", "b.txt"]
        bot = client.get("/documents", params={"agentId": "bot"}, headers=T1).json()["documents"]
        assert [d["name"] for d in bot] == ["a.txt"]

    def test_other_tenant_cannot_see_document(self, client: TestClient) -> None:
        doc = upload(client, "a.txt", b"alpha")
        response = client.get(f"/documents/{doc['id']}", headers=T2)
        assert response.status_code == 404
        assert response.json()["error"] == "document_not_found"
        assert client.delete(f"/documents/{doc['id']}", headers=T2).status_code == 404

    def test_delete(self, client: TestClient, services: Services) -> None:
        doc = upload(client, "a.txt", b"alpha")
        process(client, doc["id"])

        response = client.delete(f"/documents/{doc['id']}", headers=T1)
        assert response.json() == {"success": True, "documentId": doc["id"]}
        assert client.get(f"/documents/{doc['id']}", headers=T1).status_code == 404
        assert services.store.records == {}

    def test_delete_right_after_upload_leaves_nothing_searchable(self) -> None:
        services = build_services(
            store=InMemoryVectorStore(),
            storage=InMemoryObjectStorage(),
            embeddings=make_service(KeywordEmbeddings(delay=0.05)),
        )
        with TestClient(create_app(services)) as client:
            doc = upload(client, "short.txt", b"short lived words")
            response = client.delete(f"/documents/{doc['id']}", headers=T1)
            assert response.status_code == 200

            results = client.post("/search", json={"query": "short lived words"}, headers=T1).json()["results"]
            assert results == []

        assert services.store.records == {}

    def test_failed_document_is_retried_under_new_id(self, client: TestClient) -> None:
        doc = upload(client, "blank.txt", b"   ")
        failed = settled(client, doc["id"])
        assert failed["status"] == "ERROR"
        assert "no processable content" in failed["metadata"]["error"]

        retried = process(client, doc["id"])
        assert retried["id"] != doc["id"]
        assert retried["metadata"]["retryOf"] == doc["id"]
        assert client.get(f"/documents/{doc['id']}", headers=T1).status_code == 404

    def test_content_returns_extracted_text(self, client: TestClient) -> None:
        doc = upload(client, "note.txt", b"plain words to read back")

        body = client.get(f"/documents/{doc['id']}/content", headers=T1).json()
        assert body == {
            "documentId": doc["id"],
            "name": "note.txt",
            "type": "text/plain",
            "content": "plain words to read back",
        }
        assert client.get(f"/documents/{doc['id']}/content", headers=T2).status_code == 404

    def test_content_of_unreadable_upload(self, client: TestClient) -> None:
        response = client.post(
            "/documents", files={"file": ("image.png", b"\x89PNG", "image/png")}, headers=T1
        )
        doc_id = response.json()["id"]

        content = client.get(f"/documents/{doc_id}/content", headers=T1)
        assert content.status_code == 400
        assert content.json()["error"] == "invalid_input"

    def test_invalid_metadata_json(self, client: TestClient) -> None:
        response = client.post(
            "/documents", files={"file": ("a.txt", b"x", "text/plain")}, data={"metadata": "{oops"}, headers=T1
        )
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_input"


# ── Embeddings ──────────────────────────────────────────────────────────


class TestEmbeddings:
    def test_single(self, client: TestClient) -> None:
        body = client.post("/embeddings/single", json={"text": "hello world"}).json()
        assert body["provider"] == "fake"
        assert body["dimensions"] == len(body["values"]) == 16

    def test_text_too_long(self, client: TestClient) -> None:
        response = client.post("/embeddings/single", json={"text": "x" * 257})
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "text_too_long"
        assert "64-token budget" in body["message"]

    def test_unknown_provider(self, client: TestClient) -> None:
        response = client.post("/embeddings/single", json={"text": "hi", "provider": "cohere"})
        assert response.status_code == 400
        assert response.json()["error"] == "unknown_provider"

    def test_batch_limit(self, client: TestClient) -> None:
        response = client.post("/embeddings/batch", json={"texts": ["t"] * 101})
        assert response.status_code == 400
        assert response.json()["error"] == "batch_size_exceeded"

    def test_batch(self, client: TestClient) -> None:
        body = client.post("/embeddings/batch", json={"texts": ["a", "b", "c"], "batchSize": 2}).json()
        assert body["batches"] == 2
        assert [v["text"] for v in body["vectors"]] == ["a", "b", "c"]

    def test_similarity(self, client: TestClient) -> None:
        body = client.post("/embeddings/similarity", json={"text1": "same words", "text2": "same words"}).json()
        assert body["similarity"] == pytest.approx(1.0)

    def test_similar_texts(self, client: TestClient) -> None:
        response = client.post(
            "/embeddings/similar-texts",
            json={"queryText": "hello world", "candidateTexts": ["hello world", "goodbye"], "topK": 1},
        )
        assert response.json() == [{"text": "hello world", "similarity": pytest.approx(1.0), "index": 0}]

    def test_similar_texts_threshold(self, client: TestClient) -> None:
        response = client.post(
            "/embeddings/similar-texts",
            json={"queryText": "hello", "candidateTexts": ["hello", "goodbye"], "topK": 2, "threshold": 0.5},
        )
        assert [r["text"] for r in response.json()] == ["hello"]

    def test_providers(self, client: TestClient) -> None:
        body = client.get("/embeddings/providers").json()
        assert body["default"] == "fake"
        assert body["available"] == ["fake"]
        assert body["providers"]["fake"]["maxChars"] == 256


# ── Search ──────────────────────────────────────────────────────────────


def test_search_only_returns_own_tenant(client: TestClient) -> None:
    mine = upload(client, "mine.txt", b"vector stores hold embeddings")
    theirs = upload(client, "theirs.txt", b"vector stores hold embeddings", headers=T2)
    process(client, mine["id"])
    process(client, theirs["id"], headers=T2)

    body = client.post("/search", json={"query": "embeddings", "k": 5}, headers=T1).json()
    assert len(body["results"]) == 1
    assert body["results"][0]["citation"]["document_id"] == mine["id"]
    assert body["results"][0]["ref"] == "[mine.txt§0]"


# ── Event channel ───────────────────────────────────────────────────────


def test_websocket_receives_document_events(client: TestClient, services: Services) -> None:
    with client.websocket_connect("/ws?tenantId=t1&userId=u1") as ws:
        ws.send_json({"event": "join_documents"})
        deadline = time.monotonic() + 5
        while not services.hub.members("documents:t1") and time.monotonic() < deadline:
            time.sleep(0.01)

        doc = upload(client, "live.txt", b"live update")
        message = ws.receive_json()

    assert message["event"] == "document_uploaded"
    assert message["data"]["document"]["id"] == doc["id"]
