"""Async HTTP client for the knowledge-hub REST surface."""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from knowledge_hub.documents.models import Document
from knowledge_hub.embeddings.models import EmbeddingVector, SimilarText
from knowledge_hub.errors import KnowledgeHubError

logger = logging.getLogger(__name__)


class ApiError(KnowledgeHubError):
    """Non-2xx response; ``code`` mirrors the server's error code."""

    def __init__(self, status_code: int, code: str, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class ApiClient:
    """Thin wrapper over :class:`httpx.AsyncClient`.

    Parameters
    ----------
    base_url:
        Root URL of the serving app.
    tenant_id, user_id:
        Identity forwarded in ``X-Tenant-Id`` / ``X-User-Id`` headers.
    client:
        Pre-built client (e.g. with an ``ASGITransport`` in tests).
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8080",
        *,
        tenant_id: str,
        user_id: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        headers = {"X-Tenant-Id": tenant_id, "X-User-Id": user_id}
        if client is None:
            client = httpx.AsyncClient(base_url=base_url, timeout=timeout)
        client.headers.update(headers)
        self._client = client

    async def aclose(self) -> None:
        await self._client.aclose()

    # -- documents ------------------------------------------------------------

    async def upload_document(
        self,
        name: str,
        data: bytes,
        *,
        content_type: str = "application/octet-stream",
        agent_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Document:
        form: dict[str, str] = {}
        if agent_id:
            form["agentId"] = agent_id
        if metadata:
            form["metadata"] = json.dumps(metadata)
        response = await self._client.post(
            "/documents", files={"file": (name, data, content_type)}, data=form
        )
        return Document.model_validate(self._check(response))

    async def list_documents(self) -> list[Document]:
        response = await self._client.get("/documents")
        return [Document.model_validate(d) for d in self._check(response)["documents"]]

    async def process_document(self, document_id: str, *, wait: bool = False) -> Document:
        response = await self._client.post(f"/documents/{document_id}/process", params={"wait": wait})
        return Document.model_validate(self._check(response))

    async def delete_document(self, document_id: str) -> None:
        self._check(await self._client.delete(f"/documents/{document_id}"))

    # -- embeddings -----------------------------------------------------------

    async def generate_embedding(self, text: str, provider: str | None = None) -> EmbeddingVector:
        response = await self._client.post("/embeddings/single", json={"text": text, "provider": provider})
        return EmbeddingVector.model_validate(self._check(response))

    async def find_similar_texts(
        self,
        query_text: str,
        candidate_texts: list[str],
        *,
        top_k: int = 5,
        provider: str | None = None,
    ) -> list[SimilarText]:
        response = await self._client.post(
            "/embeddings/similar-texts",
            json={"queryText": query_text, "candidateTexts": candidate_texts, "topK": top_k, "provider": provider},
        )
        return [SimilarText.model_validate(r) for r in self._check(response)]

    # -- internals ------------------------------------------------------------

    @staticmethod
    def _check(response: httpx.Response) -> Any:
        if response.is_success:
            return response.json()
        try:
            body = response.json()
        except ValueError:
            body = {}
        code = body.get("error", "http_error") if isinstance(body, dict) else "http_error"
        message = body.get("message", response.text) if isinstance(body, dict) else response.text
        logger.warning("%s %s failed: %s %s", response.request.method, response.request.url, response.status_code, code)
        raise ApiError(response.status_code, code, message)
