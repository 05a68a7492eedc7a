"""FastAPI application exposing documents, embeddings, search and the event channel."""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator

from fastapi import Depends, FastAPI, File, Form, Header, Query, Request, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from knowledge_hub.config import settings
from knowledge_hub.documents.lifecycle import LifecycleEngine
from knowledge_hub.documents.models import Document, DocumentStatus
from knowledge_hub.embeddings.service import EmbeddingService
from knowledge_hub.errors import (
    DocumentNotFound,
    InputValidationError,
    InvalidTransition,
    KnowledgeHubError,
    ProviderError,
    ProviderTimeout,
)
from knowledge_hub.ingestion.pipeline import IngestionPipeline
from knowledge_hub.ingestion.storage import LocalObjectStorage, ObjectStorage
from knowledge_hub.realtime.hub import EventHub
from knowledge_hub.retrieval.base import VectorStoreBase
from knowledge_hub.retrieval.models import MetadataFilter
from knowledge_hub.retrieval.retriever import SemanticRetriever

logger = logging.getLogger(__name__)


# ── Service container ─────────────────────────────────────────────────
@dataclass
class Services:
    """Everything a request handler needs, wired once per process."""

    lifecycle: LifecycleEngine
    embeddings: EmbeddingService
    store: VectorStoreBase
    storage: ObjectStorage
    pipeline: IngestionPipeline
    hub: EventHub
    retriever: SemanticRetriever


def build_services(
    *,
    store: VectorStoreBase | None = None,
    storage: ObjectStorage | None = None,
    embeddings: EmbeddingService | None = None,
) -> Services:
    """Wire the services; unset collaborators come from settings."""
    if store is None:
        from knowledge_hub.retrieval.chroma_store import ChromaVectorStore

        store = ChromaVectorStore(settings.chroma_collection, host=settings.chroma_host, port=settings.chroma_port)
    storage = storage or LocalObjectStorage(settings.storage_dir)
    embeddings = embeddings or EmbeddingService()
    lifecycle = LifecycleEngine()
    hub = EventHub()
    lifecycle.subscribe(hub.publish_lifecycle)
    return Services(
        lifecycle=lifecycle,
        embeddings=embeddings,
        store=store,
        storage=storage,
        pipeline=IngestionPipeline(lifecycle, embeddings, store, storage),
        hub=hub,
        retriever=SemanticRetriever(store, embeddings),
    )


# ── Request schemas ───────────────────────────────────────────────────
class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class EmbeddingRequest(_Request):
    text: str
    provider: str | None = None


class BatchEmbeddingRequest(_Request):
    texts: list[str]
    provider: str | None = None
    batch_size: int | None = Field(default=None, alias="batchSize")


class SimilarityRequest(_Request):
    text1: str
    text2: str
    provider: str | None = None


class SimilarTextsRequest(_Request):
    query_text: str = Field(alias="queryText")
    candidate_texts: list[str] = Field(alias="candidateTexts")
    top_k: int = Field(default=5, alias="topK")
    threshold: float | None = None
    provider: str | None = None


class SearchRequest(_Request):
    query: str
    k: int | None = None
    document_id: str | None = Field(default=None, alias="documentId")
    provider: str | None = None


# ── Errors ────────────────────────────────────────────────────────────
def _status_for(exc: KnowledgeHubError) -> int:
    if isinstance(exc, DocumentNotFound):
        return 404
    if isinstance(exc, InvalidTransition):
        return 409
    if isinstance(exc, ProviderTimeout):
        return 504
    if isinstance(exc, ProviderError):
        return 502
    if isinstance(exc, InputValidationError):
        return 400
    return 500


async def _handle_error(request: Request, exc: KnowledgeHubError) -> JSONResponse:
    status = _status_for(exc)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"success": False, "error": exc.code, "message": str(exc)})


# ── Dependencies ──────────────────────────────────────────────────────
def get_services(request: Request) -> Services:
    return request.app.state.services


def tenant_id(x_tenant_id: str = Header(default="default", alias="X-Tenant-Id")) -> str:
    return x_tenant_id


def user_id(x_user_id: str | None = Header(default=None, alias="X-User-Id")) -> str | None:
    return x_user_id


def _owned(services: Services, document_id: str, tenant: str) -> Document:
    document = services.lifecycle.get(document_id)
    if document.tenant_id != tenant:
        raise DocumentNotFound(document_id)
    return document


# ── Application ───────────────────────────────────────────────────────
def create_app(services: Services | None = None) -> FastAPI:
    """Build the API; services are created on startup unless injected."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logging.basicConfig(level=settings.log_level)
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services()
        yield
        await app.state.services.pipeline.wait_idle()
        await app.state.services.hub.flush()

    app = FastAPI(
        title="Knowledge Hub API",
        version="0.1.0",
        description="Document ingestion, embeddings and semantic search with real-time updates.",
        lifespan=lifespan,
    )
    app.state.services = services
    app.add_exception_handler(KnowledgeHubError, _handle_error)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Liveness probe."""
        return {"status": "ok"}

    # ── Documents ─────────────────────────────────────────────────────
    @app.post("/documents", status_code=201)
    async def upload_document(
        file: UploadFile = File(...),
        agent_id: str | None = Form(default=None, alias="agentId"),
        metadata: str | None = Form(default=None),
        tenant: str = Depends(tenant_id),
        uploader: str | None = Depends(user_id),
        svc: Services = Depends(get_services),
    ) -> dict[str, Any]:
        """Store an upload and schedule processing in the background."""
        extra: dict[str, Any] = {}
        if metadata:
            try:
                extra = json.loads(metadata)
            except ValueError as exc:
                raise InputValidationError(f"metadata is not valid JSON: {exc}") from exc
            if not isinstance(extra, dict):
                raise InputValidationError("metadata must be a JSON object")
        if uploader:
            extra.setdefault("uploadedBy", uploader)
        data = await file.read()
        document = await svc.pipeline.upload(
            file.filename or "upload",
            data,
            content_type=file.content_type,
            agent_id=agent_id,
            tenant_id=tenant,
            metadata=extra,
        )
        if document.status is DocumentStatus.UPLOADING:
            document = svc.pipeline.schedule(document.id)
        return document.to_wire()

    @app.get("/documents")
    async def list_documents(
        agent_id: str | None = Query(default=None, alias="agentId"),
        tenant: str = Depends(tenant_id),
        svc: Services = Depends(get_services),
    ) -> dict[str, Any]:
        documents = svc.lifecycle.list(tenant_id=tenant, agent_id=agent_id)
        return {"documents": [d.to_wire() for d in documents]}

    @app.get("/documents/{document_id}")
    async def get_document(
        document_id: str, tenant: str = Depends(tenant_id), svc: Services = Depends(get_services)
    ) -> dict[str, Any]:
        return _owned(svc, document_id, tenant).to_wire()

    @app.get("/documents/{document_id}/content")
    async def document_content(
        document_id: str, tenant: str = Depends(tenant_id), svc: Services = Depends(get_services)
    ) -> dict[str, Any]:
        """Text extracted from the stored upload."""
        document = _owned(svc, document_id, tenant)
        try:
            text = await svc.pipeline.content(document_id)
        except ValueError as exc:
            raise InputValidationError(str(exc)) from exc
        return {"documentId": document.id, "name": document.name, "type": document.type, "content": text}

    @app.delete("/documents/{document_id}")
    async def delete_document(
        document_id: str, tenant: str = Depends(tenant_id), svc: Services = Depends(get_services)
    ) -> dict[str, Any]:
        _owned(svc, document_id, tenant)
        await svc.pipeline.delete(document_id)
        return {"success": True, "documentId": document_id}

    @app.post("/documents/{document_id}/process")
    async def process_document(
        document_id: str,
        wait: bool = False,
        tenant: str = Depends(tenant_id),
        svc: Services = Depends(get_services),
    ) -> dict[str, Any]:
        """Trigger processing.

        Ready documents are returned unchanged; failed ones are retried as
        a fresh ingestion under a new id.
        """
        document = _owned(svc, document_id, tenant)
        if document.status is DocumentStatus.READY:
            return document.to_wire()
        if document.status is DocumentStatus.ERROR:
            return (await svc.pipeline.reprocess(document_id, wait=wait)).to_wire()
        if wait:
            return (await svc.pipeline.process(document_id)).to_wire()
        return svc.pipeline.schedule(document_id).to_wire()

    # ── Embeddings ────────────────────────────────────────────────────
    @app.post("/embeddings/single")
    async def embed_single(body: EmbeddingRequest, svc: Services = Depends(get_services)) -> dict[str, Any]:
        vector = await svc.embeddings.generate_embedding(body.text, body.provider)
        return vector.model_dump()

    @app.post("/embeddings/batch")
    async def embed_batch(body: BatchEmbeddingRequest, svc: Services = Depends(get_services)) -> dict[str, Any]:
        result = await svc.embeddings.generate_batch_embeddings(body.texts, body.provider, body.batch_size)
        return result.model_dump()

    @app.post("/embeddings/similarity")
    async def similarity(body: SimilarityRequest, svc: Services = Depends(get_services)) -> dict[str, Any]:
        result = await svc.embeddings.compute_similarity(body.text1, body.text2, body.provider)
        return result.model_dump()

    @app.post("/embeddings/similar-texts")
    async def similar_texts(body: SimilarTextsRequest, svc: Services = Depends(get_services)) -> list[dict[str, Any]]:
        results = await svc.embeddings.find_similar_texts(
            body.query_text, body.candidate_texts, top_k=body.top_k, provider=body.provider
        )
        if body.threshold is not None:
            results = [r for r in results if r.similarity >= body.threshold]
        return [r.model_dump() for r in results]

    @app.get("/embeddings/providers")
    async def providers(svc: Services = Depends(get_services)) -> dict[str, Any]:
        return {
            "default": svc.embeddings.default_provider,
            "available": svc.embeddings.registry.available(),
            "providers": {
                pid: {**p.model_dump(), "maxChars": p.max_chars} for pid, p in svc.embeddings.list_providers().items()
            },
        }

    # ── Search ────────────────────────────────────────────────────────
    @app.post("/search")
    async def search(
        body: SearchRequest, tenant: str = Depends(tenant_id), svc: Services = Depends(get_services)
    ) -> dict[str, Any]:
        """Semantic search over the caller's ready documents."""
        filters = [MetadataFilter.equals("tenant_id", tenant)]
        if body.document_id:
            filters.append(MetadataFilter.equals("document_id", body.document_id))
        results = await svc.retriever.search(body.query, k=body.k, filters=filters, provider=body.provider)
        return {
            "results": [
                {"content": r.content, "citation": r.citation.model_dump(mode="json"), "ref": r.citation.short_ref()}
                for r in results
            ]
        }

    # ── Event channel ─────────────────────────────────────────────────
    @app.websocket("/ws")
    async def events(
        websocket: WebSocket,
        tenant: str = Query(alias="tenantId"),
        user_id: str = Query(alias="userId"),
        user_name: str = Query(default="", alias="userName"),
    ) -> None:
        svc: Services = websocket.app.state.services
        await websocket.accept()
        client = svc.hub.connect(websocket, tenant_id=tenant, user_id=user_id, user_name=user_name)
        try:
            while True:
                message = await websocket.receive_json()
                if isinstance(message, dict):
                    await svc.hub.handle_message(client, message)
                else:
                    logger.warning("Ignoring non-object message from client %s", client.id)
        except WebSocketDisconnect:
            pass
        finally:
            await svc.hub.disconnect(client)

    return app


app = create_app()

__all__ = ["Services", "app", "build_services", "create_app"]
