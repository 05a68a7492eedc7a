"""Ingestion pipeline — from uploaded bytes to embedded, searchable chunks.

Steps, each a suspension point::

    create (UPLOADING) → store bytes → PROCESSING → extract text → chunk
      → batch embed → upsert vectors → READY

Once a document exists, every failure lands it in ``ERROR`` and that
transition is the caller-visible signal.  Vectors are written only after
every chunk embedded successfully, so a failed document never leaves
orphaned chunks in the vector store.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from knowledge_hub.documents.lifecycle import LifecycleEngine
from knowledge_hub.documents.models import Chunk, Document, DocumentStatus
from knowledge_hub.embeddings.models import EmbeddingVector
from knowledge_hub.embeddings.service import EmbeddingService
from knowledge_hub.errors import DocumentNotFound, InvalidTransition
from knowledge_hub.ingestion.loader import extract_text, guess_content_type
from knowledge_hub.ingestion.storage import ObjectStorage
from knowledge_hub.retrieval.base import VectorStoreBase
from knowledge_hub.retrieval.models import VectorRecord

logger = logging.getLogger(__name__)


class IngestionPipeline:
    """Drives documents through the lifecycle engine.

    Parameters
    ----------
    lifecycle:
        The engine that owns document status.
    embeddings:
        Embedding service (registry, backends, batch scheduler).
    store:
        Vector-store backend receiving the chunk vectors.
    storage:
        Object storage holding the raw uploaded bytes.
    provider:
        Provider used for document chunks; defaults to the service default.
    """

    def __init__(
        self,
        lifecycle: LifecycleEngine,
        embeddings: EmbeddingService,
        store: VectorStoreBase,
        storage: ObjectStorage,
        *,
        provider: str | None = None,
    ) -> None:
        self.lifecycle = lifecycle
        self.embeddings = embeddings
        self.store = store
        self.storage = storage
        self.provider = provider or embeddings.default_provider
        self._in_flight: dict[str, asyncio.Task[Document]] = {}
        self._writes: dict[str, asyncio.Future[None]] = {}

    # -- public API -----------------------------------------------------------

    async def upload(
        self,
        name: str,
        data: bytes,
        *,
        content_type: str | None = None,
        agent_id: str | None = None,
        tenant_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Document:
        """Create the document and persist its bytes.

        Returns the document in ``UPLOADING``, or in ``ERROR`` if storage
        rejected the bytes.
        """
        document = self.lifecycle.create(
            name,
            size=len(data),
            content_type=guess_content_type(name, content_type),
            agent_id=agent_id,
            tenant_id=tenant_id,
            metadata=metadata,
        )
        try:
            await self.storage.save(document.id, data)
        except Exception as exc:
            logger.warning("Storing bytes for %s failed", document.id, exc_info=True)
            return self.lifecycle.fail(document.id, f"Storage failed: {exc}")
        return document

    async def process(self, document_id: str) -> Document:
        """Run extraction, chunking and embedding for a stored document.

        Concurrent calls for the same document share one run.  Calling
        this for a document already in a terminal state raises
        :class:`~knowledge_hub.errors.InvalidTransition`.
        """
        task = self._start(document_id)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            # Only delete() cancels a run.
            if task.cancelled():
                raise DocumentNotFound(document_id) from None
            raise

    def schedule(self, document_id: str) -> Document:
        """Start processing in the background and return immediately.

        Idempotent while the document is already being processed.
        """
        self._start(document_id)
        return self.lifecycle.get(document_id)

    async def ingest(self, name: str, data: bytes, **kwargs: Any) -> Document:
        """Upload and fully process a document in one call."""
        document = await self.upload(name, data, **kwargs)
        if document.status is DocumentStatus.ERROR:
            return document
        return await self.process(document.id)

    async def reprocess(self, document_id: str, *, wait: bool = True) -> Document:
        """Retry a failed document as a fresh ingestion.

        The stored bytes are re-uploaded under a new document id and the
        failed record is deleted.  With ``wait=False`` processing of the
        new document runs in the background.
        """
        old = self.lifecycle.get(document_id)
        if old.status is not DocumentStatus.ERROR:
            raise InvalidTransition(document_id, old.status.value, DocumentStatus.PROCESSING.value)
        data = await self.storage.load(document_id)
        metadata = {k: v for k, v in old.metadata.items() if k not in ("error", "failedAt")}
        fresh = await self.upload(
            old.name,
            data,
            content_type=old.type,
            agent_id=old.agent_id,
            tenant_id=old.tenant_id,
            metadata={**metadata, "retryOf": old.id},
        )
        await self.delete(document_id)
        logger.info("Retrying %s as %s", document_id, fresh.id)
        if fresh.status is DocumentStatus.ERROR:
            return fresh
        if wait:
            return await self.process(fresh.id)
        return self.schedule(fresh.id)

    async def delete(self, document_id: str) -> Document:
        """Delete a document together with its vectors and stored bytes.

        A run still processing the document is cancelled first, and a
        vector write already handed to the store is awaited, so no chunk
        outlives its document.
        """
        document = self.lifecycle.get(document_id)
        run = self._in_flight.get(document_id)
        if run is not None:
            run.cancel()
            await asyncio.gather(run, return_exceptions=True)
        write = self._writes.get(document_id)
        if write is not None:
            await asyncio.gather(write, return_exceptions=True)
        await asyncio.to_thread(self.store.delete_document, document_id)
        await self.storage.delete(document_id)
        return self.lifecycle.delete(document.id)

    async def content(self, document_id: str) -> str:
        """Return the text extracted from a document's stored bytes."""
        document = self.lifecycle.get(document_id)
        data = await self.storage.load(document_id)
        return await asyncio.to_thread(extract_text, data, document.type, document.name)

    async def wait_idle(self) -> None:
        """Wait until every background run has finished."""
        while self._in_flight:
            await asyncio.gather(*self._in_flight.values(), return_exceptions=True)

    # -- internals ------------------------------------------------------------

    def _start(self, document_id: str) -> asyncio.Task[Document]:
        task = self._in_flight.get(document_id)
        if task is None:
            self.lifecycle.begin_processing(document_id)
            task = asyncio.create_task(self._run(document_id))
            self._in_flight[document_id] = task
            task.add_done_callback(lambda t: self._finished(document_id, t))
        return task

    def _finished(self, document_id: str, task: asyncio.Task[Document]) -> None:
        self._in_flight.pop(document_id, None)
        if not task.cancelled() and task.exception() is not None:
            logger.info("Run for %s ended without a result: %s", document_id, task.exception())

    async def _run(self, document_id: str) -> Document:
        t0 = time.monotonic()
        try:
            document = self.lifecycle.get(document_id)
            data = await self.storage.load(document_id)
            text = await asyncio.to_thread(extract_text, data, document.type, document.name)
            if not text.strip():
                raise ValueError("Document has no processable content")

            profile = self.embeddings.profile(self.provider)
            chunks = self.embeddings.chunker.split(text, profile, document_id=document_id)
            vectors = await self._embed_chunks(chunks)
            records = [
                VectorRecord(
                    id=chunk.chunk_id,
                    document_id=document_id,
                    chunk_index=chunk.index,
                    content=chunk.text,
                    embedding=vector.values,
                    metadata={
                        "source": document.name,
                        "provider": profile.provider,
                        "start": chunk.start,
                        "agent_id": document.agent_id or "",
                        "tenant_id": document.tenant_id or "",
                    },
                )
                for chunk, vector in zip(chunks, vectors)
            ]
            try:
                await self._write(document_id, records)
            except Exception:
                await asyncio.to_thread(self.store.delete_document, document_id)
                raise
            if document_id not in self.lifecycle:
                await asyncio.to_thread(self.store.delete_document, document_id)
                raise DocumentNotFound(document_id)
        except Exception as exc:
            if document_id not in self.lifecycle:
                raise DocumentNotFound(document_id) from exc
            logger.warning("Processing %s failed", document_id, exc_info=True)
            return self.lifecycle.fail(document_id, str(exc) or type(exc).__name__)

        elapsed_ms = (time.monotonic() - t0) * 1000
        return self.lifecycle.complete(
            document_id,
            chunks=len(chunks),
            processing_time=round(elapsed_ms, 1),
            metadata={"provider": profile.provider},
        )

    async def _write(self, document_id: str, records: list[VectorRecord]) -> None:
        # The upsert runs in a worker thread that cancellation cannot stop;
        # delete() waits on this future before removing vectors.
        write = asyncio.ensure_future(asyncio.to_thread(self.store.upsert, records))
        self._writes[document_id] = write
        write.add_done_callback(lambda _: self._writes.pop(document_id, None))
        await asyncio.shield(write)

    async def _embed_chunks(self, chunks: list[Chunk]) -> list[EmbeddingVector]:
        limit = self.embeddings.scheduler.max_texts
        vectors: list[EmbeddingVector] = []
        for start in range(0, len(chunks), limit):
            group = chunks[start : start + limit]
            result = await self.embeddings.generate_batch_embeddings([c.text for c in group], self.provider)
            vectors.extend(v.model_copy(update={"chunk_id": c.chunk_id}) for c, v in zip(group, result.vectors))
        return vectors
