"""Semantic retriever — metadata-aware search with citation tracking.

Usage::

    from knowledge_hub.retrieval.retriever import SemanticRetriever

    retriever = SemanticRetriever(store, embeddings)
    results   = await retriever.search("How are chunks sized?", k=5)
    for r in results:
        print(r.citation.short_ref(), r.content[:80])
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from knowledge_hub.embeddings.service import EmbeddingService
from knowledge_hub.retrieval.base import VectorStoreBase
from knowledge_hub.retrieval.models import Citation, MetadataFilter, RetrievalResult

logger = logging.getLogger(__name__)


class SemanticRetriever:
    """High-level retriever over any :class:`VectorStoreBase`.

    Parameters
    ----------
    store:
        A concrete vector-store backend.
    embeddings:
        Service used to embed queries; must use the same provider the
        documents were ingested with.
    default_k:
        Default number of results returned by :meth:`search`.
    score_threshold:
        Optional minimum similarity; ``None`` keeps every hit.
    """

    def __init__(
        self,
        store: VectorStoreBase,
        embeddings: EmbeddingService,
        *,
        default_k: int = 5,
        score_threshold: float | None = None,
    ) -> None:
        self._store = store
        self._embeddings = embeddings
        self.default_k = default_k
        self.score_threshold = score_threshold

    async def search(
        self,
        query: str,
        *,
        k: int | None = None,
        filters: list[MetadataFilter] | None = None,
        provider: str | None = None,
    ) -> list[RetrievalResult]:
        """Run a semantic search and return results with citations.

        Queries longer than the provider budget are chunked before
        embedding rather than rejected.
        """
        k = k or self.default_k
        self._embeddings.ranker.check(0, k)
        vector = await self._embeddings.embed_for_search(query, provider)
        raw_hits = await asyncio.to_thread(self._store.similarity_search, vector.values, k=k, filters=filters)
        results = self._to_results(raw_hits)
        logger.info("search returned %d results for %r", len(results), query[:80])
        return results

    async def search_by_embedding(
        self,
        embedding: list[float],
        *,
        k: int | None = None,
        filters: list[MetadataFilter] | None = None,
    ) -> list[RetrievalResult]:
        """Same as :meth:`search` but accepts a pre-computed embedding."""
        k = k or self.default_k
        raw_hits = await asyncio.to_thread(self._store.similarity_search, embedding, k=k, filters=filters)
        return self._to_results(raw_hits)

    # -- internals ------------------------------------------------------------

    def _to_results(self, raw_hits: list[dict[str, Any]]) -> list[RetrievalResult]:
        results: list[RetrievalResult] = []
        for hit in raw_hits:
            score = hit.get("score")
            if self.score_threshold is not None and score is not None and score < self.score_threshold:
                continue

            meta = hit.get("metadata", {})
            citation = Citation(
                document_id=meta.get("document_id"),
                source=meta.get("source", "unknown"),
                chunk_index=meta.get("chunk_index"),
                score=score,
                metadata=meta,
            )
            results.append(RetrievalResult(content=hit.get("content", ""), citation=citation))
        return results
