"""Embedding service — the request/response surface over providers.

Usage::

    from knowledge_hub.embeddings.service import EmbeddingService

    service = EmbeddingService()
    vector  = await service.generate_embedding("hello world", provider="openai")
    ranked  = await service.find_similar_texts("hello", ["hello world", "goodbye"], top_k=1)

Every operation validates its input against the provider profile before
any network call, so caller errors surface immediately and leave nothing
half-done.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

import numpy as np

from knowledge_hub.config import settings
from knowledge_hub.embeddings.backends import BackendPool
from knowledge_hub.embeddings.batching import BatchScheduler
from knowledge_hub.embeddings.models import BatchEmbeddingResult, EmbeddingVector, SimilarityResult, SimilarText
from knowledge_hub.embeddings.registry import ProviderProfile, ProviderRegistry, build_registry
from knowledge_hub.errors import TextTooLong
from knowledge_hub.ingestion.chunker import TextChunker, validate_text_length
from knowledge_hub.retrieval.ranker import SimilarityRanker, cosine_similarity

logger = logging.getLogger(__name__)


class EmbeddingService:
    """Facade wiring the registry, backends, batch scheduler, and ranker.

    Parameters
    ----------
    registry:
        Provider capability table; built from settings when *None*.
    backends:
        Pool of LangChain ``Embeddings`` objects; tests inject fakes.
    scheduler:
        Batch scheduler shared by every call on this service.
    ranker:
        Similarity ranker enforcing candidate and top-K limits.
    default_provider:
        Provider used when a call does not name one.
    """

    def __init__(
        self,
        registry: ProviderRegistry | None = None,
        *,
        backends: BackendPool | None = None,
        scheduler: BatchScheduler | None = None,
        ranker: SimilarityRanker | None = None,
        default_provider: str | None = None,
    ) -> None:
        self.registry = registry or build_registry()
        self.backends = backends or BackendPool()
        self.scheduler = scheduler or BatchScheduler()
        self.ranker = ranker or SimilarityRanker(
            max_candidates=settings.max_candidates, max_top_k=settings.max_top_k
        )
        self.chunker = TextChunker(settings.chunk_overlap)
        preferred = default_provider or settings.default_provider
        ids = self.registry.ids()
        self.default_provider = preferred if preferred in self.registry or not ids else ids[0]

    # -- public API -----------------------------------------------------------

    def profile(self, provider: str | None = None) -> ProviderProfile:
        return self.registry.get(provider or self.default_provider)

    def list_providers(self) -> dict[str, ProviderProfile]:
        """Registered provider ids and their profiles."""
        return self.registry.profiles()

    async def generate_embedding(self, text: str, provider: str | None = None) -> EmbeddingVector:
        """Embed one text, or raise :class:`TextTooLong`."""
        profile = self.profile(provider)
        return await self.scheduler.embed_query(text, profile, self.backends.get(profile))

    async def generate_batch_embeddings(
        self,
        texts: Sequence[str],
        provider: str | None = None,
        batch_size: int | None = None,
    ) -> BatchEmbeddingResult:
        """Embed *texts* and return vectors in input order."""
        profile = self.profile(provider)
        return await self.scheduler.embed(texts, profile, self.backends.get(profile), batch_size)

    async def compute_similarity(self, text1: str, text2: str, provider: str | None = None) -> SimilarityResult:
        """Cosine similarity of two texts under the same provider."""
        profile = self.profile(provider)
        self._require_fit([text1, text2], profile)
        backend = self.backends.get(profile)
        v1, v2 = await asyncio.gather(
            self.scheduler.embed_query(text1, profile, backend),
            self.scheduler.embed_query(text2, profile, backend),
        )
        return SimilarityResult(
            similarity=cosine_similarity(v1.values, v2.values),
            text1=text1,
            text2=text2,
            provider=profile.provider,
        )

    async def find_similar_texts(
        self,
        query_text: str,
        candidate_texts: Sequence[str],
        top_k: int = 5,
        provider: str | None = None,
    ) -> list[SimilarText]:
        """Rank *candidate_texts* by similarity to *query_text*.

        Returns at most *top_k* results, best first, ties in input order.
        """
        profile = self.profile(provider)
        self.ranker.check(len(candidate_texts), top_k)
        self._require_fit([query_text, *candidate_texts], profile)
        if not candidate_texts:
            return []

        backend = self.backends.get(profile)
        limit = self.scheduler.max_texts
        groups = [candidate_texts[i : i + limit] for i in range(0, len(candidate_texts), limit)]
        query, *results = await asyncio.gather(
            self.scheduler.embed_query(query_text, profile, backend),
            *(self.scheduler.embed(group, profile, backend) for group in groups),
        )
        vectors = [v.values for result in results for v in result.vectors]
        ranked = self.ranker.rank(query.values, list(zip(candidate_texts, vectors)), top_k)
        return [SimilarText(text=r.item, similarity=r.score, index=r.index) for r in ranked]

    async def embed_for_search(self, text: str, provider: str | None = None) -> EmbeddingVector:
        """Embed a query of any length.

        Oversized text is chunked and the chunk vectors are averaged, then
        re-normalised, so long queries still produce one search vector.
        """
        profile = self.profile(provider)
        if validate_text_length(text, profile):
            return await self.generate_embedding(text, profile.provider)

        chunks = self.chunker.split(text, profile)
        values: list[list[float]] = []
        for start in range(0, len(chunks), self.scheduler.max_texts):
            result = await self.generate_batch_embeddings(
                [c.text for c in chunks[start : start + self.scheduler.max_texts]], profile.provider
            )
            values.extend(v.values for v in result.vectors)
        mean = np.mean(np.asarray(values, dtype=np.float64), axis=0)
        norm = np.linalg.norm(mean)
        if norm > 0:
            mean = mean / norm
        logger.info("Embedded oversized query as %d chunks with %s", len(chunks), profile.provider)
        return EmbeddingVector(
            provider=profile.provider,
            model=profile.model,
            dimensions=profile.dimensions,
            values=mean.tolist(),
            text=text,
        )

    # -- internals ------------------------------------------------------------

    @staticmethod
    def _require_fit(texts: Sequence[str], profile: ProviderProfile) -> None:
        oversized = sum(1 for text in texts if not validate_text_length(text, profile))
        if oversized:
            raise TextTooLong(profile.provider, profile.max_tokens, oversized)
