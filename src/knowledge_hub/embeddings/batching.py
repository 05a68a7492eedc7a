"""Bounded, order-preserving batch submission to an embedding backend.

Validation happens up-front: an oversized request or a single over-budget
text rejects the whole call before any provider request is issued.  Once
submitted, batches run concurrently under a semaphore; a failing batch
never cancels its siblings, and the caller gets back exactly which input
indices succeeded.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Sequence

from langchain_core.embeddings import Embeddings

from knowledge_hub.config import settings
from knowledge_hub.embeddings.models import BatchEmbeddingResult, EmbeddingVector
from knowledge_hub.embeddings.registry import ProviderProfile
from knowledge_hub.errors import (
    BatchSizeExceeded,
    KnowledgeHubError,
    PartialBatchFailure,
    ProviderError,
    ProviderTimeout,
    TextTooLong,
)
from knowledge_hub.ingestion.chunker import validate_text_length

logger = logging.getLogger(__name__)


class BatchScheduler:
    """Group texts into batches and embed them with bounded concurrency.

    Parameters
    ----------
    default_batch_size:
        Texts per provider call when the caller does not choose.
    max_texts:
        Hard ceiling on texts per :meth:`embed` call and per batch.
    max_concurrency:
        Maximum provider calls in flight at once, across all callers
        sharing this scheduler.
    timeout:
        Seconds allowed per provider call before :class:`ProviderTimeout`.
    """

    def __init__(
        self,
        *,
        default_batch_size: int = settings.embedding_batch_size,
        max_texts: int = settings.embedding_max_batch_texts,
        max_concurrency: int = settings.embedding_max_concurrency,
        timeout: float = settings.provider_timeout_seconds,
    ) -> None:
        self.default_batch_size = default_batch_size
        self.max_texts = max_texts
        self.timeout = timeout
        self._semaphore = asyncio.Semaphore(max_concurrency)

    # -- validation -----------------------------------------------------------

    def plan(self, texts: Sequence[str], profile: ProviderProfile, batch_size: int | None = None) -> list[range]:
        """Validate *texts* and return the index range of every batch.

        Raises :class:`BatchSizeExceeded` or :class:`TextTooLong`; no
        provider call is made either way.
        """
        if len(texts) > self.max_texts:
            raise BatchSizeExceeded(len(texts), self.max_texts)
        size = self.default_batch_size if batch_size is None else batch_size
        if not 1 <= size <= self.max_texts:
            raise BatchSizeExceeded(size, self.max_texts)

        oversized = sum(1 for text in texts if not validate_text_length(text, profile))
        if oversized:
            raise TextTooLong(profile.provider, profile.max_tokens, oversized)

        return [range(start, min(start + size, len(texts))) for start in range(0, len(texts), size)]

    # -- submission -----------------------------------------------------------

    async def embed(
        self,
        texts: Sequence[str],
        profile: ProviderProfile,
        backend: Embeddings,
        batch_size: int | None = None,
    ) -> BatchEmbeddingResult:
        """Embed *texts* and return vectors in input order.

        Raises
        ------
        PartialBatchFailure
            When at least one batch failed mid-flight.  The exception
            carries the vectors of every batch that succeeded.
        """
        batches = self.plan(texts, profile, batch_size)
        t0 = time.monotonic()
        outcomes = await asyncio.gather(
            *(self._run_batch([texts[i] for i in batch], profile, backend) for batch in batches),
            return_exceptions=True,
        )

        succeeded: dict[int, EmbeddingVector] = {}
        failed: list[int] = []
        errors: list[BaseException] = []
        for batch, outcome in zip(batches, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(
                    "Batch %d-%d failed on %s: %s", batch.start, batch.stop - 1, profile.provider, outcome
                )
                failed.extend(batch)
                errors.append(outcome)
                continue
            for i, values in zip(batch, outcome):
                succeeded[i] = EmbeddingVector(
                    provider=profile.provider,
                    model=profile.model,
                    dimensions=profile.dimensions,
                    values=values,
                    text=texts[i],
                )

        if failed:
            raise PartialBatchFailure(
                provider=profile.provider, succeeded=succeeded, failed_indices=failed, errors=errors
            )

        logger.info(
            "Generated %d embeddings using %s in %d batch(es), %.0fms",
            len(texts),
            profile.provider,
            len(batches),
            (time.monotonic() - t0) * 1000,
        )
        return BatchEmbeddingResult(
            provider=profile.provider,
            model=profile.model,
            dimensions=profile.dimensions,
            vectors=[succeeded[i] for i in range(len(texts))],
            batches=len(batches),
            total_chars=sum(len(t) for t in texts),
        )

    async def embed_query(self, text: str, profile: ProviderProfile, backend: Embeddings) -> EmbeddingVector:
        """Embed a single ad-hoc text under the same limits as a batch."""
        if not validate_text_length(text, profile):
            raise TextTooLong(profile.provider, profile.max_tokens)
        values = await self._call(backend.aembed_query(text), profile)
        self._check_dimensions([values], profile)
        return EmbeddingVector(
            provider=profile.provider,
            model=profile.model,
            dimensions=profile.dimensions,
            values=values,
            text=text,
        )

    # -- internals ------------------------------------------------------------

    async def _run_batch(self, batch: list[str], profile: ProviderProfile, backend: Embeddings) -> list[list[float]]:
        vectors = await self._call(backend.aembed_documents(batch), profile)
        if len(vectors) != len(batch):
            raise ProviderError(
                f"{profile.provider} returned {len(vectors)} vectors for {len(batch)} texts",
                provider=profile.provider,
            )
        self._check_dimensions(vectors, profile)
        return vectors

    async def _call(self, coro, profile: ProviderProfile):  # noqa: ANN001, ANN202
        async with self._semaphore:
            try:
                return await asyncio.wait_for(coro, timeout=self.timeout)
            except asyncio.TimeoutError:
                raise ProviderTimeout(
                    f"{profile.provider} did not respond within {self.timeout:g}s", provider=profile.provider
                ) from None
            except KnowledgeHubError:
                raise
            except Exception as exc:
                raise ProviderError(f"{profile.provider} embedding call failed: {exc}", provider=profile.provider) from exc

    @staticmethod
    def _check_dimensions(vectors: list[list[float]], profile: ProviderProfile) -> None:
        for values in vectors:
            if len(values) != profile.dimensions:
                raise ProviderError(
                    f"{profile.provider} returned a {len(values)}-dim vector, expected {profile.dimensions}",
                    provider=profile.provider,
                )
