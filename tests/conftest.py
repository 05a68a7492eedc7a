"""Shared pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import pytest
from langchain_core.embeddings import Embeddings

from knowledge_hub.embeddings.backends import BackendPool
from knowledge_hub.embeddings.batching import BatchScheduler
from knowledge_hub.embeddings.registry import ProviderProfile, ProviderRegistry
from knowledge_hub.embeddings.service import EmbeddingService

FAKE_PROFILE = ProviderProfile(provider="fake", model="fake-embed-1", dimensions=16, max_tokens=64)


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


# ── Fake embedding backend ──────────────────────────────────────────────


class KeywordEmbeddings(Embeddings):
    """Deterministic bag-of-words embeddings.

    Words get buckets in first-seen order, so identical texts get identical
    vectors and, until ``size`` distinct words have been seen, texts
    sharing no words are orthogonal.
    """

    def __init__(self, size: int = 16, *, fail_on: str | None = None, delay: float = 0.0) -> None:
        self.size = size
        self.fail_on = fail_on
        self.delay = delay
        self.calls: list[list[str]] = []
        self._vocab: dict[str, int] = {}

    def vector(self, text: str) -> list[float]:
        values = [0.0] * self.size
        for word in text.lower().split():
            values[self._vocab.setdefault(word, len(self._vocab)) % self.size] += 1.0
        return values

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.fail_on is not None and any(self.fail_on in t for t in texts):
            raise RuntimeError(f"provider rejected a text containing {self.fail_on!r}")
        return [self.vector(t) for t in texts]

    def embed_query(self, text: str) -> list[float]:
        return self.embed_documents([text])[0]

    async def aembed_documents(self, texts: list[str]) -> list[list[float]]:
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.embed_documents(texts)

    async def aembed_query(self, text: str) -> list[float]:
        return (await self.aembed_documents([text]))[0]


def make_service(
    backend: Embeddings,
    *,
    profile: ProviderProfile = FAKE_PROFILE,
    scheduler: BatchScheduler | None = None,
) -> EmbeddingService:
    """Embedding service with a single fake provider."""
    return EmbeddingService(
        ProviderRegistry([profile]),
        backends=BackendPool({profile.provider: lambda _: backend}),
        scheduler=scheduler or BatchScheduler(default_batch_size=50, max_texts=100, max_concurrency=4, timeout=5.0),
        default_provider=profile.provider,
    )


# ── Fixtures ────────────────────────────────────────────────────────────


@pytest.fixture()
def fake_embeddings() -> KeywordEmbeddings:
    return KeywordEmbeddings()


@pytest.fixture()
def embedding_service(fake_embeddings: KeywordEmbeddings) -> EmbeddingService:
    return make_service(fake_embeddings)


# ── Fake channel transport ──────────────────────────────────────────────


class RecordingTransport:
    """Transport that records traffic instead of talking to a server."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.connects = 0
        self.closes = 0
        self.on_message: Callable[[dict[str, Any]], None] | None = None
        self.fail_sends = 0

    async def connect(self, on_message: Callable[[dict[str, Any]], None]) -> None:
        self.connects += 1
        self.on_message = on_message

    async def send(self, message: dict[str, Any]) -> None:
        if self.fail_sends:
            self.fail_sends -= 1
            raise ConnectionError("socket dropped")
        self.sent.append(message)

    async def close(self) -> None:
        self.closes += 1

    def push(self, message: dict[str, Any]) -> None:
        """Deliver *message* as if the server had sent it."""
        assert self.on_message is not None
        self.on_message(message)
