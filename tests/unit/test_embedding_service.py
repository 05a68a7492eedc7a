"""Unit tests for the embedding service facade."""

from __future__ import annotations

import math

import pytest

from knowledge_hub.embeddings.registry import ProviderRegistry
from knowledge_hub.embeddings.service import EmbeddingService
from knowledge_hub.errors import BatchSizeExceeded, CandidateSetTooLarge, TextTooLong, TopKExceeded, UnknownProvider

from conftest import FAKE_PROFILE, KeywordEmbeddings, make_service

TOO_LONG = "x" * (FAKE_PROFILE.max_chars + 1)


class TestSingleAndBatch:
    @pytest.mark.asyncio
    async def test_generate_embedding(self, embedding_service: EmbeddingService) -> None:
        vector = await embedding_service.generate_embedding("hello world")
        assert vector.provider == "fake"
        assert vector.model == "fake-embed-1"
        assert len(vector.values) == vector.dimensions == 16

    @pytest.mark.asyncio
    async def test_generate_embedding_rejects_long_text(
        self, embedding_service: EmbeddingService, fake_embeddings: KeywordEmbeddings
    ) -> None:
        with pytest.raises(TextTooLong):
            await embedding_service.generate_embedding(TOO_LONG)
        assert fake_embeddings.calls == []

    @pytest.mark.asyncio
    async def test_unknown_provider(self, embedding_service: EmbeddingService) -> None:
        with pytest.raises(UnknownProvider):
            await embedding_service.generate_embedding("hi", provider="cohere")

    @pytest.mark.asyncio
    async def test_batch_of_101_is_rejected(
        self, embedding_service: EmbeddingService, fake_embeddings: KeywordEmbeddings
    ) -> None:
        with pytest.raises(BatchSizeExceeded):
            await embedding_service.generate_batch_embeddings(["t"] * 101)
        assert fake_embeddings.calls == []

    @pytest.mark.asyncio
    async def test_batch_respects_batch_size(self, embedding_service: EmbeddingService) -> None:
        result = await embedding_service.generate_batch_embeddings(["a", "b", "c", "d", "e"], batch_size=2)
        assert result.batches == 3
        assert [v.text for v in result.vectors] == ["a", "b", "c", "d", "e"]

    def test_default_provider_falls_back_to_first_registered(self) -> None:
        service = EmbeddingService(ProviderRegistry([FAKE_PROFILE]), default_provider="gemini")
        assert service.default_provider == "fake"

    def test_list_providers(self, embedding_service: EmbeddingService) -> None:
        assert list(embedding_service.list_providers()) == ["fake"]


class TestSimilarity:
    @pytest.mark.asyncio
    async def test_identical_texts(self, embedding_service: EmbeddingService) -> None:
        result = await embedding_service.compute_similarity("hello world", "hello world")
        assert result.similarity == pytest.approx(1.0)
        assert result.provider == "fake"

    @pytest.mark.asyncio
    async def test_disjoint_texts(self, embedding_service: EmbeddingService) -> None:
        result = await embedding_service.compute_similarity("hello", "goodbye")
        assert result.similarity == pytest.approx(0.0)

    @pytest.mark.asyncio
    async def test_either_text_too_long(
        self, embedding_service: EmbeddingService, fake_embeddings: KeywordEmbeddings
    ) -> None:
        with pytest.raises(TextTooLong):
            await embedding_service.compute_similarity("fine", TOO_LONG)
        assert fake_embeddings.calls == []


class TestFindSimilarTexts:
    @pytest.mark.asyncio
    async def test_hello_world_scenario(self, embedding_service: EmbeddingService) -> None:
        results = await embedding_service.find_similar_texts("hello world", ["hello world", "goodbye"], top_k=1)
        assert len(results) == 1
        assert results[0].text == "hello world"
        assert results[0].index == 0
        assert results[0].similarity == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_ties_keep_input_order(self, embedding_service: EmbeddingService) -> None:
        candidates = ["green tea", "black coffee", "green tea", "green"]
        results = await embedding_service.find_similar_texts("green tea", candidates, top_k=3)
        assert [r.index for r in results] == [0, 2, 3]

    @pytest.mark.asyncio
    async def test_same_request_ranks_identically(self, embedding_service: EmbeddingService) -> None:
        candidates = ["red apple", "green apple", "red car", "blue sky"]
        first = await embedding_service.find_similar_texts("red apple", candidates, top_k=4)
        second = await embedding_service.find_similar_texts("red apple", candidates, top_k=4)
        assert first == second

    @pytest.mark.asyncio
    async def test_candidates_beyond_one_batch_are_grouped(self) -> None:
        backend = KeywordEmbeddings(size=256)
        service = make_service(backend, profile=FAKE_PROFILE.model_copy(update={"dimensions": 256}))
        candidates = [f"item{i}" for i in range(150)]
        results = await service.find_similar_texts("item149", candidates, top_k=1)
        assert results[0].index == 149
        # one query call plus two candidate groups of at most 100
        assert sorted(len(c) for c in backend.calls) == [1, 50, 50, 50]

    @pytest.mark.asyncio
    async def test_empty_candidates(self, embedding_service: EmbeddingService) -> None:
        assert await embedding_service.find_similar_texts("anything", []) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("top_k", [0, 101])
    async def test_top_k_out_of_range(
        self, embedding_service: EmbeddingService, fake_embeddings: KeywordEmbeddings, top_k: int
    ) -> None:
        with pytest.raises(TopKExceeded):
            await embedding_service.find_similar_texts("q", ["a"], top_k=top_k)
        assert fake_embeddings.calls == []

    @pytest.mark.asyncio
    async def test_too_many_candidates(
        self, embedding_service: EmbeddingService, fake_embeddings: KeywordEmbeddings
    ) -> None:
        with pytest.raises(CandidateSetTooLarge):
            await embedding_service.find_similar_texts("q", ["c"] * 1001)
        assert fake_embeddings.calls == []

    @pytest.mark.asyncio
    async def test_oversized_candidate_rejects_whole_request(
        self, embedding_service: EmbeddingService, fake_embeddings: KeywordEmbeddings
    ) -> None:
        with pytest.raises(TextTooLong) as exc_info:
            await embedding_service.find_similar_texts("q", ["ok", TOO_LONG])
        assert exc_info.value.count == 1
        assert fake_embeddings.calls == []


class TestEmbedForSearch:
    @pytest.mark.asyncio
    async def test_short_query_is_embedded_directly(
        self, embedding_service: EmbeddingService, fake_embeddings: KeywordEmbeddings
    ) -> None:
        vector = await embedding_service.embed_for_search("hello world")
        assert vector.values == fake_embeddings.vector("hello world")

    @pytest.mark.asyncio
    async def test_long_query_is_chunked_and_normalised(
        self, embedding_service: EmbeddingService, fake_embeddings: KeywordEmbeddings
    ) -> None:
        query = " ".join(["alpha beta gamma"] * 60)
        vector = await embedding_service.embed_for_search(query)

        assert len(vector.values) == FAKE_PROFILE.dimensions
        assert math.isclose(math.sqrt(sum(v * v for v in vector.values)), 1.0, rel_tol=1e-9)
        assert sum(len(c) for c in fake_embeddings.calls) > 1
