"""In-process vector store for development and tests."""

from __future__ import annotations

from typing import Any

from knowledge_hub.retrieval.base import VectorStoreBase
from knowledge_hub.retrieval.models import MetadataFilter, VectorRecord
from knowledge_hub.retrieval.ranker import SimilarityRanker


class InMemoryVectorStore(VectorStoreBase):
    """Dict-backed store that ranks with :class:`SimilarityRanker`."""

    def __init__(self, collection_name: str = "memory") -> None:
        super().__init__(collection_name)
        self.records: dict[str, VectorRecord] = {}
        self._ranker = SimilarityRanker(max_candidates=10**9)

    def upsert(self, records: list[VectorRecord]) -> None:
        for record in records:
            self.records[record.id] = record

    def similarity_search(
        self,
        query_embedding: list[float],
        *,
        k: int = 5,
        filters: list[MetadataFilter] | None = None,
    ) -> list[dict[str, Any]]:
        candidates = [
            (record, record.embedding)
            for record in self.records.values()
            if all(f.matches(record.flat_metadata()) for f in filters or [])
        ]
        ranked = self._ranker.rank(query_embedding, candidates, top_k=k)
        return [
            {
                "id": r.item.id,
                "content": r.item.content,
                "score": r.score,
                "metadata": r.item.flat_metadata(),
            }
            for r in ranked
        ]

    def delete_document(self, document_id: str) -> None:
        self.records = {key: r for key, r in self.records.items() if r.document_id != document_id}

    def health_check(self) -> bool:
        return True
