"""
Retrieval — vector storage, similarity ranking, and citation assembly.

This package wraps the vector store behind a clean interface so that
callers never need to know which DB is backing retrieval.

Public surface
--------------
- :class:`SemanticRetriever` — main entry point for retrieval with citations.
- :class:`SimilarityRanker` — cosine scoring with a bounded top-K.
- :class:`VectorStoreBase` — abstract backend (subclass for Pinecone, etc.).
- :class:`InMemoryVectorStore` — dict-backed backend for development.
- :class:`ChromaVectorStore` — default Chroma backend.
- :class:`Citation`, :class:`RetrievalResult`, :class:`MetadataFilter`,
  :class:`VectorRecord` — data models.
"""

from knowledge_hub.retrieval.base import VectorStoreBase
from knowledge_hub.retrieval.memory_store import InMemoryVectorStore
from knowledge_hub.retrieval.models import Citation, MetadataFilter, RetrievalResult, VectorRecord
from knowledge_hub.retrieval.ranker import SimilarityRanker, cosine_similarity

__all__ = [
    "Citation",
    "ChromaVectorStore",
    "InMemoryVectorStore",
    "MetadataFilter",
    "RetrievalResult",
    "SemanticRetriever",
    "SimilarityRanker",
    "VectorRecord",
    "VectorStoreBase",
    "cosine_similarity",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import heavier modules to avoid pulling in chromadb at import time."""
    if name == "ChromaVectorStore":
        from knowledge_hub.retrieval.chroma_store import ChromaVectorStore

        return ChromaVectorStore
    if name == "SemanticRetriever":
        from knowledge_hub.retrieval.retriever import SemanticRetriever

        return SemanticRetriever
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
