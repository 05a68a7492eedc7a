"""Domain models for stored vectors, retrieval results, and citations."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class MetadataFilter(BaseModel):
    """Declarative metadata filter for vector-store queries.

    Attributes
    ----------
    field:
        The metadata key to filter on (e.g. ``"document_id"``).
    operator:
        Comparison operator — one of ``eq``, ``ne``, ``gt``, ``gte``,
        ``lt``, ``lte``, ``in``, ``nin``.
    value:
        The value (or list of values for ``in`` / ``nin``) to compare against.
    """

    field: str
    operator: str = "eq"
    value: Any = None

    @classmethod
    def equals(cls, field: str, value: Any) -> MetadataFilter:
        return cls(field=field, operator="eq", value=value)

    @classmethod
    def one_of(cls, field: str, values: list[Any]) -> MetadataFilter:
        return cls(field=field, operator="in", value=values)

    def matches(self, metadata: dict[str, Any]) -> bool:
        """Evaluate the filter locally against *metadata*."""
        actual = metadata.get(self.field)
        op = self.operator
        if op == "eq":
            return actual == self.value
        if op == "ne":
            return actual != self.value
        if op == "in":
            return actual in self.value
        if op == "nin":
            return actual not in self.value
        if actual is None:
            return False
        if op == "gt":
            return actual > self.value
        if op == "gte":
            return actual >= self.value
        if op == "lt":
            return actual < self.value
        if op == "lte":
            return actual <= self.value
        raise ValueError(f"Unsupported filter operator: {op!r}")


class VectorRecord(BaseModel):
    """One embedded chunk as persisted in the vector store."""

    id: str
    document_id: str
    chunk_index: int
    content: str
    embedding: list[float]
    metadata: dict[str, Any] = Field(default_factory=dict)

    def flat_metadata(self) -> dict[str, Any]:
        """Metadata including the ownership keys used for cascade deletes."""
        return {**self.metadata, "document_id": self.document_id, "chunk_index": self.chunk_index}


class Citation(BaseModel):
    """Provenance record linking a retrieved chunk back to its document.

    Attributes
    ----------
    citation_id:
        Unique identifier for this citation instance.
    document_id:
        Id of the owning document.
    source:
        Human-readable source locator (the document name).
    chunk_index:
        Ordinal position of the chunk within the document.
    score:
        Cosine similarity to the query.
    metadata:
        Arbitrary extra metadata stored with the chunk.
    retrieved_at:
        UTC timestamp of when the retrieval happened.
    """

    citation_id: str = Field(default_factory=lambda: uuid4().hex[:12])
    document_id: str | None = None
    source: str = "unknown"
    chunk_index: int | None = None
    score: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    retrieved_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def short_ref(self) -> str:
        """Return a compact ``[source§chunk]`` reference string."""
        chunk = self.chunk_index if self.chunk_index is not None else "?"
        return f"[{self.source}§{chunk}]"


class RetrievalResult(BaseModel):
    """A single retrieved passage together with its citation."""

    content: str
    citation: Citation

    def __str__(self) -> str:  # noqa: D105
        return f"{self.citation.short_ref()} {self.content[:120]}…"
