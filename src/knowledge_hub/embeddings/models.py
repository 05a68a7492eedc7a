"""Result models returned by the embedding service."""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator


class EmbeddingVector(BaseModel):
    """A vector tagged with the provider and dimensionality that produced it."""

    provider: str
    model: str
    dimensions: int
    values: list[float]
    text: str | None = None
    chunk_id: str | None = None

    @model_validator(mode="after")
    def _check_dimensions(self) -> EmbeddingVector:
        if len(self.values) != self.dimensions:
            raise ValueError(f"vector has {len(self.values)} values, expected {self.dimensions}")
        return self


class BatchEmbeddingResult(BaseModel):
    """Vectors for a batch request, in the caller's input order."""

    provider: str
    model: str
    dimensions: int
    vectors: list[EmbeddingVector]
    batches: int = 1
    total_chars: int = 0


class SimilarityResult(BaseModel):
    similarity: float = Field(ge=-1.0, le=1.0)
    text1: str
    text2: str
    provider: str


class SimilarText(BaseModel):
    """One ranked candidate; ``index`` is its position in the input list."""

    text: str
    similarity: float
    index: int
