"""Token-bounded sliding-window chunking.

Token counts are estimated with a fixed ``characters / 4`` heuristic rather
than a real tokenizer.  The same estimate drives :func:`validate_text_length`
so pre-flight validation and chunking never disagree.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterator, Sequence

from knowledge_hub.documents.models import Chunk
from knowledge_hub.errors import ConfigurationError

if TYPE_CHECKING:
    from knowledge_hub.embeddings.registry import ProviderProfile

CHARS_PER_TOKEN = 4
DEFAULT_OVERLAP = 100


def estimate_tokens(text: str) -> float:
    """Return the heuristic token estimate for *text*."""
    return len(text) / CHARS_PER_TOKEN


def validate_text_length(text: str, profile: ProviderProfile) -> bool:
    """Return ``True`` when *text* fits in the provider's token budget."""
    return estimate_tokens(text) <= profile.max_tokens


def iter_chunk_spans(text: str, max_chars: int, overlap: int = DEFAULT_OVERLAP) -> Iterator[tuple[int, int]]:
    """Yield ``(start, end)`` offsets of the sliding window over *text*.

    Each call starts from scratch, so the sequence is restartable.  The
    overlap is clamped below the window size so that every step advances
    by at least one character.
    """
    if max_chars <= 0:
        raise ConfigurationError(f"max_chars must be positive, got {max_chars}")
    length = len(text)
    if length <= max_chars:
        yield 0, length
        return

    step_overlap = min(max(overlap, 0), max_chars - 1)
    start = 0
    while True:
        end = min(start + max_chars, length)
        yield start, end
        if end >= length:
            return
        start = max(0, end - step_overlap)


def chunk_text(
    text: str,
    profile: ProviderProfile,
    *,
    overlap: int = DEFAULT_OVERLAP,
    document_id: str | None = None,
) -> list[Chunk]:
    """Split *text* into chunks that each fit *profile*'s token budget.

    Parameters
    ----------
    text:
        Raw extracted document text.
    profile:
        Provider whose ``max_tokens`` bounds every chunk.
    overlap:
        Characters shared by consecutive chunks.
    document_id:
        Parent document, recorded on every chunk.

    Returns
    -------
    list[Chunk]
        Ordered chunks.  Text within budget comes back as one chunk equal
        to the input.
    """
    if validate_text_length(text, profile):
        return [Chunk(document_id=document_id, index=0, start=0, text=text)]
    return [
        Chunk(document_id=document_id, index=i, start=start, text=text[start:end])
        for i, (start, end) in enumerate(iter_chunk_spans(text, profile.max_tokens * CHARS_PER_TOKEN, overlap))
    ]


def reconstruct(chunks: Sequence[Chunk]) -> str:
    """Concatenate *chunks* with their overlapping prefixes removed."""
    parts: list[str] = []
    covered = 0
    for chunk in chunks:
        parts.append(chunk.text[covered - chunk.start :] if chunk.start < covered else chunk.text)
        covered = chunk.start + chunk.char_length
    return "".join(parts)


class TextChunker:
    """Chunker bound to a fixed overlap, checked against each profile.

    Raises :class:`ConfigurationError` when a profile's character window is
    not strictly larger than the overlap.
    """

    def __init__(self, overlap: int = DEFAULT_OVERLAP) -> None:
        if overlap < 0:
            raise ConfigurationError(f"overlap must be non-negative, got {overlap}")
        self.overlap = overlap

    def check(self, profile: ProviderProfile) -> None:
        max_chars = profile.max_tokens * CHARS_PER_TOKEN
        if max_chars <= self.overlap:
            raise ConfigurationError(
                f"Provider {profile.provider!r} window of {max_chars} chars must exceed overlap {self.overlap}"
            )

    def split(self, text: str, profile: ProviderProfile, *, document_id: str | None = None) -> list[Chunk]:
        self.check(profile)
        return chunk_text(text, profile, overlap=self.overlap, document_id=document_id)
