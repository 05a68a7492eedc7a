"""Exception hierarchy shared by ingestion, embedding, and real-time layers.

Caller errors (:class:`InputValidationError` subclasses) are raised before
any provider call is issued, so a rejected request never leaves partial
state behind.  Upstream failures derive from :class:`ProviderError`.  Every
exception carries a stable ``code`` that the HTTP layer reports verbatim.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence

__all__ = [
    "KnowledgeHubError",
    "ConfigurationError",
    "InputValidationError",
    "TextTooLong",
    "BatchSizeExceeded",
    "CandidateSetTooLarge",
    "TopKExceeded",
    "UnknownProvider",
    "ProviderError",
    "ProviderTimeout",
    "PartialBatchFailure",
    "ReconciliationConflict",
    "InvalidTransition",
    "DocumentNotFound",
]


class KnowledgeHubError(RuntimeError):
    """Base exception for every failure raised by the package."""

    code = "knowledge_hub_error"


class ConfigurationError(KnowledgeHubError):
    """Raised when settings or provider profiles are inconsistent."""

    code = "configuration_error"


class InputValidationError(KnowledgeHubError):
    """Caller supplied input that can never succeed as submitted."""

    code = "invalid_input"


class TextTooLong(InputValidationError):
    """One or more texts exceed the provider's token budget."""

    code = "text_too_long"

    def __init__(self, provider: str, max_tokens: int, count: int = 1) -> None:
        noun = "text exceeds" if count == 1 else "texts exceed"
        super().__init__(f"{count} {noun} the {max_tokens}-token budget of provider {provider!r}")
        self.provider = provider
        self.max_tokens = max_tokens
        self.count = count


class BatchSizeExceeded(InputValidationError):
    code = "batch_size_exceeded"

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"Batch of {size} exceeds the limit of {limit}")
        self.size = size
        self.limit = limit


class CandidateSetTooLarge(InputValidationError):
    code = "candidate_set_too_large"

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"{size} candidates exceed the limit of {limit}")
        self.size = size
        self.limit = limit


class TopKExceeded(InputValidationError):
    code = "top_k_exceeded"

    def __init__(self, top_k: int, limit: int) -> None:
        super().__init__(f"top_k={top_k} is outside the allowed range 1..{limit}")
        self.top_k = top_k
        self.limit = limit


class UnknownProvider(InputValidationError):
    code = "unknown_provider"

    def __init__(self, provider: str, known: Sequence[str] = ()) -> None:
        super().__init__(f"Unknown embedding provider {provider!r} (known: {', '.join(known) or 'none'})")
        self.provider = provider


class ProviderError(KnowledgeHubError):
    """Upstream embedding failure not attributable to the input."""

    code = "provider_error"

    def __init__(self, message: str, *, provider: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider


class ProviderTimeout(ProviderError):
    code = "provider_timeout"


class PartialBatchFailure(ProviderError):
    """Some batches failed mid-flight; the succeeded subset is preserved.

    Attributes
    ----------
    succeeded:
        Mapping of input index to the vector produced for it.
    failed_indices:
        Input indices whose batch failed, in ascending order.
    errors:
        The underlying exception per failed batch.
    """

    code = "partial_batch_failure"

    def __init__(
        self,
        *,
        provider: str,
        succeeded: Mapping[int, Any],
        failed_indices: Sequence[int],
        errors: Sequence[BaseException],
    ) -> None:
        super().__init__(
            f"{len(failed_indices)} of {len(failed_indices) + len(succeeded)} texts failed "
            f"to embed with provider {provider!r}",
            provider=provider,
        )
        self.succeeded = dict(succeeded)
        self.failed_indices = list(failed_indices)
        self.errors = list(errors)


class ReconciliationConflict(KnowledgeHubError):
    """An event referenced an id whose local shape is inconsistent."""

    code = "reconciliation_conflict"


class InvalidTransition(KnowledgeHubError):
    code = "invalid_transition"

    def __init__(self, document_id: str, current: str, target: str) -> None:
        super().__init__(f"Document {document_id} cannot move from {current} to {target}")
        self.document_id = document_id
        self.current = current
        self.target = target


class DocumentNotFound(KnowledgeHubError):
    code = "document_not_found"

    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id
