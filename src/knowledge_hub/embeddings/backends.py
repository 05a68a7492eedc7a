"""Embedding backends — single place to swap providers.

Each registered :class:`ProviderProfile` maps to a LangChain
``Embeddings`` implementation:

1. **openai** — ``OpenAIEmbeddings`` against the OpenAI cloud.
2. **gemini** — ``OpenAIEmbeddings`` pointed at the Gemini
   OpenAI-compatible endpoint (``settings.gemini_base_url``).
3. **huggingface** — local sentence-transformers via
   ``HuggingFaceEmbeddings``; needs no credentials.

Backends are created lazily and cached per provider id so that model
weights and HTTP clients are shared across requests.
"""

from __future__ import annotations

import logging
from typing import Callable

from langchain_core.embeddings import Embeddings

from knowledge_hub.config import settings
from knowledge_hub.embeddings.registry import ProviderProfile
from knowledge_hub.errors import UnknownProvider

logger = logging.getLogger(__name__)

BackendFactory = Callable[[ProviderProfile], Embeddings]


def _openai(profile: ProviderProfile) -> Embeddings:
    from langchain_openai import OpenAIEmbeddings

    return OpenAIEmbeddings(
        model=profile.model,
        api_key=settings.openai_api_key or "EMPTY",
        request_timeout=settings.provider_timeout_seconds,
        # Failures surface to the caller; the core never retries.
        max_retries=0,
    )


def _gemini(profile: ProviderProfile) -> Embeddings:
    from langchain_openai import OpenAIEmbeddings

    logger.info("Using Gemini OpenAI-compatible endpoint: %s", settings.gemini_base_url)
    return OpenAIEmbeddings(
        model=profile.model,
        dimensions=profile.dimensions,
        base_url=settings.gemini_base_url,
        api_key=settings.gemini_api_key or "EMPTY",
        request_timeout=settings.provider_timeout_seconds,
        max_retries=0,
        # The endpoint takes raw strings, not tiktoken ids.
        check_embedding_ctx_length=False,
    )


def _huggingface(profile: ProviderProfile) -> Embeddings:
    from langchain_huggingface import HuggingFaceEmbeddings

    return HuggingFaceEmbeddings(model_name=profile.model)


DEFAULT_FACTORIES: dict[str, BackendFactory] = {
    "openai": _openai,
    "gemini": _gemini,
    "huggingface": _huggingface,
}


class BackendPool:
    """Lazily constructs and caches one ``Embeddings`` object per provider.

    Parameters
    ----------
    factories:
        Provider id → factory.  Tests pass factories returning fakes.
    """

    def __init__(self, factories: dict[str, BackendFactory] | None = None) -> None:
        self._factories = dict(DEFAULT_FACTORIES if factories is None else factories)
        self._cache: dict[str, Embeddings] = {}

    def get(self, profile: ProviderProfile) -> Embeddings:
        backend = self._cache.get(profile.provider)
        if backend is None:
            factory = self._factories.get(profile.provider)
            if factory is None:
                raise UnknownProvider(profile.provider, list(self._factories))
            backend = factory(profile)
            self._cache[profile.provider] = backend
        return backend
