"""Provider capability table — token budgets, dimensionality, model ids.

The registry is built once at process start and never mutated afterwards.
Request-time code only reads from it.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Iterable, Mapping

from pydantic import BaseModel, ConfigDict

from knowledge_hub.config import settings
from knowledge_hub.errors import ConfigurationError, TextTooLong, UnknownProvider
from knowledge_hub.ingestion.chunker import CHARS_PER_TOKEN, DEFAULT_OVERLAP, estimate_tokens

logger = logging.getLogger(__name__)


class ProviderProfile(BaseModel):
    """Immutable description of one embedding provider.

    Attributes
    ----------
    provider:
        Registry key (e.g. ``"openai"``).
    model:
        Canonical model identifier sent to the provider.
    dimensions:
        Exact length of every vector the provider returns.
    max_tokens:
        Maximum input tokens accepted per text.
    """

    model_config = ConfigDict(frozen=True)

    provider: str
    model: str
    dimensions: int
    max_tokens: int

    @property
    def max_chars(self) -> int:
        return self.max_tokens * CHARS_PER_TOKEN


DEFAULT_PROFILES: tuple[ProviderProfile, ...] = (
    ProviderProfile(provider="openai", model="text-embedding-ada-002", dimensions=1536, max_tokens=8191),
    ProviderProfile(provider="gemini", model="gemini-embedding-001", dimensions=768, max_tokens=2048),
    ProviderProfile(
        provider="huggingface",
        model="sentence-transformers/all-MiniLM-L6-v2",
        dimensions=384,
        max_tokens=256,
    ),
)


class ProviderRegistry:
    """Read-only lookup from provider id to :class:`ProviderProfile`.

    Parameters
    ----------
    profiles:
        Profiles to register.  Duplicate ids are a configuration error.
    overlap:
        Chunk overlap in characters; every profile must have a character
        window strictly larger than this.
    """

    def __init__(self, profiles: Iterable[ProviderProfile], *, overlap: int = DEFAULT_OVERLAP) -> None:
        table: dict[str, ProviderProfile] = {}
        for profile in profiles:
            if profile.provider in table:
                raise ConfigurationError(f"Duplicate provider profile {profile.provider!r}")
            if profile.max_chars <= overlap:
                raise ConfigurationError(
                    f"Provider {profile.provider!r} window of {profile.max_chars} chars "
                    f"must exceed the {overlap}-char chunk overlap"
                )
            if profile.dimensions <= 0:
                raise ConfigurationError(f"Provider {profile.provider!r} has no dimensionality")
            table[profile.provider] = profile
        self._profiles: Mapping[str, ProviderProfile] = MappingProxyType(table)

    def get(self, provider: str) -> ProviderProfile:
        try:
            return self._profiles[provider]
        except KeyError:
            raise UnknownProvider(provider, list(self._profiles)) from None

    def __contains__(self, provider: object) -> bool:
        return provider in self._profiles

    def ids(self) -> list[str]:
        return list(self._profiles)

    def profiles(self) -> dict[str, ProviderProfile]:
        """Return a copy of the full id → profile table."""
        return dict(self._profiles)

    def available(self) -> list[str]:
        """Registered providers whose credentials are configured.

        The local sentence-transformers provider needs no key.
        """
        keys = {"openai": settings.openai_api_key, "gemini": settings.gemini_api_key}
        return [p for p in self._profiles if p not in keys or keys[p]]

    def validate(self, text: str, provider: str) -> ProviderProfile:
        """Reject *text* with :class:`TextTooLong` if it exceeds the budget."""
        profile = self.get(provider)
        if estimate_tokens(text) > profile.max_tokens:
            raise TextTooLong(provider, profile.max_tokens)
        return profile


def _configured(profile: ProviderProfile) -> ProviderProfile:
    # The local model is the one provider whose model is chosen by deployment.
    if profile.provider == "huggingface":
        return profile.model_copy(
            update={"model": settings.huggingface_model, "dimensions": settings.huggingface_dimensions}
        )
    return profile


def build_registry() -> ProviderRegistry:
    """Build the process-wide registry from the enabled default profiles."""
    enabled = set(settings.enabled_providers)
    unknown = enabled - {p.provider for p in DEFAULT_PROFILES}
    if unknown:
        raise ConfigurationError(f"Unknown providers enabled in settings: {sorted(unknown)}")
    registry = ProviderRegistry(
        (_configured(p) for p in DEFAULT_PROFILES if p.provider in enabled),
        overlap=settings.chunk_overlap,
    )
    logger.info("Loaded embedding providers: %s", ", ".join(registry.ids()))
    return registry
