"""Shared configuration loaded from environment / .env file."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # Embedding providers
    openai_api_key: str = Field(default="", description="OpenAI API key")
    gemini_api_key: str = Field(default="", description="Google AI Studio API key")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta/openai/",
        description=(
            "OpenAI-compatible endpoint for Gemini embeddings. The Gemini API "
            "exposes ``/embeddings`` with the OpenAI wire format, so "
            "``OpenAIEmbeddings`` works unchanged."
        ),
    )
    huggingface_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    huggingface_dimensions: int = 384
    default_provider: str = "gemini"
    enabled_providers: list[str] = Field(
        default_factory=lambda: ["openai", "gemini", "huggingface"],
        description="Provider ids loaded into the registry at startup.",
    )

    # Batch scheduling
    embedding_batch_size: int = 50
    embedding_max_batch_texts: int = 100
    embedding_max_concurrency: int = 4
    provider_timeout_seconds: float = 30.0

    # Chunking
    chunk_overlap: int = 100

    # Similarity
    max_candidates: int = 1000
    max_top_k: int = 100

    # Vector store
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    chroma_collection: str = "knowledge_hub"

    # Document storage
    storage_dir: str = "./data/uploads"

    # Typing indicators (milliseconds)
    typing_timeout_ms: int = 3000
    typing_throttle_ms: int = 1000
    typing_sweep_interval_ms: int = 1000

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


# Singleton: import `settings` wherever needed.
settings = Settings()
