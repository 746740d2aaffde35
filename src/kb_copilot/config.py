"""Shared configuration loaded from environment / ``.env`` file."""

from __future__ import annotations

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application-wide settings, populated from ``KB_*`` env vars or a .env file."""

    # Chunking: fixed per deployment so index entries stay comparable
    chunk_target_size: int = Field(default=2000, gt=0, description="Maximum characters per chunk")
    chunk_overlap: int = Field(default=200, ge=0, description="Characters repeated from the previous chunk")

    # Retrieval
    similarity_floor: float = Field(
        default=0.65,
        description="Cosine similarity below which a hit is considered noise and dropped",
    )
    default_top_k: int = Field(default=8, gt=0)
    command_top_k: int = Field(default=12, gt=0, description="Retrieval depth for admin slash commands")
    max_top_k: int = Field(default=50, gt=0, description="Hard cap on results per search")

    # Embedding
    embedding_provider: Literal["huggingface", "openai"] = "huggingface"
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_dimension: int | None = Field(
        default=None,
        description="Expected vector size. Pinned from the first response when unset.",
    )
    embedding_batch_size: int = Field(default=64, gt=0)
    embedding_base_url: str = ""

    # LLM
    openai_api_key: str = Field(default="", description="OpenAI API key (or dummy value for local vLLM)")
    llm_model_name: str = Field(default="gpt-4o-mini", description="LLM model identifier")
    llm_base_url: str = Field(
        default="",
        description=(
            "Base URL for the LLM API. Leave empty to use OpenAI cloud. "
            "Any OpenAI-compatible endpoint works, e.g. a local vLLM server."
        ),
    )
    llm_temperature: float = 0.2
    llm_max_tokens: int = 1024
    llm_command_max_tokens: int = 2048

    # Index store
    index_backend: Literal["memory", "chroma"] = "memory"
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    chroma_collection: str = "kb_copilot"

    # Copilot
    facts_path: str = Field(default="", description="JSON file of tier-gated disclosed facts")
    organization_name: str = "the company"

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="KB_", env_file=".env", env_file_encoding="utf-8")

    @model_validator(mode="after")
    def _check_chunking(self) -> Settings:
        if self.chunk_overlap >= self.chunk_target_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be < chunk_target_size ({self.chunk_target_size})"
            )
        return self


# Singleton — import `settings` wherever needed.
settings = Settings()
