"""Runtime configuration for the ragchat services."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed configuration model."""

    model_config = SettingsConfigDict(env_prefix="ragchat_", env_file=".env", case_sensitive=False)

    environment: Literal["dev", "test", "prod"] = "dev"
    data_dir: Path = Path("./data")

    # Azure OpenAI
    azure_openai_endpoint: str | None = None
    azure_openai_api_key: str | None = None
    azure_openai_api_version: str = "2024-06-01"
    chat_deployment: str | None = None
    embedding_deployment: str | None = None
    # Prompt generation may run against a separate resource
    prompt_gen_endpoint: str | None = None
    prompt_gen_api_key: str | None = None
    prompt_gen_deployment: str | None = None

    # Generation defaults, overridable per project
    default_temperature: float = 0.3
    default_max_tokens: int = 4000
    map_temperature: float = 0.1
    map_max_tokens: int = 2000
    template_temperature: float = 0.2
    template_max_tokens: int = 1000
    reduce_template_max_tokens: int = 4000
    structure_temperature: float = 0.5
    structure_max_tokens: int = 1500
    conversation_summary_chars: int = 4000

    # Chunking
    chunk_size: int = 2000
    chunk_overlap: int = 200

    # Embeddings
    use_model_embeddings: bool = False
    embedding_dim: int = 1536
    embedding_cache_size: int = 1000

    # Retrieval
    retrieval_top_k: int = 5
    semantic_ranking: bool = False
    semantic_candidates: int = 50
    lexical_blend_weight: float = 0.35

    # Search index
    chroma_persist_dir: Path = Path("./.chroma")
    chroma_collection: str = "ragchat-chunks"
    chroma_host: str | None = None
    chroma_port: int | None = None
    chroma_ssl: bool = False

    # API & upload safety
    allowed_extensions: tuple[str, ...] | str = (".pdf", ".docx", ".txt", ".md", ".html")
    max_upload_size_mb: int = 25

    # CORS
    cors_allow_origins: tuple[str, ...] = ()
    cors_allow_credentials: bool = False
    cors_allow_methods: tuple[str, ...] = ("GET", "POST", "PUT", "DELETE", "OPTIONS")
    cors_allow_headers: tuple[str, ...] = ("*",)

    # Security
    api_key: str | None = None  # if set, required in X-API-Key header
    rate_limit_requests: int = 120  # per window per client
    rate_limit_window_seconds: int = 60

    @property
    def is_test(self) -> bool:
        return self.environment == "test"

    @property
    def allowed_extensions_tuple(self) -> tuple[str, ...]:
        value = self.allowed_extensions
        if isinstance(value, tuple):
            return value
        if isinstance(value, str):
            parts = [p.strip() for p in value.split(",") if p.strip()]
            return tuple(parts) if parts else (".pdf", ".docx", ".txt")
        return (".pdf", ".docx", ".txt")

    @property
    def effective_prompt_gen_endpoint(self) -> str | None:
        return self.prompt_gen_endpoint or self.azure_openai_endpoint

    @property
    def effective_prompt_gen_api_key(self) -> str | None:
        return self.prompt_gen_api_key or self.azure_openai_api_key

    @property
    def effective_prompt_gen_deployment(self) -> str | None:
        return self.prompt_gen_deployment or self.chat_deployment

    @property
    def retrieval_candidates(self) -> int:
        return self.semantic_candidates if self.semantic_ranking else self.retrieval_top_k


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return Settings()


def get_settings(override: Optional[dict[str, object]] = None) -> Settings:
    """Return settings, optionally overriding values without mutating cache."""

    if override:
        return Settings(**override)
    return _cached_settings()
