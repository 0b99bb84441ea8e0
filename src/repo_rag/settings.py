"""Process-level settings loaded from the environment."""

from __future__ import annotations

from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Deployment settings, read from `REPO_RAG_*` variables or a `.env` file."""

    model_config = SettingsConfigDict(env_prefix="REPO_RAG_", env_file=".env", extra="ignore")

    # Unset means the API keeps an in-memory store.
    db_path: str | None = None
    embedder: Literal["hashing", "ollama"] = "hashing"
    hashing_dimension: int = 256
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        validation_alias=AliasChoices("REPO_RAG_OLLAMA_BASE_URL", "OLLAMA_BASE_URL"),
    )
    embedding_model: str = "nomic-embed-text:latest"
    generation_model: str = "llama3.1:8b"
    http_timeout_seconds: float = 120.0
    log_level: str = "info"
    json_logs: bool = False
