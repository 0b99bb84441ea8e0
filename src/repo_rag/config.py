"""Configuration models for the retrieval pipeline."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ChunkingConfig(BaseModel):
    """Configures header-aware markdown and fixed-size text chunking."""

    max_chars: int = Field(default=3000, ge=200)


class RetrievalConfig(BaseModel):
    """Configures routed retrieval and candidate-pool expansion."""

    top_k: int = Field(default=16, ge=1)
    min_fetch_width: int = Field(default=32, ge=1)
    pool_multiplier: int = Field(default=4, ge=1)


class DiversityConfig(BaseModel):
    """Configures optional MMR re-ranking before selection."""

    enabled: bool = False
    lambda_: float = Field(default=0.7, ge=0.0, le=1.0)
    min_similarity: float = Field(default=0.0, ge=-1.0, le=1.0)


class SelectionConfig(BaseModel):
    """Configures greedy context selection and rendering."""

    max_chunks: int = Field(default=8, ge=1)
    max_per_source: int = Field(default=2, ge=1)
    max_chars_per_item: int = Field(default=1600, ge=1)
    min_chars: int = Field(default=120, ge=0)
    drop_status_sections: bool = True


class SelectionOptions(BaseModel):
    """Per-query selection settings: `SelectionConfig` plus routed prefixes."""

    model_config = ConfigDict(frozen=True)

    max_chunks: int = Field(default=8, ge=1)
    max_per_source: int = Field(default=2, ge=1)
    max_chars_per_item: int = Field(default=1600, ge=1)
    min_chars: int = Field(default=120, ge=0)
    drop_status_sections: bool = True
    priority_prefixes: tuple[str, ...] = ()

    @classmethod
    def from_config(
        cls, config: SelectionConfig, priority_prefixes: tuple[str, ...] = ()
    ) -> "SelectionOptions":
        return cls(**config.model_dump(), priority_prefixes=priority_prefixes)
