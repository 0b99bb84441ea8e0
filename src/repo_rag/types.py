"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class SourceType(str, Enum):
    MARKDOWN = "markdown"
    TEXT = "text"
    CODE = "code"


class Intent(str, Enum):
    """Coarse query intent used to bias retrieval toward known sources."""

    TESTS = "tests"
    MIGRATIONS = "migrations"
    OPENAPI = "openapi"
    AUTH = "auth"
    DB = "db"
    GENERAL = "general"


@dataclass(slots=True)
class RawDocument:
    """A repository file loaded before chunking."""

    doc_id: str
    collection: str
    path: str
    source_type: SourceType
    content: str


@dataclass(frozen=True, slots=True)
class ChunkMetadata:
    collection: str
    source_path: str
    source_type: SourceType
    content_hash: str
    section_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "collection": self.collection,
            "sourcePath": self.source_path,
            "sourceType": self.source_type.value,
            "contentHash": self.content_hash,
        }
        if self.section_path is not None:
            payload["sectionPath"] = self.section_path
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ChunkMetadata":
        return cls(
            collection=str(payload["collection"]),
            source_path=str(payload["sourcePath"]),
            source_type=SourceType(payload["sourceType"]),
            content_hash=str(payload["contentHash"]),
            section_path=payload.get("sectionPath"),
        )


@dataclass(frozen=True, slots=True)
class Chunk:
    """A unit of retrievable text. Ids are content-addressed."""

    chunk_id: str
    text: str
    metadata: ChunkMetadata


@dataclass(slots=True)
class EmbeddedChunk:
    chunk: Chunk
    vector: list[float]


@dataclass(slots=True)
class ScoredItem:
    """A retrieval result scored against one query vector.

    `vector` is only attached when a downstream stage (MMR) asked for it.
    """

    chunk: Chunk
    similarity: float
    vector: list[float] | None = None

    @property
    def source_path(self) -> str:
        return self.chunk.metadata.source_path

    @property
    def section_path(self) -> str | None:
        return self.chunk.metadata.section_path

    def source_label(self) -> str:
        """`path#section` form used for citations and evaluation matching."""
        section = self.section_path
        return f"{self.source_path}#{section}" if section else self.source_path


@dataclass(frozen=True, slots=True)
class RoutePlan:
    intent: Intent
    prefixes: tuple[str, ...] = ()


@dataclass(slots=True)
class RetrievalResult:
    plan: RoutePlan
    results: list[ScoredItem]


@dataclass(slots=True)
class ContextResult:
    """Outcome of one pipeline run: what was retrieved, kept and rendered."""

    plan: RoutePlan
    candidates: list[ScoredItem]
    selected: list[ScoredItem]
    context: str
    fallback_stage: int = 0

    @property
    def sources(self) -> list[str]:
        return [item.source_label() for item in self.selected]
