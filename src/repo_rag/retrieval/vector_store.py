"""Vector store interfaces and concrete adapters."""

from __future__ import annotations

import json
import sqlite3
import threading
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from math import sqrt
from pathlib import Path
from typing import Protocol

from repo_rag.types import Chunk, ChunkMetadata, EmbeddedChunk, ScoredItem, SourceType


@dataclass(frozen=True, slots=True)
class SearchFilter:
    """Row filter applied before scoring."""

    allowed_source_types: tuple[SourceType, ...] = ()
    source_path_prefix: str | None = None


class VectorStore(Protocol):
    """Similarity store contract consumed by retrieval."""

    def upsert(self, collection: str, items: Sequence[EmbeddedChunk]) -> None:
        """Insert or replace rows by chunk id."""

    def search(
        self,
        collections: Iterable[str],
        query_vector: Sequence[float],
        top_k: int,
        search_filter: SearchFilter | None = None,
        include_vectors: bool = False,
    ) -> list[ScoredItem]:
        """Return up to `top_k` rows, descending by cosine similarity."""


@dataclass(slots=True)
class _Row:
    collection: str
    chunk: Chunk
    vector: list[float]


class InMemoryVectorStore:
    """Deterministic vector store used for tests and local prototyping.

    Ties in similarity keep the order in which chunk ids were first inserted.
    """

    def __init__(self) -> None:
        self._rows: dict[str, _Row] = {}
        self._lock = threading.RLock()

    def upsert(self, collection: str, items: Sequence[EmbeddedChunk]) -> None:
        rows = [
            _Row(collection=collection, chunk=item.chunk, vector=list(item.vector))
            for item in items
        ]
        with self._lock:
            for row in rows:
                self._rows[row.chunk.chunk_id] = row

    def search(
        self,
        collections: Iterable[str],
        query_vector: Sequence[float],
        top_k: int,
        search_filter: SearchFilter | None = None,
        include_vectors: bool = False,
    ) -> list[ScoredItem]:
        wanted = set(collections)
        if not wanted or top_k <= 0:
            return []
        with self._lock:
            rows = [row for row in self._rows.values() if row.collection in wanted]
        return _rank(
            ((row.chunk, row.vector) for row in rows),
            query_vector,
            top_k,
            search_filter,
            include_vectors,
        )

    def count(self, collection: str | None = None) -> int:
        with self._lock:
            if collection is None:
                return len(self._rows)
            return sum(1 for row in self._rows.values() if row.collection == collection)

    def collections(self) -> list[str]:
        with self._lock:
            return sorted({row.collection for row in self._rows.values()})


class SqliteVectorStore:
    """SQLite-backed store with JSON-encoded metadata and vectors.

    Each call opens its own connection, so reads may run from several threads
    while writes are serialized by SQLite. Ties keep `rowid` order.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _init_schema(self) -> None:
        conn = self._connect()
        try:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS chunks (
                    chunk_id TEXT PRIMARY KEY,
                    collection TEXT NOT NULL,
                    text TEXT NOT NULL,
                    metadata_json TEXT NOT NULL,
                    vector_json TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_chunks_collection ON chunks(collection)"
            )
            conn.commit()
        finally:
            conn.close()

    def upsert(self, collection: str, items: Sequence[EmbeddedChunk]) -> None:
        rows = [
            (
                item.chunk.chunk_id,
                collection,
                item.chunk.text,
                json.dumps(item.chunk.metadata.to_dict(), ensure_ascii=False),
                json.dumps(list(item.vector)),
            )
            for item in items
        ]
        conn = self._connect()
        try:
            with conn:
                conn.executemany(
                    """
                    INSERT INTO chunks (chunk_id, collection, text, metadata_json, vector_json)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(chunk_id) DO UPDATE SET
                        collection = excluded.collection,
                        text = excluded.text,
                        metadata_json = excluded.metadata_json,
                        vector_json = excluded.vector_json
                    """,
                    rows,
                )
        finally:
            conn.close()

    def search(
        self,
        collections: Iterable[str],
        query_vector: Sequence[float],
        top_k: int,
        search_filter: SearchFilter | None = None,
        include_vectors: bool = False,
    ) -> list[ScoredItem]:
        wanted = sorted(set(collections))
        if not wanted or top_k <= 0:
            return []

        placeholders = ",".join("?" for _ in wanted)
        conn = self._connect()
        try:
            rows = conn.execute(
                f"""
                SELECT chunk_id, text, metadata_json, vector_json
                FROM chunks
                WHERE collection IN ({placeholders})
                ORDER BY rowid
                """,
                wanted,
            ).fetchall()
        finally:
            conn.close()

        def _decode() -> Iterable[tuple[Chunk, list[float]]]:
            for chunk_id, text, metadata_json, vector_json in rows:
                metadata = ChunkMetadata.from_dict(json.loads(metadata_json))
                yield Chunk(chunk_id=chunk_id, text=text, metadata=metadata), json.loads(
                    vector_json
                )

        return _rank(_decode(), query_vector, top_k, search_filter, include_vectors)

    def count(self, collection: str | None = None) -> int:
        conn = self._connect()
        try:
            if collection is None:
                (total,) = conn.execute("SELECT COUNT(*) FROM chunks").fetchone()
            else:
                (total,) = conn.execute(
                    "SELECT COUNT(*) FROM chunks WHERE collection = ?", (collection,)
                ).fetchone()
        finally:
            conn.close()
        return int(total)

    def collections(self) -> list[str]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT DISTINCT collection FROM chunks ORDER BY collection"
            ).fetchall()
        finally:
            conn.close()
        return [row[0] for row in rows]


def normalize_source_path(path: str) -> str:
    """Normalize slashes and strip a leading `./` or `/`.

    Applied both when chunks are produced and when prefixes are matched,
    otherwise prefix routing silently misses.
    """
    normalized = path.replace("\\", "/")
    if normalized.startswith("./"):
        normalized = normalized[2:]
    if normalized.startswith("/"):
        normalized = normalized[1:]
    return normalized


def matches_prefix(source_path: str, prefix: str) -> bool:
    return normalize_source_path(source_path).startswith(normalize_source_path(prefix))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity over the shared length; 0.0 when either norm is zero."""
    length = min(len(a), len(b))
    if length == 0:
        return 0.0
    numerator = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a[:length], b[:length], strict=True):
        numerator += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0 or norm_b == 0:
        return 0.0
    value = numerator / (sqrt(norm_a) * sqrt(norm_b))
    return max(-1.0, min(1.0, value))


def _passes(metadata: ChunkMetadata, search_filter: SearchFilter | None) -> bool:
    if search_filter is None:
        return True
    if (
        search_filter.allowed_source_types
        and metadata.source_type not in search_filter.allowed_source_types
    ):
        return False
    if search_filter.source_path_prefix and not matches_prefix(
        metadata.source_path, search_filter.source_path_prefix
    ):
        return False
    return True


def _rank(
    rows: Iterable[tuple[Chunk, list[float]]],
    query_vector: Sequence[float],
    top_k: int,
    search_filter: SearchFilter | None,
    include_vectors: bool,
) -> list[ScoredItem]:
    scored = [
        ScoredItem(
            chunk=chunk,
            similarity=cosine_similarity(query_vector, vector),
            vector=list(vector) if include_vectors else None,
        )
        for chunk, vector in rows
        if _passes(chunk.metadata, search_filter)
    ]
    # sorted() is stable, so equal similarities keep scan order.
    scored.sort(key=lambda item: item.similarity, reverse=True)
    return scored[:top_k]
