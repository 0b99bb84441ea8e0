"""End-to-end ingest pipeline: load -> chunk -> embed -> upsert."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import structlog

from repo_rag.config import ChunkingConfig
from repo_rag.ingest.chunker import chunk_documents
from repo_rag.ingest.embedder import Embedder
from repo_rag.ingest.parser import RepoLoader
from repo_rag.retrieval.vector_store import VectorStore
from repo_rag.types import Chunk, EmbeddedChunk

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class IngestReport:
    collection: str
    documents: int
    chunks: list[Chunk]
    dimension: int


class IngestPipeline:
    """Coordinates loader/chunker/embedder/vector store stages.

    Ingestion shares nothing with query-time retrieval except the store, so a
    collection can be re-indexed from the CLI while the API keeps serving.
    """

    def __init__(
        self,
        loader: RepoLoader,
        embedder: Embedder,
        vector_store: VectorStore,
        config: ChunkingConfig | None = None,
    ) -> None:
        self._loader = loader
        self._embedder = embedder
        self._vector_store = vector_store
        self._config = config or ChunkingConfig()

    def ingest_repo(self, repo_path: str | Path, collection: str) -> IngestReport:
        """Index every supported file under `repo_path` into `collection`."""

        documents = self._loader.load(repo_path, collection)
        chunks = chunk_documents(documents, self._config)
        logger.info(
            "ingest_extracted",
            collection=collection,
            documents=len(documents),
            chunks=len(chunks),
        )
        dimension = self.upsert_chunks(collection, chunks)
        return IngestReport(
            collection=collection,
            documents=len(documents),
            chunks=chunks,
            dimension=dimension,
        )

    def upsert_chunks(self, collection: str, chunks: list[Chunk]) -> int:
        """Embed and store pre-built chunks; returns the vector dimension."""

        if not chunks:
            return 0
        vectors = self._embedder.embed([chunk.text for chunk in chunks])
        self._vector_store.upsert(
            collection,
            [
                EmbeddedChunk(chunk=chunk, vector=vector)
                for chunk, vector in zip(chunks, vectors, strict=True)
            ],
        )
        dimension = len(vectors[0])
        logger.info("ingest_stored", collection=collection, chunks=len(chunks), dim=dimension)
        return dimension
