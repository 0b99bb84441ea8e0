import pytest

from repo_rag.ingest.embedder import Embedder, EmbeddingError
from repo_rag.retrieval.vector_store import InMemoryVectorStore
from repo_rag.types import Chunk, ChunkMetadata, EmbeddedChunk, SourceType

ADR_PATH = "apps/docs/app/adr/0001-migrations.md"

_FILLER = " Details are kept next to the code and reviewed with every change to this area."

# Generic server docs are deliberately the most similar to every query, so
# routed sources only win through prefix-first retrieval.
_CORPUS = [
    ("src/server.md", "Server > Startup", "The HTTP server boots Fastify and listens on 3000.", [1.0, 0.0, 0.0]),
    ("src/server.md", "Server > Plugins", "Plugins register routes, CORS and request logging.", [0.98, 0.05, 0.0]),
    ("src/server.md", "Server > Shutdown", "Shutdown drains connections before the process exits.", [0.97, 0.1, 0.0]),
    ("README.md", "Project Status", "Status: beta. Expect breaking changes between releases.", [0.95, 0.1, 0.0]),
    ("README.md", "Setup", "Install dependencies with pnpm and copy the example env file.", [0.9, 0.2, 0.0]),
    ("apps/docs/README.md", "Docs", "The docs app renders ADRs and guides with Next.js.", [0.5, 0.5, 0.0]),
    (ADR_PATH, "ADR 0001 > Decision", "Database migrations are SQL-first files run by node-pg-migrate.", [0.3, 1.0, 0.0]),
    ("apps/api/README.md", "API > Testing", "Integration tests use vitest and a disposable Postgres (pnpm test:db).", [0.1, 0.0, 1.0]),
]


class FixedQueryEmbedder(Embedder):
    """Embeds every text to the same vector; texts containing `boom` fail."""

    def __init__(self, vector: list[float] | None = None) -> None:
        self.vector = vector or [1.0, 0.0, 0.0]
        self.calls = 0

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.calls += 1
        if any("boom" in text for text in texts):
            raise EmbeddingError("embedding service unavailable")
        return [list(self.vector) for _ in texts]


@pytest.fixture
def query_embedder() -> FixedQueryEmbedder:
    return FixedQueryEmbedder()


@pytest.fixture
def corpus_store() -> InMemoryVectorStore:
    store = InMemoryVectorStore()
    store.upsert(
        "docvault",
        [
            EmbeddedChunk(
                chunk=Chunk(
                    chunk_id=f"{path}#{section}",
                    text=text + _FILLER,
                    metadata=ChunkMetadata(
                        collection="docvault",
                        source_path=path,
                        source_type=SourceType.MARKDOWN,
                        section_path=section,
                        content_hash=f"{path}#{section}",
                    ),
                ),
                vector=vector,
            )
            for path, section, text, vector in _CORPUS
        ],
    )
    return store
