from repo_rag.config import ChunkingConfig, DiversityConfig, SelectionConfig
from repo_rag.ingest.embedder import HashingEmbedder
from repo_rag.ingest.parser import RepoLoader
from repo_rag.ingest.pipeline import IngestPipeline
from repo_rag.obs.tracing import EventRecorder
from repo_rag.retrieval.pipeline import ContextPipeline
from repo_rag.retrieval.vector_store import InMemoryVectorStore, SqliteVectorStore
from repo_rag.types import Chunk, ChunkMetadata, EmbeddedChunk, Intent, SourceType

ADR_PATH = "apps/docs/app/adr/0001-migrations.md"


def _write_repo(root) -> None:
    files = {
        ADR_PATH: "# ADR 0001: Migrations\n\n## Decision\n\nWe use SQL-first migrations run by node-pg-migrate.\n",
        "apps/api/README.md": "# API\n\n## Testing\n\nRun integration tests with vitest: pnpm test:db.\n",
        "README.md": "# DocVault\n\n## Setup\n\nInstall with pnpm install and start the server.\n",
        "notes/todo.txt": "Remember to rotate the JWT signing key.\n",
        "node_modules/dep/README.md": "# Vendored\n\nNot indexed.\n",
    }
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")


def test_routed_adr_is_first_despite_lower_similarity(corpus_store, query_embedder) -> None:
    events = EventRecorder()
    pipeline = ContextPipeline(corpus_store, query_embedder, event_sink=events)

    result = pipeline.build("docvault", "How are database migrations handled?")

    assert result.plan.intent is Intent.MIGRATIONS
    assert result.sources[0] == f"{ADR_PATH}#ADR 0001 > Decision"
    assert any(source.startswith(ADR_PATH) for source in result.sources[:3])
    assert result.context.startswith(f"### [S1] {ADR_PATH}#ADR 0001 > Decision\n")
    assert result.fallback_stage == 0
    assert events.named("pipeline.done")[0].payload["selected"] == len(result.selected)


def test_routed_adr_stays_first_with_mmr_enabled(corpus_store, query_embedder) -> None:
    pipeline = ContextPipeline(
        corpus_store, query_embedder, diversity=DiversityConfig(enabled=True)
    )

    result = pipeline.build("docvault", "How are database migrations handled?")

    assert result.sources[0] == f"{ADR_PATH}#ADR 0001 > Decision"
    assert any(source.startswith(ADR_PATH) for source in result.sources[:3])
    paths = [item.chunk.metadata.source_path for item in result.candidates]
    assert paths[:2] == [ADR_PATH, "apps/docs/README.md"]
    assert set(paths[2:4]) == {"README.md"}
    assert all(path.startswith(("src/", "apps/api/")) for path in paths[4:])


def test_general_query_applies_caps_and_drops_status(corpus_store, query_embedder) -> None:
    result = ContextPipeline(corpus_store, query_embedder).build("docvault", "What happens at startup?")

    assert result.plan.intent is Intent.GENERAL
    assert sum(1 for source in result.sources if source.startswith("src/server.md")) == 2
    assert "README.md#Project Status" not in result.sources
    assert len(result.selected) <= 8
    assert len(set(result.sources)) == len(result.sources)


def test_selection_override_limits_chunks(corpus_store, query_embedder) -> None:
    pipeline = ContextPipeline(corpus_store, query_embedder)

    result = pipeline.build("docvault", "What happens at startup?", selection=SelectionConfig(max_chunks=2))

    assert len(result.selected) == 2
    assert "[S3]" not in result.context


def test_pool_size_covers_selection_needs(corpus_store, query_embedder) -> None:
    pipeline = ContextPipeline(corpus_store, query_embedder)

    assert pipeline.pool_size() == 32
    assert pipeline.pool_size(SelectionConfig(max_chunks=2)) == 16


def test_diversity_strips_vectors_before_selection(corpus_store, query_embedder) -> None:
    events = EventRecorder()
    pipeline = ContextPipeline(
        corpus_store,
        query_embedder,
        diversity=DiversityConfig(enabled=True, lambda_=0.5),
        event_sink=events,
    )

    result = pipeline.build("docvault", "What happens at startup?")

    assert result.selected
    assert all(item.vector is None for item in result.candidates)
    assert events.named("diversify.done")


def test_empty_collection_or_query_gives_empty_context(corpus_store, query_embedder) -> None:
    pipeline = ContextPipeline(corpus_store, query_embedder)

    empty_collection = pipeline.build("nothing-here", "How are database migrations handled?")
    empty_query = pipeline.build("docvault", "   ")

    assert empty_collection.selected == []
    assert empty_collection.context == ""
    assert empty_query.selected == []
    assert query_embedder.calls == 1


def test_short_chunks_fall_back_to_raw_candidates(query_embedder) -> None:
    store = InMemoryVectorStore()
    store.upsert(
        "tiny",
        [
            EmbeddedChunk(
                chunk=Chunk(
                    chunk_id=f"c{i}",
                    text=f"note {i}",
                    metadata=ChunkMetadata(
                        collection="tiny",
                        source_path=f"notes/{i}.md",
                        source_type=SourceType.MARKDOWN,
                        content_hash=f"c{i}",
                    ),
                ),
                vector=[1.0, 0.0, 0.0],
            )
            for i in range(3)
        ],
    )

    result = ContextPipeline(store, query_embedder).build("tiny", "anything?")

    assert result.fallback_stage == 2
    assert result.sources == ["notes/0.md", "notes/1.md", "notes/2.md"]
    assert "[S1] notes/0.md" in result.context


def test_ingest_then_answer_context_from_sqlite(tmp_path) -> None:
    repo = tmp_path / "repo"
    _write_repo(repo)
    store = SqliteVectorStore(tmp_path / "store.sqlite")
    embedder = HashingEmbedder()
    ingest = IngestPipeline(RepoLoader(), embedder, store, ChunkingConfig(max_chars=800))

    report = ingest.ingest_repo(repo, "docvault")
    again = ingest.ingest_repo(repo, "docvault")

    assert report.documents == 4
    assert report.dimension == 256
    assert store.count("docvault") == len(report.chunks)
    assert [c.chunk_id for c in again.chunks] == [c.chunk_id for c in report.chunks]
    assert store.count("docvault") == len(report.chunks)
    assert all("node_modules" not in c.metadata.source_path for c in report.chunks)

    result = ContextPipeline(store, embedder).build("docvault", "How are database migrations handled?")

    assert result.sources[0] == f"{ADR_PATH}#ADR 0001: Migrations > Decision"


def test_ingest_of_repo_without_documents(tmp_path) -> None:
    store = InMemoryVectorStore()
    report = IngestPipeline(RepoLoader(), HashingEmbedder(), store).ingest_repo(tmp_path, "empty")

    assert report.documents == 0
    assert report.chunks == []
    assert report.dimension == 0
    assert store.count() == 0
