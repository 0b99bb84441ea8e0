import threading

import pytest

from repo_rag.retrieval.vector_store import (
    InMemoryVectorStore,
    SearchFilter,
    SqliteVectorStore,
    cosine_similarity,
    normalize_source_path,
)
from repo_rag.types import Chunk, ChunkMetadata, EmbeddedChunk, SourceType


def _embedded(
    chunk_id: str,
    vector: list[float],
    *,
    path: str = "docs/a.md",
    section: str | None = "Intro",
    text: str = "text",
    source_type: SourceType = SourceType.MARKDOWN,
    collection: str = "repo",
) -> EmbeddedChunk:
    return EmbeddedChunk(
        chunk=Chunk(
            chunk_id=chunk_id,
            text=text,
            metadata=ChunkMetadata(
                collection=collection,
                source_path=path,
                source_type=source_type,
                section_path=section,
                content_hash=f"hash-{chunk_id}",
            ),
        ),
        vector=vector,
    )


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryVectorStore()
    return SqliteVectorStore(tmp_path / "store.sqlite")


def test_cosine_is_symmetric_bounded_and_zero_for_zero_vectors() -> None:
    a = [0.3, -1.2, 4.0]
    b = [2.0, 0.5, -0.7]

    assert cosine_similarity(a, b) == cosine_similarity(b, a)
    assert -1.0 <= cosine_similarity(a, b) <= 1.0
    assert cosine_similarity(a, a) == pytest.approx(1.0)
    assert cosine_similarity(a, [-x for x in a]) == pytest.approx(-1.0)
    assert cosine_similarity([0.0, 0.0, 0.0], a) == 0.0
    assert cosine_similarity(a, [0.0, 0.0, 0.0]) == 0.0
    assert cosine_similarity([], a) == 0.0


def test_normalize_source_path() -> None:
    assert normalize_source_path("./apps/docs/README.md") == "apps/docs/README.md"
    assert normalize_source_path("/apps/docs/README.md") == "apps/docs/README.md"
    assert normalize_source_path("apps\\docs\\README.md") == "apps/docs/README.md"


def test_search_returns_empty_for_no_collections_or_non_positive_top_k(store) -> None:
    store.upsert("repo", [_embedded("a", [1.0, 0.0])])

    assert store.search([], [1.0, 0.0], 5) == []
    assert store.search(["repo"], [1.0, 0.0], 0) == []
    assert store.search(["repo"], [1.0, 0.0], -3) == []
    assert store.search(["unknown"], [1.0, 0.0], 5) == []


def test_search_orders_by_similarity_and_respects_top_k(store) -> None:
    store.upsert(
        "repo",
        [
            _embedded("far", [0.0, 1.0], path="docs/far.md"),
            _embedded("near", [1.0, 0.1], path="docs/near.md"),
            _embedded("mid", [1.0, 1.0], path="docs/mid.md"),
        ],
    )

    results = store.search(["repo"], [1.0, 0.0], 2)

    assert [item.chunk.chunk_id for item in results] == ["near", "mid"]
    assert results[0].similarity >= results[1].similarity
    assert all(item.vector is None for item in results)


def test_search_ties_keep_insertion_order(store) -> None:
    store.upsert(
        "repo",
        [
            _embedded("first", [1.0, 0.0], path="docs/1.md"),
            _embedded("second", [2.0, 0.0], path="docs/2.md"),
            _embedded("third", [3.0, 0.0], path="docs/3.md"),
        ],
    )

    results = store.search(["repo"], [1.0, 0.0], 3)

    assert [item.chunk.chunk_id for item in results] == ["first", "second", "third"]


def test_prefix_filter_normalizes_both_sides(store) -> None:
    store.upsert(
        "repo",
        [
            _embedded("adr", [1.0, 0.0], path="./apps/docs/app/adr/0001-migrations.md"),
            _embedded("readme", [1.0, 0.0], path="README.md"),
        ],
    )

    results = store.search(
        ["repo"], [1.0, 0.0], 10, SearchFilter(source_path_prefix="/apps/docs/app/adr/")
    )

    assert [item.chunk.chunk_id for item in results] == ["adr"]


def test_source_type_filter(store) -> None:
    store.upsert(
        "repo",
        [
            _embedded("md", [1.0, 0.0], source_type=SourceType.MARKDOWN),
            _embedded("txt", [1.0, 0.0], path="notes.txt", source_type=SourceType.TEXT),
        ],
    )

    results = store.search(
        ["repo"], [1.0, 0.0], 10, SearchFilter(allowed_source_types=(SourceType.TEXT,))
    )

    assert [item.chunk.chunk_id for item in results] == ["txt"]


def test_collections_are_isolated_and_case_sensitive(store) -> None:
    store.upsert("repo", [_embedded("a", [1.0, 0.0])])
    store.upsert("Repo", [_embedded("b", [1.0, 0.0], collection="Repo")])

    assert [item.chunk.chunk_id for item in store.search(["repo"], [1.0, 0.0], 5)] == ["a"]
    assert [item.chunk.chunk_id for item in store.search(["Repo"], [1.0, 0.0], 5)] == ["b"]
    assert len(store.search(["repo", "Repo"], [1.0, 0.0], 5)) == 2
    assert store.collections() == ["Repo", "repo"]


def test_upsert_is_idempotent_and_replaces_rows(store) -> None:
    store.upsert("repo", [_embedded("a", [1.0, 0.0], text="old")])
    store.upsert("repo", [_embedded("a", [1.0, 0.0], text="old")])
    assert store.count("repo") == 1

    store.upsert("repo", [_embedded("a", [0.0, 1.0], text="new", section="Other")])

    results = store.search(["repo"], [0.0, 1.0], 5, include_vectors=True)
    assert store.count() == 1
    assert results[0].chunk.text == "new"
    assert results[0].chunk.metadata.section_path == "Other"
    assert results[0].vector == [0.0, 1.0]
    assert results[0].similarity == pytest.approx(1.0)


def test_sqlite_store_persists_across_instances(tmp_path) -> None:
    db_path = tmp_path / "nested" / "store.sqlite"
    SqliteVectorStore(db_path).upsert("repo", [_embedded("a", [1.0, 0.0], section=None)])

    reopened = SqliteVectorStore(db_path)
    results = reopened.search(["repo"], [1.0, 0.0], 5)

    assert [item.chunk.chunk_id for item in results] == ["a"]
    assert results[0].chunk.metadata.section_path is None
    assert results[0].chunk.metadata.source_type is SourceType.MARKDOWN


def test_concurrent_upserts_of_disjoint_ids(store) -> None:
    def _writer(worker: int) -> None:
        store.upsert(
            "repo",
            [_embedded(f"w{worker}-{i}", [1.0, float(i)], path=f"docs/{worker}.md") for i in range(20)],
        )

    threads = [threading.Thread(target=_writer, args=(worker,)) for worker in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert store.count("repo") == 80
