import pytest

from repo_rag.retrieval.mmr import diversify, mmr
from repo_rag.types import Chunk, ChunkMetadata, ScoredItem, SourceType


def _item(name: str, similarity: float, vector: list[float] | None) -> ScoredItem:
    return ScoredItem(
        chunk=Chunk(
            chunk_id=name,
            text=name,
            metadata=ChunkMetadata(
                collection="repo",
                source_path=f"docs/{name}.md",
                source_type=SourceType.MARKDOWN,
                content_hash=name,
            ),
        ),
        similarity=similarity,
        vector=vector,
    )


def _ids(items: list[ScoredItem]) -> list[str]:
    return [item.chunk.chunk_id for item in items]


def test_lambda_one_keeps_relevance_order() -> None:
    candidates = [
        _item("a", 0.9, [1.0, 0.0]),
        _item("b", 0.8, [1.0, 0.0]),
        _item("c", 0.7, [0.0, 1.0]),
    ]

    assert _ids(mmr(candidates, 3, 1.0)) == ["a", "b", "c"]


def test_anti_correlated_item_is_promoted_over_orthogonal_one() -> None:
    candidates = [
        _item("a", 0.9, [1.0, 0.0]),
        _item("c", 0.55, [0.0, 1.0]),
        _item("b", 0.5, [-1.0, 0.0]),
    ]

    assert _ids(mmr(candidates, 3, 0.5)) == ["a", "b", "c"]


def test_redundant_duplicate_is_demoted() -> None:
    candidates = [
        _item("a", 0.9, [1.0, 0.0]),
        _item("a-copy", 0.85, [1.0, 0.0]),
        _item("other", 0.6, [0.0, 1.0]),
    ]

    assert _ids(mmr(candidates, 3, 0.5)) == ["a", "other", "a-copy"]


def test_items_without_vectors_are_not_redundant() -> None:
    candidates = [
        _item("a", 0.9, None),
        _item("b", 0.85, None),
        _item("c", 0.6, None),
    ]

    assert _ids(mmr(candidates, 3, 0.5)) == ["a", "b", "c"]


def test_k_bounds() -> None:
    candidates = [_item("a", 0.9, [1.0]), _item("b", 0.8, [1.0])]

    assert mmr(candidates, 0, 0.5) == []
    assert mmr([], 3, 0.5) == []
    assert len(mmr(candidates, 10, 0.5)) == 2
    assert len(mmr(candidates, 1, 0.5)) == 1


@pytest.mark.parametrize("lambda_", [-0.1, 1.5])
def test_lambda_outside_unit_interval_is_rejected(lambda_: float) -> None:
    with pytest.raises(ValueError):
        mmr([_item("a", 0.9, [1.0])], 1, lambda_)


def test_diversify_applies_similarity_threshold() -> None:
    candidates = [
        _item("a", 0.9, [1.0, 0.0]),
        _item("b", 0.8, [0.0, 1.0]),
        _item("c", 0.3, [1.0, 1.0]),
    ]

    assert _ids(diversify(candidates, 3, 0.7, min_similarity=0.5)) == ["a", "b"]


def test_diversify_falls_back_to_relevance_order_when_nothing_passes() -> None:
    candidates = [_item("a", 0.4, [1.0]), _item("b", 0.3, [1.0]), _item("c", 0.2, [1.0])]

    assert _ids(diversify(candidates, 2, 0.7, min_similarity=0.95)) == ["a", "b"]
