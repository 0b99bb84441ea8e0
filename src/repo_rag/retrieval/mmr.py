"""Maximal marginal relevance re-ranking."""

from __future__ import annotations

from collections.abc import Sequence

from repo_rag.retrieval.vector_store import cosine_similarity
from repo_rag.types import ScoredItem


def mmr(candidates: Sequence[ScoredItem], k: int, lambda_: float) -> list[ScoredItem]:
    """Greedy MMR over candidates already sorted by relevance.

    Each round picks the remaining item maximizing
    `lambda_ * similarity - (1 - lambda_) * max_redundancy`, where redundancy
    is the highest cosine similarity to an already picked item's vector and
    may be negative. It counts as 0 while no vector-bearing item has been
    picked, and for items without a vector. Ties go to the earlier
    candidate.
    """
    if not 0.0 <= lambda_ <= 1.0:
        raise ValueError(f"lambda_ must be within [0, 1], got {lambda_}")
    if k <= 0 or not candidates:
        return []

    remaining = list(candidates)
    selected: list[ScoredItem] = []
    # Highest similarity between each remaining item and the selection so far.
    redundancy: list[float | None] = [None] * len(remaining)

    while remaining and len(selected) < k:
        best_index = 0
        best_score = float("-inf")
        for index, item in enumerate(remaining):
            penalty = redundancy[index] or 0.0
            score = lambda_ * item.similarity - (1.0 - lambda_) * penalty
            if score > best_score:
                best_score = score
                best_index = index

        picked = remaining.pop(best_index)
        redundancy.pop(best_index)
        selected.append(picked)

        if picked.vector is None:
            continue
        for index, item in enumerate(remaining):
            if item.vector is None:
                continue
            similarity = cosine_similarity(item.vector, picked.vector)
            current = redundancy[index]
            redundancy[index] = similarity if current is None else max(current, similarity)

    return selected


def diversify(
    candidates: Sequence[ScoredItem],
    k: int,
    lambda_: float,
    min_similarity: float = 0.0,
) -> list[ScoredItem]:
    """Filter by `min_similarity`, then MMR.

    When nothing clears the threshold the relevance-ranked input is used as is
    so the caller still has context to select from.
    """
    pool = [item for item in candidates if item.similarity >= min_similarity]
    if not pool:
        return list(candidates[: max(k, 0)])
    return mmr(pool, k, lambda_)
