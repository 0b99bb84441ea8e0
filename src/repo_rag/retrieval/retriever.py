"""Routed retriever with prefix-first candidate expansion."""

from __future__ import annotations

from collections.abc import Sequence

from repo_rag.config import RetrievalConfig
from repo_rag.obs.tracing import EventSink, emit
from repo_rag.retrieval.router import KeywordRouter
from repo_rag.retrieval.vector_store import SearchFilter, VectorStore
from repo_rag.types import RetrievalResult, ScoredItem


class RoutedRetriever:
    """Fetches routed sources first, then backfills with an unfiltered query.

    For each prefix in the route plan the store is queried with a prefix
    filter and unseen chunks are appended in store order. If the accumulator
    is still short of `target_size`, one unfiltered query over the same
    collection fills the rest. Routing therefore only moves routed chunks to
    the front; it never removes anything an unrouted top-k would return.

    Every query fetches `max(target_size, min_fetch_width)` rows so later
    stages have material to filter.
    """

    def __init__(
        self,
        vector_store: VectorStore,
        router: KeywordRouter | None = None,
        config: RetrievalConfig | None = None,
        event_sink: EventSink | None = None,
    ) -> None:
        self.vector_store = vector_store
        self.router = router or KeywordRouter()
        self.config = config or RetrievalConfig()
        self.event_sink = event_sink

    def retrieve(
        self,
        collection: str,
        query: str,
        query_vector: Sequence[float],
        target_size: int | None = None,
        *,
        include_vectors: bool = False,
    ) -> RetrievalResult:
        plan = self.router.classify(query)
        size = self.config.top_k if target_size is None else target_size
        if not query.strip() or size <= 0:
            emit(self.event_sink, "retrieve.skipped", collection=collection, target_size=size)
            return RetrievalResult(plan=plan, results=[])

        width = max(size, self.config.min_fetch_width)
        accumulator: list[ScoredItem] = []
        seen: set[str] = set()

        def _extend(items: list[ScoredItem]) -> int:
            added = 0
            for item in items:
                if len(accumulator) >= size:
                    break
                if item.chunk.chunk_id in seen:
                    continue
                seen.add(item.chunk.chunk_id)
                accumulator.append(item)
                added += 1
            return added

        for prefix in plan.prefixes:
            added = _extend(
                self.vector_store.search(
                    [collection],
                    query_vector,
                    width,
                    SearchFilter(source_path_prefix=prefix),
                    include_vectors,
                )
            )
            emit(self.event_sink, "retrieve.prefix", prefix=prefix, added=added)
            if len(accumulator) >= size:
                break

        if len(accumulator) < size:
            added = _extend(
                self.vector_store.search(
                    [collection], query_vector, width, None, include_vectors
                )
            )
            emit(self.event_sink, "retrieve.backfill", added=added)

        emit(
            self.event_sink,
            "retrieve.done",
            collection=collection,
            intent=plan.intent.value,
            prefixes=list(plan.prefixes),
            results=len(accumulator),
        )
        return RetrievalResult(plan=plan, results=accumulator[:size])
