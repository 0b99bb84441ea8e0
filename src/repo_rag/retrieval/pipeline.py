"""Query-time pipeline: embed -> route/retrieve -> diversify -> select -> render."""

from __future__ import annotations

from collections.abc import Sequence

from repo_rag.config import DiversityConfig, RetrievalConfig, SelectionConfig, SelectionOptions
from repo_rag.ingest.embedder import Embedder
from repo_rag.obs.tracing import EventSink, Timer, emit
from repo_rag.retrieval.mmr import diversify
from repo_rag.retrieval.retriever import RoutedRetriever
from repo_rag.retrieval.router import KeywordRouter
from repo_rag.retrieval.selector import render_context, select_with_fallback
from repo_rag.retrieval.vector_store import VectorStore, matches_prefix
from repo_rag.types import ContextResult, ScoredItem


class ContextPipeline:
    """Builds the answer context for one question against one collection.

    The candidate pool is `max(top_k, max_chunks * pool_multiplier)` items,
    large enough that per-source caps and low-signal filtering still leave
    `max_chunks` items to pick from. Vectors are fetched only when MMR is
    enabled and are stripped before items leave the pipeline.
    """

    def __init__(
        self,
        vector_store: VectorStore,
        embedder: Embedder,
        *,
        retrieval: RetrievalConfig | None = None,
        selection: SelectionConfig | None = None,
        diversity: DiversityConfig | None = None,
        router: KeywordRouter | None = None,
        event_sink: EventSink | None = None,
    ) -> None:
        self.embedder = embedder
        self.retrieval = retrieval or RetrievalConfig()
        self.selection = selection or SelectionConfig()
        self.diversity = diversity or DiversityConfig()
        self.event_sink = event_sink
        self.retriever = RoutedRetriever(
            vector_store,
            router=router,
            config=self.retrieval,
            event_sink=event_sink,
        )

    def pool_size(self, selection: SelectionConfig | None = None) -> int:
        config = selection or self.selection
        return max(self.retrieval.top_k, config.max_chunks * self.retrieval.pool_multiplier)

    def build(
        self,
        collection: str,
        query: str,
        *,
        selection: SelectionConfig | None = None,
    ) -> ContextResult:
        """Embed `query` and build its context.

        Raises `EmbeddingError` when the embedder fails. An empty query or
        collection yields an empty result.
        """
        if not query.strip():
            return self.build_from_vector(collection, query, [], selection=selection)
        query_vector = self.embedder.embed_query(query)
        return self.build_from_vector(collection, query, query_vector, selection=selection)

    def build_from_vector(
        self,
        collection: str,
        query: str,
        query_vector: Sequence[float],
        *,
        selection: SelectionConfig | None = None,
    ) -> ContextResult:
        config = selection or self.selection
        with Timer() as timer:
            retrieved = self.retriever.retrieve(
                collection,
                query,
                query_vector,
                self.pool_size(config),
                include_vectors=self.diversity.enabled,
            )
            pool = retrieved.results
            if self.diversity.enabled and pool:
                pool = [
                    item
                    for segment in _route_segments(pool, retrieved.plan.prefixes)
                    for item in diversify(
                        segment,
                        len(segment),
                        self.diversity.lambda_,
                        self.diversity.min_similarity,
                    )
                ]
                emit(self.event_sink, "diversify.done", pool=len(pool))
            pool = [_without_vector(item) for item in pool]

            options = SelectionOptions.from_config(config, retrieved.plan.prefixes)
            selection_result = select_with_fallback(pool, options, event_sink=self.event_sink)
            context = render_context(selection_result.items, options.max_chars_per_item)

        result = ContextResult(
            plan=retrieved.plan,
            candidates=pool,
            selected=selection_result.items,
            context=context,
            fallback_stage=selection_result.fallback_stage,
        )
        emit(
            self.event_sink,
            "pipeline.done",
            collection=collection,
            intent=result.plan.intent.value,
            candidates=len(pool),
            selected=len(result.selected),
            fallback_stage=result.fallback_stage,
            sources=result.sources,
            latency_ms=timer.elapsed_ms,
        )
        return result


def _without_vector(item: ScoredItem) -> ScoredItem:
    if item.vector is None:
        return item
    return ScoredItem(chunk=item.chunk, similarity=item.similarity)


def _route_segments(pool: list[ScoredItem], prefixes: Sequence[str]) -> list[list[ScoredItem]]:
    """Split `pool` into one segment per routed prefix, then the backfill.

    MMR runs inside each segment so re-ranking never moves a backfill item
    ahead of a routed one, or a later prefix ahead of an earlier one.
    """
    segments: list[list[ScoredItem]] = [[] for _ in range(len(prefixes) + 1)]
    for item in pool:
        path = item.chunk.metadata.source_path
        index = next(
            (i for i, prefix in enumerate(prefixes) if matches_prefix(path, prefix)),
            len(prefixes),
        )
        segments[index].append(item)
    return [segment for segment in segments if segment]
