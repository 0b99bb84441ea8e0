"""Question answering on top of the context pipeline."""

from __future__ import annotations

import re
from typing import Any

from repo_rag.agent.generator import NO_CONTEXT_ANSWER, AnswerGenerator
from repo_rag.config import SelectionConfig
from repo_rag.obs.tracing import EventSink, Timer, emit
from repo_rag.retrieval.pipeline import ContextPipeline

_CITATION = re.compile(r"\[(S\d+)\]")


class RepoAnswerer:
    """Builds the context for a question and hands it to a generator.

    The generator is never called when the context is empty; the caller gets
    the fixed "don't know" answer instead.
    """

    def __init__(
        self,
        pipeline: ContextPipeline,
        generator: AnswerGenerator,
        event_sink: EventSink | None = None,
    ) -> None:
        self.pipeline = pipeline
        self.generator = generator
        self.event_sink = event_sink

    def ask(
        self,
        collection: str,
        question: str,
        *,
        selection: SelectionConfig | None = None,
    ) -> dict[str, Any]:
        """Run one full turn.

        Returns:
            A payload with the answer, cited markers, the `[S{i}]` -> source
            mapping, the routed intent, the rendered context and latency.
        """
        with Timer() as timer:
            result = self.pipeline.build(collection, question, selection=selection)
            if result.context:
                answer = self.generator.generate(question, result.context)
            else:
                answer = NO_CONTEXT_ANSWER

        sources = [
            {
                "marker": f"S{index}",
                "source": item.source_label(),
                "similarity": item.similarity,
                "chunk_id": item.chunk.chunk_id,
            }
            for index, item in enumerate(result.selected, start=1)
        ]
        citations = _extract_citations(answer)
        emit(
            self.event_sink,
            "ask.done",
            collection=collection,
            intent=result.plan.intent.value,
            citations=citations,
            latency_ms=timer.elapsed_ms,
        )
        return {
            "answer": answer,
            "citations": citations,
            "sources": sources,
            "intent": result.plan.intent.value,
            "prefixes": list(result.plan.prefixes),
            "fallback_stage": result.fallback_stage,
            "context": result.context,
            "latency_ms": timer.elapsed_ms,
        }


def _extract_citations(answer: str) -> list[str]:
    deduped: list[str] = []
    for citation in _CITATION.findall(answer):
        if citation not in deduped:
            deduped.append(citation)
    return deduped
