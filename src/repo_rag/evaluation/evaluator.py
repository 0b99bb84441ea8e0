"""hit@k evaluation of the retrieval pipeline over labeled questions."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

import structlog

from repo_rag.evaluation.dataset import EvalCase
from repo_rag.ingest.embedder import EmbeddingError
from repo_rag.obs.tracing import EventSink, emit
from repo_rag.retrieval.pipeline import ContextPipeline
from repo_rag.retrieval.vector_store import normalize_source_path

logger = structlog.get_logger(__name__)

DEFAULT_KS = (1, 3, 5, 8)


def _path_only(value: str) -> str:
    return value.split("#", 1)[0]


def source_matches(source: str, needle: str) -> bool:
    """Whether a selected `path#section` source satisfies a required needle.

    Path parts are compared after normalization: equal paths or a source
    path starting with the needle path match. A needle that includes a
    section matches when it occurs verbatim in the full source string.
    """
    source_path = normalize_source_path(_path_only(source))
    needle_path = normalize_source_path(_path_only(needle))
    if source_path == needle_path or source_path.startswith(needle_path):
        return True
    return needle in source


def hit_at_k(sources: Sequence[str], must_contain: Iterable[str], k: int) -> bool:
    top = sources[:k]
    return any(source_matches(source, needle) for needle in must_contain for source in top)


@dataclass(slots=True)
class CaseResult:
    case_id: str
    query: str
    intent: str | None = None
    prefixes: list[str] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)
    hits: dict[int, bool] = field(default_factory=dict)
    fallback_stage: int = 0
    skipped_reason: str | None = None

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None


@dataclass(slots=True)
class EvalReport:
    ks: list[int]
    total: int = 0
    skipped: int = 0
    hits: dict[int, int] = field(default_factory=dict)
    cases: list[CaseResult] = field(default_factory=list)

    @property
    def rates(self) -> dict[int, float]:
        """Hit rate per k; skipped cases count in the denominator."""
        return {k: (self.hits.get(k, 0) / self.total if self.total else 0.0) for k in self.ks}

    def format_lines(self) -> list[str]:
        lines = []
        for k in self.ks:
            count = self.hits.get(k, 0)
            rate = self.rates[k]
            lines.append(f"hit@{k}: {count}/{self.total} = {rate * 100:.1f}%")
        if self.skipped:
            lines.append(f"skipped: {self.skipped}/{self.total}")
        return lines


def default_ks(max_chunks: int) -> list[int]:
    return [k for k in DEFAULT_KS if k <= max_chunks]


class Evaluator:
    """Runs cases one at a time through a `ContextPipeline`.

    Each case gets fresh retrieval and selection state. A case whose
    embedding fails is counted in `total` and `skipped` and evaluation moves
    on; other errors propagate.
    """

    def __init__(self, pipeline: ContextPipeline, event_sink: EventSink | None = None) -> None:
        self.pipeline = pipeline
        self.event_sink = event_sink

    def evaluate(self, cases: Sequence[EvalCase], ks: Sequence[int] | None = None) -> EvalReport:
        wanted = sorted(set(ks)) if ks is not None else default_ks(self.pipeline.selection.max_chunks)
        if any(k <= 0 for k in wanted):
            raise ValueError(f"k values must be positive, got {wanted}")

        report = EvalReport(ks=wanted, hits={k: 0 for k in wanted})
        for position, case in enumerate(cases, start=1):
            report.total += 1
            result = self._run_case(case, case.id or str(position), wanted)
            report.cases.append(result)
            if result.skipped:
                report.skipped += 1
                continue
            for k, hit in result.hits.items():
                if hit:
                    report.hits[k] += 1
        emit(
            self.event_sink,
            "eval.done",
            total=report.total,
            skipped=report.skipped,
            hits=dict(report.hits),
        )
        return report

    def _run_case(self, case: EvalCase, case_id: str, ks: Sequence[int]) -> CaseResult:
        try:
            query_vector = self.pipeline.embedder.embed_query(case.query)
        except EmbeddingError as exc:
            logger.warning("eval_case_skipped", case_id=case_id, error=str(exc))
            emit(self.event_sink, "eval.case_skipped", case_id=case_id, error=str(exc))
            return CaseResult(case_id=case_id, query=case.query, skipped_reason=str(exc))

        context = self.pipeline.build_from_vector(case.collection, case.query, query_vector)
        sources = context.sources
        result = CaseResult(
            case_id=case_id,
            query=case.query,
            intent=context.plan.intent.value,
            prefixes=list(context.plan.prefixes),
            sources=sources,
            hits={k: hit_at_k(sources, case.must_contain, k) for k in ks},
            fallback_stage=context.fallback_stage,
        )
        emit(
            self.event_sink,
            "eval.case",
            case_id=case_id,
            intent=result.intent,
            hits=dict(result.hits),
            best=sources[0] if sources else None,
        )
        return result
