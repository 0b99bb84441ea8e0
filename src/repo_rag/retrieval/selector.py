"""Greedy context selection and citation-ready rendering."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from repo_rag.config import SelectionOptions
from repo_rag.obs.tracing import EventSink, emit
from repo_rag.retrieval.vector_store import matches_prefix
from repo_rag.types import ScoredItem

RELAXED_MIN_CHARS = 60
CONTINUATION_MARKER = "\n…"


@dataclass(slots=True)
class Selection:
    items: list[ScoredItem]
    # 0 = primary pass, 1 = relaxed filters, 2 = raw candidates.
    fallback_stage: int = 0


def is_priority_source(source_path: str, priority_prefixes: Sequence[str]) -> bool:
    return any(matches_prefix(source_path, prefix) for prefix in priority_prefixes)


def is_low_signal(item: ScoredItem, options: SelectionOptions) -> bool:
    """Too short, or a status-like section. Routed sources are never low-signal."""
    metadata = item.chunk.metadata
    if is_priority_source(metadata.source_path, options.priority_prefixes):
        return False
    if len(item.chunk.text.strip()) < options.min_chars:
        return True
    if options.drop_status_sections:
        section = (metadata.section_path or "").casefold()
        if "status" in section:
            return True
    return False


def select(candidates: Sequence[ScoredItem], options: SelectionOptions) -> list[ScoredItem]:
    """Walk candidates in order applying low-signal, dedup and per-source rules.

    A `(source_path, section_path)` pair is kept once. Non-priority sources
    contribute at most `max_per_source` items; sources under a priority
    prefix are uncapped.
    """
    per_source: dict[str, int] = {}
    seen: set[tuple[str, str]] = set()
    selected: list[ScoredItem] = []

    for item in candidates:
        if len(selected) >= options.max_chunks:
            break
        if is_low_signal(item, options):
            continue

        metadata = item.chunk.metadata
        key = (metadata.source_path, metadata.section_path or "")
        if key in seen:
            continue
        seen.add(key)

        if not is_priority_source(metadata.source_path, options.priority_prefixes):
            count = per_source.get(metadata.source_path, 0)
            if count >= options.max_per_source:
                continue
            per_source[metadata.source_path] = count + 1

        selected.append(item)

    return selected


def select_with_fallback(
    candidates: Sequence[ScoredItem],
    options: SelectionOptions,
    *,
    event_sink: EventSink | None = None,
) -> Selection:
    """Run `select`, relaxing filters only when the primary pass is empty.

    Stage 1 lowers `min_chars` to at most 60 and keeps status sections.
    Stage 2 takes the first `max_chunks` candidates unconditionally.
    """
    selected = select(candidates, options)
    if selected or not candidates:
        emit(event_sink, "select.done", stage=0, selected=len(selected))
        return Selection(items=selected, fallback_stage=0)

    relaxed = options.model_copy(
        update={
            "min_chars": min(options.min_chars, RELAXED_MIN_CHARS),
            "drop_status_sections": False,
        }
    )
    selected = select(candidates, relaxed)
    if selected:
        emit(event_sink, "select.done", stage=1, selected=len(selected))
        return Selection(items=selected, fallback_stage=1)

    selected = list(candidates[: options.max_chunks])
    emit(event_sink, "select.done", stage=2, selected=len(selected))
    return Selection(items=selected, fallback_stage=2)


def truncate_text(text: str, max_chars: int) -> str:
    """Cut to `max_chars` code points and append a continuation marker."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars].rstrip() + CONTINUATION_MARKER


def render_context(items: Sequence[ScoredItem], max_chars_per_item: int) -> str:
    """Render selected items as `[S1]`, `[S2]`, ... blocks for prompting."""
    blocks = []
    for index, item in enumerate(items, start=1):
        text = truncate_text(item.chunk.text, max_chars_per_item)
        blocks.append(
            f"### [S{index}] {item.source_label()}\n"
            f"Similarity: {item.similarity:.4f}\n\n"
            f"{text}\n"
        )
    return "\n".join(blocks)
