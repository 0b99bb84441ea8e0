"""FastAPI entrypoint for ingest/search/context/ask endpoints."""

from __future__ import annotations

import os
from dataclasses import asdict
from typing import Any

import structlog
from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

from repo_rag.agent.answerer import RepoAnswerer
from repo_rag.agent.generator import (
    AnswerGenerator,
    ChatModelGenerator,
    ExtractiveGenerator,
    GenerationError,
)
from repo_rag.config import DiversityConfig, RetrievalConfig, SelectionConfig
from repo_rag.ingest.embedder import Embedder, EmbeddingError, HashingEmbedder, OllamaEmbedder
from repo_rag.ingest.parser import RepoLoader
from repo_rag.ingest.pipeline import IngestPipeline
from repo_rag.obs.logs import setup_logging
from repo_rag.obs.tracing import EventRecorder, StructlogEventSink, fan_out
from repo_rag.retrieval.pipeline import ContextPipeline
from repo_rag.retrieval.router import KeywordRouter
from repo_rag.retrieval.vector_store import (
    InMemoryVectorStore,
    SearchFilter,
    SqliteVectorStore,
    VectorStore,
)
from repo_rag.settings import Settings
from repo_rag.types import ScoredItem, SourceType

logger = structlog.get_logger(__name__)


def _create_embedder(settings: Settings) -> Embedder:
    if settings.embedder == "ollama":
        return OllamaEmbedder(
            base_url=settings.ollama_base_url,
            model=settings.embedding_model,
            timeout=settings.http_timeout_seconds,
        )
    return HashingEmbedder(dimension=settings.hashing_dimension)


def _create_store(settings: Settings) -> VectorStore:
    if settings.db_path:
        return SqliteVectorStore(settings.db_path)
    return InMemoryVectorStore()


def _create_generator() -> AnswerGenerator:
    if not os.getenv("OPENAI_API_KEY"):
        return ExtractiveGenerator()

    from langchain_openai import ChatOpenAI

    return ChatModelGenerator(
        ChatOpenAI(model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"), temperature=0)
    )


class IngestRequest(BaseModel):
    repo_path: str = Field(min_length=1)
    collection: str = Field(min_length=1)


class SearchRequest(BaseModel):
    collection: str = Field(min_length=1)
    query: str
    top_k: int = Field(default=8, ge=0, le=200)
    source_types: list[SourceType] = Field(default_factory=list)
    source_path_prefix: str | None = None


class RouteRequest(BaseModel):
    query: str


class ContextRequest(BaseModel):
    collection: str = Field(min_length=1)
    query: str
    max_chunks: int | None = Field(default=None, ge=1)
    max_per_source: int | None = Field(default=None, ge=1)
    min_chars: int | None = Field(default=None, ge=0)
    max_chars_per_item: int | None = Field(default=None, ge=1)
    keep_status: bool = False

    def selection(self, base: SelectionConfig) -> SelectionConfig:
        updates: dict[str, Any] = {
            key: value
            for key, value in {
                "max_chunks": self.max_chunks,
                "max_per_source": self.max_per_source,
                "min_chars": self.min_chars,
                "max_chars_per_item": self.max_chars_per_item,
            }.items()
            if value is not None
        }
        if self.keep_status:
            updates["drop_status_sections"] = False
        return base.model_copy(update=updates)


_settings = Settings()
setup_logging(_settings.log_level, json_logs=_settings.json_logs)

app = FastAPI(title="Repo RAG", version="0.1.0")

_events = EventRecorder()
_event_sink = fan_out(_events, StructlogEventSink())
_embedder = _create_embedder(_settings)
_vector_store = _create_store(_settings)
_ingest_pipeline = IngestPipeline(RepoLoader(), _embedder, _vector_store)
_router = KeywordRouter()
_selection = SelectionConfig()
_pipeline = ContextPipeline(
    _vector_store,
    _embedder,
    retrieval=RetrievalConfig(),
    selection=_selection,
    diversity=DiversityConfig(),
    router=_router,
    event_sink=_event_sink,
)
_generator = _create_generator()
_answerer = RepoAnswerer(_pipeline, _generator, event_sink=_event_sink)


def _item_payload(item: ScoredItem) -> dict[str, Any]:
    metadata = item.chunk.metadata
    return {
        "chunk_id": item.chunk.chunk_id,
        "source": item.source_label(),
        "source_path": metadata.source_path,
        "section_path": metadata.section_path,
        "source_type": metadata.source_type.value,
        "similarity": item.similarity,
        "text": item.chunk.text,
    }


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "embedder": _settings.embedder,
        "store": "sqlite" if _settings.db_path else "memory",
        "generator": type(_generator).__name__,
        "event_count": len(_events.events),
    }


@app.post("/ingest")
def ingest(request: IngestRequest) -> dict[str, Any]:
    try:
        report = _ingest_pipeline.ingest_repo(request.repo_path, request.collection)
    except (ValueError, OSError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except EmbeddingError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    return {
        "collection": report.collection,
        "documents": report.documents,
        "chunks_created": len(report.chunks),
        "dimension": report.dimension,
    }


@app.post("/search")
def search(request: SearchRequest) -> dict[str, Any]:
    if not request.query.strip():
        return {"items": []}
    try:
        query_vector = _embedder.embed_query(request.query)
    except EmbeddingError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    hits = _vector_store.search(
        [request.collection],
        query_vector,
        request.top_k,
        SearchFilter(
            allowed_source_types=tuple(request.source_types),
            source_path_prefix=request.source_path_prefix,
        ),
    )
    return {"items": [_item_payload(hit) for hit in hits]}


@app.post("/route")
def route(request: RouteRequest) -> dict[str, Any]:
    plan = _router.classify(request.query)
    return {
        "intent": plan.intent.value,
        "prefixes": list(plan.prefixes),
        "matched": [intent.value for intent in _router.matched_intents(request.query)],
    }


@app.post("/context")
def context(request: ContextRequest) -> dict[str, Any]:
    try:
        result = _pipeline.build(
            request.collection, request.query, selection=request.selection(_selection)
        )
    except EmbeddingError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {
        "intent": result.plan.intent.value,
        "prefixes": list(result.plan.prefixes),
        "fallback_stage": result.fallback_stage,
        "selected": [_item_payload(item) for item in result.selected],
        "context": result.context,
    }


@app.post("/ask")
def ask(request: ContextRequest) -> dict[str, Any]:
    try:
        return _answerer.ask(
            request.collection, request.query, selection=request.selection(_selection)
        )
    except (EmbeddingError, GenerationError) as exc:
        logger.warning("ask_failed", error=str(exc))
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@app.get("/events")
def events(limit: int = Query(default=50, ge=1)) -> dict[str, Any]:
    return {"items": [asdict(event) for event in _events.list_recent(limit=limit)]}
