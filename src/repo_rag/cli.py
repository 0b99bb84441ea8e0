"""Command-line entrypoint: ingest, query, route, context, ask and eval."""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence

import structlog

from repo_rag.agent.answerer import RepoAnswerer
from repo_rag.agent.generator import ExtractiveGenerator, GenerationError, OllamaGenerator
from repo_rag.config import DiversityConfig, RetrievalConfig, SelectionConfig
from repo_rag.evaluation.dataset import load_jsonl
from repo_rag.evaluation.evaluator import Evaluator
from repo_rag.ingest.embedder import Embedder, EmbeddingError, HashingEmbedder, OllamaEmbedder
from repo_rag.ingest.parser import RepoLoader
from repo_rag.ingest.pipeline import IngestPipeline
from repo_rag.obs.logs import setup_logging
from repo_rag.obs.tracing import StructlogEventSink
from repo_rag.retrieval.pipeline import ContextPipeline
from repo_rag.retrieval.router import classify
from repo_rag.retrieval.vector_store import SearchFilter, SqliteVectorStore
from repo_rag.settings import Settings
from repo_rag.types import SourceType

logger = structlog.get_logger(__name__)

DEFAULT_DB_PATH = ".data/vectorstore.sqlite"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="repo-rag", description="Codebase question answering")
    parser.add_argument("--db", dest="db_path", default=None, help="SQLite store path")
    parser.add_argument(
        "--embedder", choices=["hashing", "ollama"], default=None, help="Embedding backend"
    )
    parser.add_argument("--log-level", default=None)
    parser.add_argument("--json-logs", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    ingest = sub.add_parser("ingest", help="Index a repository into a collection")
    ingest.add_argument("--repo", required=True)
    ingest.add_argument("--collection", required=True)

    query = sub.add_parser("query", help="Raw similarity search")
    query.add_argument("--collection", required=True)
    query.add_argument("--q", required=True)
    query.add_argument("--top-k", type=int, default=8)
    query.add_argument("--source-type", choices=[t.value for t in SourceType])
    query.add_argument("--source-path-prefix")

    route = sub.add_parser("route", help="Show the routing decision for a question")
    route.add_argument("--q", required=True)

    for name, help_text in (
        ("context", "Print the selected context for a question"),
        ("ask", "Answer a question from the indexed context"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--collection", required=True)
        cmd.add_argument("--q", required=True)
        _add_pipeline_args(cmd)
        if name == "ask":
            cmd.add_argument("--model", default=None, help="Ollama generation model")
            cmd.add_argument(
                "--extractive", action="store_true", help="Answer without a model"
            )
            cmd.add_argument("--debug", action="store_true", help="Print the context too")

    evaluate = sub.add_parser("eval", help="Compute hit@k over a JSONL dataset")
    evaluate.add_argument("--eval-path", default="eval/docvault.jsonl")
    evaluate.add_argument("--ks", type=int, nargs="+", default=None)
    evaluate.add_argument("--debug-misses", action="store_true")
    _add_pipeline_args(evaluate)
    return parser


def _add_pipeline_args(cmd: argparse.ArgumentParser) -> None:
    retrieval = RetrievalConfig()
    selection = SelectionConfig()
    diversity = DiversityConfig()
    cmd.add_argument("--top-k", type=int, default=retrieval.top_k)
    cmd.add_argument("--max-chunks", type=int, default=selection.max_chunks)
    cmd.add_argument("--max-per-source", type=int, default=selection.max_per_source)
    cmd.add_argument("--min-chars", type=int, default=selection.min_chars)
    cmd.add_argument("--max-chars-per-item", type=int, default=selection.max_chars_per_item)
    cmd.add_argument("--keep-status", action="store_true")
    cmd.add_argument("--mmr", action="store_true", help="Enable MMR re-ranking")
    cmd.add_argument("--mmr-lambda", type=float, default=diversity.lambda_)
    cmd.add_argument("--mmr-min-similarity", type=float, default=diversity.min_similarity)


def _embedder(settings: Settings) -> Embedder:
    if settings.embedder == "ollama":
        return OllamaEmbedder(
            base_url=settings.ollama_base_url,
            model=settings.embedding_model,
            timeout=settings.http_timeout_seconds,
        )
    return HashingEmbedder(dimension=settings.hashing_dimension)


def _pipeline(
    args: argparse.Namespace, settings: Settings, store: SqliteVectorStore
) -> ContextPipeline:
    return ContextPipeline(
        store,
        _embedder(settings),
        retrieval=RetrievalConfig(top_k=args.top_k),
        selection=SelectionConfig(
            max_chunks=args.max_chunks,
            max_per_source=args.max_per_source,
            min_chars=args.min_chars,
            max_chars_per_item=args.max_chars_per_item,
            drop_status_sections=not args.keep_status,
        ),
        diversity=DiversityConfig(
            enabled=args.mmr,
            lambda_=args.mmr_lambda,
            min_similarity=args.mmr_min_similarity,
        ),
        event_sink=StructlogEventSink(),
    )


def _cmd_ingest(args: argparse.Namespace, settings: Settings, store: SqliteVectorStore) -> int:
    pipeline = IngestPipeline(RepoLoader(), _embedder(settings), store)
    report = pipeline.ingest_repo(args.repo, args.collection)
    print(
        f"ingested {report.documents} documents, {len(report.chunks)} chunks "
        f"(dim={report.dimension}) into {report.collection!r}"
    )
    return 0


def _cmd_query(args: argparse.Namespace, settings: Settings, store: SqliteVectorStore) -> int:
    query_vector = _embedder(settings).embed_query(args.q)
    search_filter = SearchFilter(
        allowed_source_types=(SourceType(args.source_type),) if args.source_type else (),
        source_path_prefix=args.source_path_prefix,
    )
    results = store.search([args.collection], query_vector, args.top_k, search_filter)
    print(f"results: {len(results)}")
    for item in results:
        metadata = item.chunk.metadata
        print("-" * 80)
        print(f"similarity: {item.similarity:.4f}")
        section = f"  >  {metadata.section_path}" if metadata.section_path else ""
        print(f"source: {metadata.source_path}{section}")
        print(f"type: {metadata.source_type.value}\n")
        print(item.chunk.text[:600])
        if len(item.chunk.text) > 600:
            print("…")
    print("-" * 80)
    return 0


def _cmd_route(args: argparse.Namespace) -> int:
    plan = classify(args.q)
    print(f"intent: {plan.intent.value}")
    for prefix in plan.prefixes:
        print(f"  - {prefix}")
    return 0


def _cmd_context(args: argparse.Namespace, settings: Settings, store: SqliteVectorStore) -> int:
    result = _pipeline(args, settings, store).build(args.collection, args.q)
    print(f"intent: {result.plan.intent.value} fallback_stage: {result.fallback_stage}\n")
    print(result.context or "(no context)")
    return 0


def _cmd_ask(args: argparse.Namespace, settings: Settings, store: SqliteVectorStore) -> int:
    generator = (
        ExtractiveGenerator()
        if args.extractive
        else OllamaGenerator(
            base_url=settings.ollama_base_url,
            model=args.model or settings.generation_model,
            timeout=settings.http_timeout_seconds,
        )
    )
    payload = RepoAnswerer(_pipeline(args, settings, store), generator).ask(
        args.collection, args.q
    )
    if args.debug:
        print("\n=== CONTEXT ===\n")
        print(payload["context"])
    print("\n=== ANSWER ===\n")
    print(payload["answer"])
    print("\n=== SOURCES USED ===\n")
    for source in payload["sources"]:
        print(f"[{source['marker']}] {source['source']} (similarity={source['similarity']:.4f})")
    return 0


def _cmd_eval(args: argparse.Namespace, settings: Settings, store: SqliteVectorStore) -> int:
    cases = load_jsonl(args.eval_path)
    if not cases:
        print(f"no cases found in {args.eval_path}", file=sys.stderr)
        return 1

    report = Evaluator(_pipeline(args, settings, store)).evaluate(cases, args.ks)
    for case in report.cases:
        if case.skipped:
            print(f"[case {case.case_id}] skipped: {case.skipped_reason}")
            continue
        shown_k = 3 if 3 in case.hits else max(case.hits, default=0)
        hit = case.hits.get(shown_k, False)
        best = case.sources[0] if case.sources else "(none)"
        verdict = "yes" if hit else "no"
        print(f"[case {case.case_id}] hit@{shown_k}={verdict} best={best} q={case.query!r}")
        if not hit and args.debug_misses:
            print(f"  intent: {case.intent}")
            print(f"  prefixes: {case.prefixes}")
            print("  top sources:")
            for source in case.sources[:8]:
                print(f"   - {source}")

    print("\n=== RESULTS ===")
    for line in report.format_lines():
        print(line)
    return 0


_COMMANDS = {
    "ingest": _cmd_ingest,
    "query": _cmd_query,
    "context": _cmd_context,
    "ask": _cmd_ask,
    "eval": _cmd_eval,
}


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    updates = {
        key: value
        for key, value in {
            "db_path": args.db_path,
            "embedder": args.embedder,
            "log_level": args.log_level,
        }.items()
        if value is not None
    }
    if args.json_logs:
        updates["json_logs"] = True
    settings = Settings().model_copy(update=updates)
    setup_logging(settings.log_level, json_logs=settings.json_logs)

    if args.command == "route":
        return _cmd_route(args)

    store = SqliteVectorStore(settings.db_path or DEFAULT_DB_PATH)
    try:
        return _COMMANDS[args.command](args, settings, store)
    except (EmbeddingError, GenerationError, ValueError, OSError) as exc:
        logger.error("command_failed", command=args.command, error=str(exc))
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
