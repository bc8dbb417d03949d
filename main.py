#!/usr/bin/env python3
"""
Hybrid Document Search - Main Entry Point

Usage:
    python main.py search "教室コピー機能でコピー可能な項目は？" --top-k 5
    python main.py search "会員登録" --include-meeting-notes --json
    python main.py serve --port 8000
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Ensure project root is in path
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from hybrid_search.config.logging_config import logger  # noqa: E402
from hybrid_search.config.settings import validate_env_for_app  # noqa: E402
from hybrid_search.services.errors import SearchError  # noqa: E402
from hybrid_search.services.factory import build_pipeline  # noqa: E402
from hybrid_search.services.models import LabelFilterSpec  # noqa: E402


def _print_results(response) -> None:
    meta = response.metadata
    print(f"keywords: {', '.join(meta.keywords) or '-'}{' (fallback)' if meta.keyword_fallback else ''}")
    if meta.degraded:
        print(f"degraded: {', '.join(meta.failed_paths)} unavailable")
    for relaxation in meta.filter_relaxations:
        print(f"filter relaxed on {relaxation.path} ({relaxation.removed} candidates)")
    if not response.results:
        print("No results.")
        return
    for rank, result in enumerate(response.results, 1):
        labels = f" [{', '.join(result.labels)}]" if result.labels else ""
        print(f"{rank:>2}. {result.title} (pageId={result.page_id}) {result.score_text}{labels}")
        if result.url:
            print(f"    {result.url}")


async def run_search(args: argparse.Namespace) -> int:
    pipeline = build_pipeline(backend=args.backend, corpus_path=args.corpus)
    try:
        response = await pipeline.search(
            args.query,
            top_k=args.top_k,
            label_filters=LabelFilterSpec(
                include_meeting_notes=args.include_meeting_notes,
                include_archived=args.include_archived,
            ),
        )
    except SearchError as e:
        logger.error("Search failed: %s", e)
        print(f"error: {e}", file=sys.stderr)
        return 2 if isinstance(e, ValueError) else 1

    if args.json:
        print(json.dumps(response.to_dict(), ensure_ascii=False, indent=2))
    else:
        _print_results(response)
    return 0


def run_server(args: argparse.Namespace) -> int:
    from hybrid_search.api.search import run

    run(build_pipeline(backend=args.backend, corpus_path=args.corpus), host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Hybrid (vector + BM25) document search")
    parser.add_argument("--backend", choices=["memory", "supabase"], default=None, help="Override SEARCH_BACKEND")
    parser.add_argument("--corpus", default=None, help="Corpus JSON for the memory backend (default: CORPUS_PATH)")
    sub = parser.add_subparsers(dest="command", required=True)

    search = sub.add_parser("search", help="Run one query and print ranked pages")
    search.add_argument("query", help="Natural-language query")
    search.add_argument("--top-k", type=int, default=None, help="Number of pages to return (default: 10)")
    search.add_argument("--include-meeting-notes", action="store_true", help="Keep meeting-note pages")
    search.add_argument("--include-archived", action="store_true", help="Keep archived pages")
    search.add_argument("--json", action="store_true", help="Print the raw JSON response")

    serve = sub.add_parser("serve", help="Start the HTTP API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)
    validate_env_for_app()
    if args.command == "serve":
        return run_server(args)
    return asyncio.run(run_search(args))


if __name__ == "__main__":
    sys.exit(main())
