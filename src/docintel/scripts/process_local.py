"""CLI for analysing, processing and searching local documents without the HTTP server."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from docintel.analyzer import DocumentAnalyzer
from docintel.config import Settings
from docintel.documents import DocumentRegistry
from docintel.ingestion import DocumentIngestor
from docintel.pipeline import INTENTS, PipelineError
from docintel.runner import execute_document_pipeline
from docintel.search import SearchOptions, UnifiedSearch
from docintel.templates import TemplateStore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Analyse, process and search local documents")
    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze = subparsers.add_parser("analyze", help="Print the document characteristics")
    analyze.add_argument("file", help="Path to the document")

    def add_processing_arguments(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("file", help="Path to the document")
        sub.add_argument("--intent", choices=INTENTS, help="Processing intent (default: use the configuration)")
        sub.add_argument("--template", help="Apply a processing template before running")
        sub.add_argument(
            "--step-delay",
            type=float,
            default=0.0,
            help="Simulated seconds per pipeline step (default: 0)",
        )
        sub.add_argument("--seed", type=int, help="Random seed for reproducible results")

    process = subparsers.add_parser("process", help="Ingest the document and run the pipeline")
    add_processing_arguments(process)

    search = subparsers.add_parser("search", help="Process the document, then run a unified search")
    add_processing_arguments(search)
    search.add_argument("query", help="Search query")
    search.add_argument("--limit", type=int, default=10, help="Maximum number of results")
    return parser


def _process(args: argparse.Namespace) -> tuple[DocumentRegistry, str, dict[str, Any]]:
    settings = Settings.from_env()
    settings.pipeline_step_delay = max(0.0, args.step_delay)
    if args.seed is not None:
        settings.pipeline_random_seed = args.seed

    path = Path(args.file)
    registry = DocumentRegistry()
    ingestor = DocumentIngestor(registry, settings=settings)
    result = ingestor.ingest_bytes(path.name, path.read_bytes(), source_location=str(path.resolve()))
    document_id = result.entry.id
    if args.template:
        store = TemplateStore.with_defaults(settings.templates_path)
        registry.update_configuration(document_id, store.apply(args.template))

    results = asyncio.run(
        execute_document_pipeline(registry, document_id, intent=args.intent, settings=settings)
    )
    return registry, document_id, results


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    path = Path(args.file)
    if not path.is_file():
        parser.error(f"File '{args.file}' does not exist")
        return 1

    if args.command == "analyze":
        characteristics = DocumentAnalyzer().analyze(path.name)
        print(json.dumps(characteristics.to_dict(), indent=2))
        return 0

    try:
        registry, document_id, results = _process(args)
        if args.command == "process":
            print(json.dumps({"documentId": document_id, "results": results}, indent=2))
            return 0
        response = UnifiedSearch().search(
            registry.build_search_corpus([document_id]),
            args.query,
            options=SearchOptions(limit=max(0, args.limit)),
        )
    except (LookupError, ValueError, PipelineError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    print(json.dumps(response.to_dict(), indent=2))
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry
    sys.exit(main())
