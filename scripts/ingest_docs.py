#!/usr/bin/env python
"""Bulk-upload a directory of markdown files as documents.

Every ``.md`` file found recursively is chunked, embedded through Ollama
and stored in the documents/chunks tables, exactly as the upload endpoint
would do it.

Usage:
    python scripts/ingest_docs.py
    python scripts/ingest_docs.py --docs-dir notes/ --db-path data/notes.sqlite
"""
import argparse
import asyncio
import sys
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from embedding_server import config
from embedding_server.db import Database
from embedding_server.llm_client import OllamaClient
from embedding_server.rag.ingest import IngestPipeline
from embedding_server.rag.store import DocumentStore
import structlog

logger = structlog.get_logger()

BAR_WIDTH = 30


class UploadProgress:
    """Prints one progress line per file and a closing summary."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.started = time.monotonic()

    def __call__(self, current: int, total: int, file_path: Path):
        filled = BAR_WIDTH * current // total if total else 0
        bar = "#" * filled + "-" * (BAR_WIDTH - filled)
        end = "\n" if self.verbose else ""
        print(f"\r  [{bar}] {current}/{total} {file_path.name[:40]:<40}", end=end, flush=True)

    def summary(self, stats: dict, db_path: str):
        elapsed = time.monotonic() - self.started
        print(f"\n\n  Documents uploaded: {stats['files_processed']}")
        print(f"  Documents failed:   {stats['files_failed']}")
        print(f"  Chunks stored:      {stats['chunks_created']}")
        print(f"  Elapsed:            {elapsed:.1f}s")
        print(f"  Database:           {db_path}\n")
        if stats["files_failed"]:
            print("  Some files failed; see the file_ingestion_failed log events.\n")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Upload markdown files into the embedding server's document store",
    )
    parser.add_argument(
        "--docs-dir",
        type=Path,
        default=config.DOCS_DIR,
        help=f"Directory searched for .md files (default: {config.DOCS_DIR})",
    )
    parser.add_argument(
        "--db-path",
        default=config.DB_PATH,
        help=f"SQLite database file (default: {config.DB_PATH})",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Print every file on its own line",
    )
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    """Run the upload; returns the process exit code."""
    args = parse_args(argv)

    gateway = OllamaClient()
    if not await gateway.is_available():
        print(f"Ollama is not reachable at {gateway.base_url}")
        return 1

    print(
        f"Uploading {args.docs_dir} with {config.EMBEDDING_MODEL} "
        f"(chunks {config.CHUNK_MIN_TOKENS}-{config.CHUNK_MAX_TOKENS} tokens, "
        f"overlap {config.CHUNK_OVERLAP_TOKENS})"
    )

    database = Database(args.db_path)
    database.init()
    try:
        pipeline = IngestPipeline(gateway, document_store=DocumentStore(database))
        progress = UploadProgress(verbose=args.verbose)
        stats = await pipeline.ingest_directory(args.docs_dir, progress_callback=progress)
    except FileNotFoundError as e:
        print(f"Error: {e}")
        return 1
    finally:
        database.close()

    progress.summary(stats, args.db_path)
    return 1 if stats["files_failed"] else 0


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nUpload cancelled.")
        sys.exit(1)
