#!/usr/bin/env python
"""Seed the portfolio knowledge base from markdown files.

Usage:
    python scripts/seed_portfolio.py              # Incremental seed (unchanged items skipped)
    python scripts/seed_portfolio.py --rebuild    # Clear the portfolio collection first
    python scripts/seed_portfolio.py --force      # Re-embed every item
"""
import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from app import config, db
from app.errors import RAGServiceError
from app.llm_client import OpenAIClient
from app.log import configure_logging
from app.rag.embedder import EmbeddingGenerator
from app.rag.ingest import PORTFOLIO_COLLECTION, IngestPipeline
from app.rag.md_parser import MarkdownParser
from app.rag.store_faiss import get_vector_store
import structlog

logger = structlog.get_logger()


def print_summary(results, elapsed_seconds: float) -> None:
    counts = {"processed": 0, "unchanged": 0, "failed": 0}
    chunks = 0
    for result in results:
        counts[result.status] += 1
        chunks += result.chunks_processed

    print(f"\n{'=' * 60}")
    print("  Seeding Complete!")
    print(f"{'=' * 60}\n")
    print(f"  Items processed:  {counts['processed']}")
    print(f"  Items unchanged:  {counts['unchanged']}")
    print(f"  Items failed:     {counts['failed']}")
    print(f"  Chunks embedded:  {chunks}")
    print(f"  Time elapsed:     {elapsed_seconds:.1f}s")
    print(f"\n{'=' * 60}\n")


async def main():
    """Main entry point for the seed script."""
    parser = argparse.ArgumentParser(
        description="Seed portfolio markdown into the RAG index",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--rebuild",
        action="store_true",
        help="Clear the portfolio collection before seeding",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Re-embed items even when their content is unchanged",
    )
    parser.add_argument(
        "--content-dir",
        type=Path,
        default=None,
        help=f"Portfolio markdown directory (default: {config.CONTENT_DIR})",
    )
    args = parser.parse_args()

    configure_logging()
    content_dir = args.content_dir or config.CONTENT_DIR

    print("\nConfiguration:")
    print(f"   Content directory: {content_dir}")
    print(f"   Embedding model:   {config.EMBEDDING_MODEL}")
    print(f"   Chunk size:        {config.MAX_TOKENS_PER_CHUNK} tokens")
    print(f"   Chunk overlap:     {config.CHUNK_OVERLAP_TOKENS} tokens")

    start = datetime.now()

    try:
        items = MarkdownParser().parse_directory(content_dir)
        if not items:
            print(f"\nNo portfolio items found in {content_dir}\n")
            return

        db.init_database()
        vector_store = get_vector_store()

        pipeline = IngestPipeline(EmbeddingGenerator(OpenAIClient()), vector_store)

        if args.rebuild:
            removed = await pipeline.clear(PORTFOLIO_COLLECTION)
            print(f"\nCleared {removed} existing portfolio item(s)")

        print(f"\nSeeding {len(items)} item(s)...")
        results = await pipeline.seed_items(
            [item.to_dict() for item in items], force=args.force
        )

        print_summary(results, (datetime.now() - start).total_seconds())

        if any(r.status == "failed" for r in results):
            sys.exit(1)

    except KeyboardInterrupt:
        print("\n\nSeeding cancelled by user.\n")
        sys.exit(1)

    except FileNotFoundError as e:
        print(f"\nError: {e}\n")
        sys.exit(1)

    except RAGServiceError as e:
        print(f"\nError: {e.message}\n")
        logger.error("seed_script_failed", **e.to_dict())
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
