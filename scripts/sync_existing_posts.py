#!/usr/bin/env python
"""Send every published WordPress post to the blog sync webhook.

Usage:
    python scripts/sync_existing_posts.py
    python scripts/sync_existing_posts.py --delay 30 --sync-url http://localhost:5000/api/blog-sync
"""
import argparse
import asyncio
import sys
import time
from pathlib import Path
from typing import Any, Dict

import httpx

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from app import config
from app.errors import RAGServiceError
from app.log import configure_logging
from app.sync.webhook import WordPressPost, generate_signature
from app.sync.wordpress import WordPressClient
import structlog

logger = structlog.get_logger()


def build_payload(post: WordPressPost, secret: str, timestamp: int = None) -> Dict[str, Any]:
    """Build a signed 'published' webhook payload carrying the full post."""
    timestamp = timestamp if timestamp is not None else int(time.time())
    return {
        "action": "published",
        "wp_post_id": post.id,
        "slug": post.slug,
        "status": post.status,
        "timestamp": timestamp,
        "signature": generate_signature(post.id, timestamp, secret),
        "post_data": post.model_dump(),
    }


async def sync_post(client: httpx.AsyncClient, sync_url: str, post: WordPressPost, secret: str) -> bool:
    try:
        response = await client.post(sync_url, json=build_payload(post, secret))
    except httpx.HTTPError as e:
        print(f"  Error syncing '{post.slug}': {type(e).__name__}")
        logger.error("post_sync_failed", slug=post.slug, error=str(e))
        return False

    if response.status_code != 200:
        print(f"  Failed: '{post.slug}' ({response.status_code})")
        return False

    result = response.json()
    print(f"  Synced: '{post.slug}' (ID: {post.id})")
    if result.get("chunks_processed") is not None:
        print(f"     Processed {result['chunks_processed']}/{result.get('total_chunks')} chunks")
    return True


async def main():
    parser = argparse.ArgumentParser(description="Bulk sync published WordPress posts")
    parser.add_argument(
        "--sync-url",
        default=config.BLOG_SYNC_URL,
        help=f"Blog sync endpoint (default: {config.BLOG_SYNC_URL})",
    )
    parser.add_argument(
        "--delay",
        type=float,
        default=30.0,
        help="Seconds to wait between posts (the endpoint is rate limited)",
    )
    args = parser.parse_args()

    configure_logging()

    if not config.WEBHOOK_SECRET:
        print("\nError: WEBHOOK_SECRET is not configured\n")
        sys.exit(1)

    try:
        posts = await WordPressClient().fetch_published_posts()
    except RAGServiceError as e:
        print(f"\nFailed to fetch posts: {e.message}\n")
        sys.exit(1)

    print(f"\nTotal posts found: {len(posts)}\n")
    if not posts:
        return

    succeeded = 0
    async with httpx.AsyncClient(timeout=120.0) as client:
        for i, post in enumerate(posts, 1):
            print(f"[{i}/{len(posts)}] Syncing: '{post.slug}'")
            if await sync_post(client, args.sync_url, post, config.WEBHOOK_SECRET):
                succeeded += 1

            if i < len(posts):
                await asyncio.sleep(args.delay)

    print(f"\nSuccessfully synced: {succeeded} posts")
    print(f"Failed: {len(posts) - succeeded} posts\n")

    if succeeded < len(posts):
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
