#!/usr/bin/env python3
"""Embed and link memories that were stored without an embedding.

Memories created while the embedding provider or the vector index was down
keep working for lexical search but have no vector and no links.  This script
finds them, embeds them in batches, upserts their vectors and computes their
links.  Safe to re-run: only memories without an embedding are touched.

Usage:
    CORTEX_QDRANT_URL=http://localhost:6333 \
    CORTEX_DB_PATH=./data/cortex_memory.db \
        python scripts/backfill_embeddings.py [--user-id ID] [--batch-size N]
"""

import argparse
import asyncio
import logging
import sys
import time

from cortex_memory.config import settings
from cortex_memory.logging_config import configure_logging
from cortex_memory.storage.factory import build_components, initialize_components

logger = logging.getLogger(__name__)


async def backfill_embeddings(user_id: str | None, batch_size: int) -> dict[str, int]:
    """Run the backfill against the configured store and index.

    Returns:
        Stats dict with embedded and failed counts.
    """
    components = build_components(settings)
    try:
        await initialize_components(components, strict=True)
        return await components.memory_service.backfill_embeddings(owner_id=user_id, batch_size=batch_size)
    finally:
        await components.close()


def main():
    parser = argparse.ArgumentParser(description="Embed and link memories that have no embedding yet")
    parser.add_argument("--user-id", default=None, help="Only backfill this user's memories (default: all users)")
    parser.add_argument(
        "--batch-size",
        type=int,
        default=settings.embedding.batch_size,
        help=f"Memories per embedding batch (default: {settings.embedding.batch_size})",
    )
    parser.add_argument("--log-level", default=settings.server.log_level)
    args = parser.parse_args()

    configure_logging(args.log_level.upper())

    if args.batch_size < 1:
        parser.error("--batch-size must be at least 1")

    start = time.perf_counter()
    try:
        stats = asyncio.run(backfill_embeddings(args.user_id, args.batch_size))
    except Exception as e:
        logger.error(f"Backfill aborted: {e}")
        sys.exit(1)

    elapsed = time.perf_counter() - start
    logger.info(f"Done in {elapsed:.1f}s: {stats['embedded']} embedded, {stats['failed']} failed")
    sys.exit(1 if stats["failed"] else 0)


if __name__ == "__main__":
    main()
