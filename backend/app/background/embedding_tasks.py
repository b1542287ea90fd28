"""
Background tasks for processing embeddings.

Chunks are always stored first and embedded afterwards; any chunk whose
embedding failed at ingestion time is picked up here on the next run.
"""

import asyncio
import logging

from app.core.exceptions import ChunkStoreError, EmbeddingProviderError, MissingTableError
from app.features.knowledge.models import ChunkOrigin

logger = logging.getLogger(__name__)


async def backfill_missing_embeddings(services, batch_size: int = 100) -> dict:
    """Embed up to `batch_size` chunks per origin that still have no vector.

    Per-chunk failures are counted and left for the next run. The index is
    invalidated when at least one embedding was attached.

    Returns:
        dict: { "processed": int, "failed": int }
    """
    store = services.store
    embedder = services.embedder
    stats = {"processed": 0, "failed": 0}

    for origin in ChunkOrigin:
        try:
            pending = await asyncio.to_thread(store.list_missing_embeddings, origin, batch_size)
        except MissingTableError:
            continue

        if pending:
            logger.info(f"🔄 Backfilling {len(pending)} {origin.value} chunks without embeddings...")

        for item in pending:
            try:
                vector = await embedder.embed(item.content)
                await asyncio.to_thread(
                    store.attach_embedding, origin, item.chunk_id, vector, embedder.model_name
                )
                stats["processed"] += 1
            except (EmbeddingProviderError, ChunkStoreError) as e:
                stats["failed"] += 1
                logger.error(f"❌ Failed to embed {origin.value} chunk {item.chunk_id}: {e.detail or e}")

    if stats["processed"]:
        services.index.invalidate()

    logger.info(
        f"✅ Embedding backfill finished: processed={stats['processed']}, failed={stats['failed']}"
    )
    return stats
