import asyncio
import logging
from dataclasses import dataclass, field

from app.core.exceptions import EmbeddingProviderError
from app.features.knowledge.chunker import chunk_document
from app.features.knowledge.embedding import EmbeddingProvider
from app.features.knowledge.models import ChunkOrigin

logger = logging.getLogger(__name__)

BATCH_SIZE = 50


@dataclass
class IngestionReport:
    parent_id: int
    origin: ChunkOrigin
    is_exercise: bool = False
    chunk_ids: list[int] = field(default_factory=list)
    embedded: int = 0
    pending: int = 0


class IngestionService:
    """
    Turns extracted text into stored, embedded chunks:
    1. Chunk text (question-per-chunk for exercise sheets, 1000/200 otherwise).
    2. Insert chunks without embeddings.
    3. Batch embed and attach vectors (failed batches stay pending for the backfill job).
    4. Invalidate the vector index.
    """

    def __init__(self, store, embedder: EmbeddingProvider, index):
        self.store = store
        self.embedder = embedder
        self.index = index

    async def ingest(
        self,
        origin: ChunkOrigin,
        parent_id: int,
        file_name: str,
        text: str,
        user_id: int | None = None,
        session_id: int | None = None,
    ) -> IngestionReport:
        logger.info(f"🚀 Ingesting {origin.value} document {parent_id} ({file_name})")
        report = IngestionReport(parent_id=parent_id, origin=origin)

        # 1. Băm nhỏ văn bản (Chunking)
        chunks, report.is_exercise = chunk_document(file_name, text)
        if not chunks:
            logger.warning(f"⚠️ No chunks produced for {file_name}")
            return report

        # 2. Lưu chunks (chưa có embedding)
        await asyncio.to_thread(self.store.set_exercise_flag, origin, parent_id, report.is_exercise)
        try:
            report.chunk_ids = await asyncio.to_thread(
                self.store.insert_chunks, origin, parent_id, chunks, user_id, session_id
            )
            logger.info(
                f"✅ Inserted {len(report.chunk_ids)} chunks "
                f"({'exercise' if report.is_exercise else 'standard'}) for {file_name}"
            )

            # 3. Batch Embedding
            texts = [c.content for c in chunks]
            for i in range(0, len(texts), BATCH_SIZE):
                batch_ids = report.chunk_ids[i:i + BATCH_SIZE]
                try:
                    vectors = await self.embedder.embed_many(texts[i:i + BATCH_SIZE])
                except EmbeddingProviderError as e:
                    report.pending += len(batch_ids)
                    logger.warning(
                        f"⚠️ Embedding batch {i // BATCH_SIZE + 1} failed, "
                        f"{len(batch_ids)} chunks left for backfill: {e.detail}"
                    )
                    continue
                for chunk_id, vector in zip(batch_ids, vectors):
                    await asyncio.to_thread(
                        self.store.attach_embedding, origin, chunk_id, vector, self.embedder.model_name
                    )
                    report.embedded += 1
        finally:
            # 4. Index cũ không còn đúng, kể cả khi bước lưu / nhúng bị lỗi giữa chừng
            self.index.invalidate()

        logger.info(
            f"🎉 Ingestion finished for {file_name}: embedded={report.embedded}, pending={report.pending}"
        )
        return report

    async def upload_temporary(
        self,
        user_id: int,
        file_name: str,
        text: str,
        subject_id: str | None = None,
        session_id: int | None = None,
        file_path: str | None = None,
        mime_type: str = "text/plain",
    ) -> IngestionReport:
        """Register a chat upload as a temporary document and ingest its text."""
        document_id = await asyncio.to_thread(
            self.store.create_temporary_document,
            user_id,
            file_name,
            len(text.encode("utf-8")),
            mime_type,
            subject_id,
            file_path,
        )
        return await self.ingest(
            ChunkOrigin.TEMPORARY, document_id, file_name, text, user_id=user_id, session_id=session_id
        )
