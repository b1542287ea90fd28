"""
Knowledge feature: Retrieval engine.

Turns a student question into a short ranked list of passages:

    1. embed the query
    2. make sure the vector index is ready (lazy rebuild)
    3. search every indexed chunk (k = index size)
    4-6. weight, threshold and filter candidates (see scoring.py)
    7. temporary chunks first, then by weighted similarity
    8. re-validate against the chunk store and keep the top N
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timezone

import numpy as np

from app.core.exceptions import EmptyIndexError, StaleReferenceError
from app.features.knowledge.embedding import EmbeddingProvider
from app.features.knowledge.models import (
    ChunkOrigin,
    RelatedDocument,
    RetrievalResult,
    VideoMatch,
)
from app.features.knowledge.scoring import (
    Candidate,
    QueryProfile,
    ScoringContext,
    ScoringPipeline,
)
from app.features.knowledge.vector_index import VectorIndex

logger = logging.getLogger(__name__)

RELATED_DOCUMENT_THRESHOLD = 0.4
RELATED_DOCUMENT_CANDIDATES = 20
PREVIEW_CHARS = 200


def cosine_similarity(a, b) -> float:
    a = np.asarray(a, dtype=np.float32)
    b = np.asarray(b, dtype=np.float32)
    if a.shape != b.shape:
        return 0.0
    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0:
        return 0.0
    return float(np.dot(a, b) / norm)


class RetrievalEngine:
    def __init__(
        self,
        embedder: EmbeddingProvider,
        index: VectorIndex,
        store,
        pipeline: ScoringPipeline | None = None,
        top_n: int = 5,
        timeout: float | None = None,
    ):
        self.embedder = embedder
        self.index = index
        self.store = store
        self.pipeline = pipeline or ScoringPipeline()
        self.top_n = top_n
        self.timeout = timeout

    async def retrieve(
        self,
        query: str,
        subject_id: str | None,
        requesting_user_id: int,
        current_session_id: int | None = None,
        is_video_context: bool = False,
        top_n: int | None = None,
        now: datetime | None = None,
    ) -> list[RetrievalResult]:
        """Return at most `top_n` passages for the question, best first.

        Raises:
            EmbeddingProviderError: the query could not be embedded.
            ChunkStoreError: the store could not be read.
        """
        top_n = top_n or self.top_n
        now = now or datetime.now(timezone.utc)
        profile = QueryProfile.analyze(query)

        vector = await self.embedder.embed(query)

        try:
            snapshot = await self.index.ensure_ready()
        except EmptyIndexError:
            logger.info("📭 Vector index is empty, no context retrieved")
            return []

        hits = snapshot.search(vector, k=len(snapshot))
        ctx = ScoringContext(
            subject_id=subject_id,
            requesting_user_id=requesting_user_id,
            now=now,
            profile=profile,
            current_session_id=current_session_id,
            is_video_context=is_video_context,
        )
        candidates = self.pipeline.score(hits, ctx)

        logger.info(
            f"🔍 Retrieval: {len(hits)} candidates, {len(candidates)} passed filters "
            f"(subject={subject_id}, user={requesting_user_id}, vague={profile.is_vague})"
        )
        results = await self._assemble(candidates, top_n)
        logger.info(
            f"✅ Retrieved {len(results)} chunks "
            f"({sum(r.is_temporary for r in results)} temporary)"
        )
        return results

    async def retrieve_with_timeout(self, *args, timeout: float | None = None, **kwargs) -> list[RetrievalResult]:
        """`retrieve` bounded by a timeout; a timed-out retrieval yields no context."""
        timeout = timeout if timeout is not None else self.timeout
        try:
            return await asyncio.wait_for(self.retrieve(*args, **kwargs), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"⚠️ Retrieval timed out after {timeout}s, continuing without context")
            return []

    # ── Result assembly ──────────────────────────────────

    @staticmethod
    def _resolve(candidate: Candidate, contents: dict) -> RetrievalResult:
        entry = candidate.entry
        row = contents.get((entry.origin, entry.chunk_id))
        if row is None:
            raise StaleReferenceError(entry.origin.value, entry.chunk_id)
        parent_id, content = row
        return RetrievalResult(
            chunk_id=entry.chunk_id,
            document_id=parent_id,
            content=content,
            similarity=candidate.weighted_similarity,
            origin=entry.origin,
            timestamp=entry.timestamp,
            is_exercise=entry.is_exercise,
            chunk_type=entry.chunk_type,
            question_number=entry.question_number,
        )

    async def _fetch_window(self, window: list[Candidate]) -> dict:
        ids_by_origin: dict[ChunkOrigin, list[int]] = defaultdict(list)
        for candidate in window:
            ids_by_origin[candidate.entry.origin].append(candidate.entry.chunk_id)

        contents = {}
        for origin, ids in ids_by_origin.items():
            rows = await asyncio.to_thread(self.store.fetch_contents, origin, ids)
            for chunk_id, row in rows.items():
                contents[(origin, chunk_id)] = row
        return contents

    async def _assemble(self, candidates: list[Candidate], top_n: int) -> list[RetrievalResult]:
        """Read chunk contents in rank order, dropping chunks deleted since the last build."""
        results: list[RetrievalResult] = []
        stale = 0
        start = 0
        while start < len(candidates) and len(results) < top_n:
            window = candidates[start:start + top_n]
            start += top_n
            contents = await self._fetch_window(window)
            for candidate in window:
                try:
                    results.append(self._resolve(candidate, contents))
                except StaleReferenceError as e:
                    stale += 1
                    logger.debug(f"🗑️ Skipping stale index entry: {e.detail}")
                    continue
                if len(results) >= top_n:
                    break

        if stale:
            logger.info(f"♻️ {stale} stale index entries skipped, index will rebuild on next use")
            self.index.invalidate()
        return results

    # ── Video library ────────────────────────────────────

    async def search_relevant_video(self, query: str, subject_id: str | None = None) -> VideoMatch | None:
        """Best-matching video of the shared library, by its best transcript chunk."""
        transcripts = await asyncio.to_thread(self.store.fetch_transcripts, subject_id)
        if not transcripts:
            logger.info("📭 No videos found in shared library")
            return None

        vector = await self.embedder.embed(query)

        best_by_video: dict[int, VideoMatch] = {}
        for chunk, video in transcripts:
            similarity = cosine_similarity(vector, chunk.embedding)
            current = best_by_video.get(chunk.video_id)
            if current is not None and similarity <= current.similarity:
                continue
            best_by_video[chunk.video_id] = VideoMatch(
                video_id=chunk.video_id,
                file_name=video.get("file_name") or "",
                google_drive_id=video.get("google_drive_id"),
                content_preview=video.get("content_preview") or "",
                transcript_match=chunk.content,
                similarity=similarity,
                uploader_user_id=video.get("user_id"),
            )

        best = max(best_by_video.values(), key=lambda m: m.similarity)
        logger.info(f"🎬 Best video match: '{best.file_name}' (similarity {best.similarity:.3f})")
        return best

    async def search_related_documents(
        self,
        title: str,
        content: str,
        subject_id: str | None = None,
        limit: int = 5,
        requesting_user_id: int | None = None,
    ) -> list[RelatedDocument]:
        """Documents whose chunks resemble a video's title and transcript, one per document."""
        vector = await self.embedder.embed(f"{title} {content}")
        try:
            snapshot = await self.index.ensure_ready()
        except EmptyIndexError:
            return []

        hits = snapshot.search(vector, k=min(RELATED_DOCUMENT_CANDIDATES, len(snapshot)))
        hits = [
            h for h in hits
            if h.entry.origin is not ChunkOrigin.TRANSCRIPT
            and h.similarity >= RELATED_DOCUMENT_THRESHOLD
        ]
        if not hits:
            return []

        contents: dict = {}
        meta: dict = {}
        for origin in (ChunkOrigin.PERMANENT, ChunkOrigin.TEMPORARY):
            ids = [h.entry.chunk_id for h in hits if h.entry.origin is origin]
            if not ids:
                continue
            rows = await asyncio.to_thread(self.store.fetch_contents, origin, ids)
            parent_ids = sorted({parent_id for parent_id, _ in rows.values()})
            docs = await asyncio.to_thread(self.store.fetch_document_meta, origin, parent_ids)
            for chunk_id, row in rows.items():
                contents[(origin, chunk_id)] = row
            for doc_id, doc in docs.items():
                meta[(origin, doc_id)] = doc

        related: list[RelatedDocument] = []
        seen: set[tuple[ChunkOrigin, int]] = set()
        for hit in hits:
            origin = hit.entry.origin
            row = contents.get((origin, hit.entry.chunk_id))
            if row is None:
                continue
            document_id, chunk_content = row
            doc = meta.get((origin, document_id))
            if doc is None or (origin, document_id) in seen:
                continue
            if subject_id and doc.get("subject_id") != subject_id:
                continue
            if (
                origin is ChunkOrigin.TEMPORARY
                and requesting_user_id is not None
                and doc.get("user_id") != requesting_user_id
            ):
                continue
            seen.add((origin, document_id))
            related.append(RelatedDocument(
                document_id=document_id,
                origin=origin,
                file_name=doc.get("file_name") or "",
                content_preview=chunk_content[:PREVIEW_CHARS],
                chunk_match=chunk_content,
                similarity=hit.similarity,
                uploader_user_id=doc.get("user_id"),
            ))
            if len(related) >= limit:
                break

        logger.info(f"📚 Found {len(related)} documents related to video '{title}'")
        return related
