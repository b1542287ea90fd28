"""
Knowledge feature: in-memory flat vector index.

The index is a disposable read cache derived from the chunk store. It is
rebuilt wholesale (never patched in place): a build produces a new immutable
IndexSnapshot and only then replaces the current reference, so a concurrent
search always sees either the old or the new snapshot, never a half-built one.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

import numpy as np

from app.core.exceptions import EmbeddingDimensionError, EmptyIndexError
from app.features.knowledge.models import Chunk, ChunkOrigin, TemporaryChunk

logger = logging.getLogger(__name__)


class IndexState(str, Enum):
    UNINITIALIZED = "uninitialized"
    BUILDING = "building"
    READY = "ready"


@dataclass(frozen=True)
class IndexEntry:
    """Metadata for one row of the snapshot matrix."""
    origin: ChunkOrigin
    chunk_id: int
    parent_id: int
    subject_id: str | None
    owner_user_id: int | None
    session_id: int | None
    is_exercise: bool
    chunk_type: str
    question_number: str | None
    timestamp: datetime

    @classmethod
    def from_chunk(cls, chunk: Chunk) -> "IndexEntry":
        return cls(
            origin=chunk.origin,
            chunk_id=chunk.id,
            parent_id=chunk.parent_id,
            subject_id=chunk.subject_id,
            owner_user_id=chunk.owner_user_id,
            session_id=chunk.session_id if isinstance(chunk, TemporaryChunk) else None,
            is_exercise=chunk.is_exercise,
            chunk_type=chunk.chunk_type,
            question_number=chunk.question_number,
            timestamp=chunk.timestamp,
        )


@dataclass(frozen=True)
class SearchHit:
    entry: IndexEntry
    distance: float
    similarity: float


class IndexSnapshot:
    """Immutable flat L2 index: a float32 matrix plus one entry per row."""

    def __init__(self, vectors: np.ndarray, entries: tuple[IndexEntry, ...], built_at: datetime):
        self._vectors = vectors
        self._vectors.setflags(write=False)
        self.entries = entries
        self.built_at = built_at

    @property
    def dimension(self) -> int:
        return self._vectors.shape[1]

    def __len__(self) -> int:
        return len(self.entries)

    def search(self, vector, k: int) -> list[SearchHit]:
        """Return the k nearest entries by squared L2 distance, nearest first."""
        query = np.asarray(vector, dtype=np.float32)
        if query.ndim != 1 or query.shape[0] != self.dimension:
            raise EmbeddingDimensionError(self.dimension, int(query.shape[-1]) if query.ndim else 0)
        if k <= 0 or not self.entries:
            return []

        diff = self._vectors - query
        distances = np.einsum("ij,ij->i", diff, diff)
        k = min(k, len(self.entries))
        if k < len(self.entries):
            candidates = np.argpartition(distances, k - 1)[:k]
        else:
            candidates = np.arange(len(self.entries))
        # stable sort keeps most-recent-first order between equal distances
        order = candidates[np.argsort(distances[candidates], kind="stable")]

        hits = []
        for i in order:
            distance = float(distances[i])
            hits.append(SearchHit(
                entry=self.entries[i],
                distance=distance,
                similarity=max(0.0, 1.0 - distance / 2.0),
            ))
        return hits


class VectorIndex:
    """Lazily rebuilt vector index over every embedded chunk of all origins.

    States: UNINITIALIZED → BUILDING → READY. `invalidate()` is called after
    every chunk-store mutation and sends the index back to UNINITIALIZED; the
    next `ensure_ready()` rebuilds it.
    """

    def __init__(self, store, dimensions: int | None = None):
        self.store = store
        self.pinned_dimension = dimensions
        self._snapshot: IndexSnapshot | None = None
        self._state = IndexState.UNINITIALIZED
        self._generation = 0

    @property
    def state(self) -> IndexState:
        return self._state

    @property
    def size(self) -> int:
        snapshot = self._snapshot
        return len(snapshot) if snapshot is not None else 0

    @property
    def snapshot(self) -> IndexSnapshot | None:
        return self._snapshot

    def invalidate(self) -> None:
        self._generation += 1
        self._state = IndexState.UNINITIALIZED
        logger.debug(f"♻️ Vector index invalidated (generation {self._generation})")

    async def _load_chunks(self) -> list[Chunk]:
        chunks: list[Chunk] = []
        for origin in ChunkOrigin:
            chunks.extend(await asyncio.to_thread(self.store.fetch_indexable, origin))
        return chunks

    async def build(self) -> IndexSnapshot:
        """Rebuild the index from the chunk store and swap it in.

        Raises:
            EmptyIndexError: no chunk has an embedding (the snapshot is cleared).
            EmbeddingDimensionError: stored vectors disagree on dimension.
            ChunkStoreError: the store could not be read.
        """
        generation = self._generation
        self._state = IndexState.BUILDING
        logger.info("🏗️ Building vector index...")

        try:
            chunks = await self._load_chunks()
        except Exception:
            self._state = IndexState.UNINITIALIZED
            raise

        # most recent first; ties broken by origin then id so builds are deterministic
        chunks.sort(key=lambda c: (-c.timestamp.timestamp(), c.origin.value, c.id))

        seen: set[tuple[ChunkOrigin, int]] = set()
        entries: list[IndexEntry] = []
        vectors: list[tuple[float, ...]] = []
        for chunk in chunks:
            key = (chunk.origin, chunk.id)
            if key in seen or not chunk.has_embedding:
                continue
            seen.add(key)
            entries.append(IndexEntry.from_chunk(chunk))
            vectors.append(chunk.embedding)

        if not entries:
            self._snapshot = None
            self._state = IndexState.UNINITIALIZED
            logger.warning("⚠️ No embedded chunks found, vector index is empty")
            raise EmptyIndexError()

        expected = self.pinned_dimension or len(vectors[0])
        for vector in vectors:
            if len(vector) != expected:
                self._state = IndexState.UNINITIALIZED
                raise EmbeddingDimensionError(expected, len(vector))

        snapshot = IndexSnapshot(
            vectors=np.asarray(vectors, dtype=np.float32),
            entries=tuple(entries),
            built_at=datetime.now(timezone.utc),
        )
        self._snapshot = snapshot

        if generation == self._generation:
            self._state = IndexState.READY
        else:
            # invalidated while building: serve this snapshot, rebuild on next use
            self._state = IndexState.UNINITIALIZED

        by_origin = {o.value: sum(1 for e in entries if e.origin is o) for o in ChunkOrigin}
        logger.info(
            f"✅ Vector index built: {len(entries)} vectors "
            f"(permanent={by_origin['permanent']}, temporary={by_origin['temporary']}, "
            f"transcript={by_origin['transcript']})"
        )
        return snapshot

    async def ensure_ready(self) -> IndexSnapshot:
        snapshot = self._snapshot
        if self._state is IndexState.READY and snapshot is not None:
            return snapshot
        return await self.build()

    def search(self, vector, k: int) -> list[SearchHit]:
        snapshot = self._snapshot
        if snapshot is None:
            return []
        return snapshot.search(vector, k)
