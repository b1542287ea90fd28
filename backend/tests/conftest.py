"""
Shared fixtures: in-memory chunk store and deterministic LangChain fakes.
"""

import asyncio
import itertools
import math
import os
import zlib
from datetime import datetime, timedelta, timezone

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel

os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")

from app.config import Settings
from app.core.exceptions import ChunkStoreError, MissingTableError
from app.core.services import assemble_services
from app.features.knowledge.chunk_store import ORIGIN_TABLES, row_to_chunk
from app.features.knowledge.embedding import EmbeddingProvider
from app.features.knowledge.models import ChunkOrigin, PendingEmbedding, TemporaryDocument
from app.features.tutor.model_router import ModelBackend, ModelRouter

DIM = 8
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def unit(*components: float) -> list[float]:
    """A normalized DIM-length vector from its leading components."""
    vec = list(components) + [0.0] * (DIM - len(components))
    norm = math.sqrt(sum(x * x for x in vec)) or 1.0
    return [x / norm for x in vec]


# ── Embeddings ───────────────────────────────────────────

class FakeEmbeddings:
    """Deterministic embeddings: fixed vectors for known texts, hashed bag-of-words otherwise."""

    def __init__(self, dim: int = DIM, table: dict | None = None):
        self.dim = dim
        self.table = dict(table or {})
        self.calls: list[str] = []
        self.fail = False
        self.delay = 0.0

    def vector_for(self, text: str) -> list[float]:
        if text in self.table:
            return list(self.table[text])
        vec = [0.0] * self.dim
        for token in text.lower().split():
            vec[zlib.crc32(token.encode("utf-8")) % self.dim] += 1.0
        norm = math.sqrt(sum(x * x for x in vec)) or 1.0
        return [x / norm for x in vec]

    async def aembed_query(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("quota exceeded")
        return self.vector_for(text)

    async def aembed_documents(self, texts: list[str]) -> list[list[float]]:
        self.calls.extend(texts)
        if self.fail:
            raise RuntimeError("quota exceeded")
        return [self.vector_for(t) for t in texts]


# ── Chat models ──────────────────────────────────────────

class FailingChatModel:
    def __init__(self, error: Exception | None = None):
        self.error = error or RuntimeError("backend unavailable")
        self.calls = 0

    async def ainvoke(self, messages, **kwargs):
        self.calls += 1
        raise self.error


def fake_chat(*responses: str) -> FakeListChatModel:
    return FakeListChatModel(responses=list(responses) or ["ok"])


# ── Chunk store ──────────────────────────────────────────

class InMemoryChunkStore:
    """Same surface as ChunkStore, rows shaped like PostgREST responses."""

    def __init__(self):
        self.parents: dict[ChunkOrigin, dict[int, dict]] = {o: {} for o in ChunkOrigin}
        self.chunks: dict[ChunkOrigin, dict[int, dict]] = {o: {} for o in ChunkOrigin}
        self._ids = itertools.count(1)
        self.missing_tables = False
        self.failing_documents: set[int] = set()
        self.fetch_hook = None

    def _check(self, origin: ChunkOrigin | None = None):
        if self.missing_tables:
            table = ORIGIN_TABLES[origin or ChunkOrigin.TEMPORARY].parent
            raise MissingTableError(table)

    # test helpers

    def add_parent(
        self,
        origin: ChunkOrigin,
        subject_id: str | None = "MATH_001",
        user_id: int | None = 1,
        uploaded_at: datetime = NOW,
        is_exercise: bool = False,
        file_name: str = "doc.pdf",
        file_path: str | None = None,
        **extra,
    ) -> int:
        parent_id = next(self._ids)
        tables = ORIGIN_TABLES[origin]
        self.parents[origin][parent_id] = {
            "id": parent_id,
            "subject_id": subject_id,
            "user_id": user_id,
            tables.timestamp_column: uploaded_at.isoformat(),
            "is_exercise": is_exercise,
            "file_name": file_name,
            "file_path": file_path,
            **extra,
        }
        return parent_id

    def add_chunk(
        self,
        origin: ChunkOrigin,
        parent_id: int,
        content: str,
        embedding: list[float] | None,
        session_id: int | None = None,
        chunk_type: str = "standard",
        question_number: str | None = None,
    ) -> int:
        chunk_id = next(self._ids)
        self.chunks[origin][chunk_id] = {
            "id": chunk_id,
            ORIGIN_TABLES[origin].parent_fk: parent_id,
            "content": content,
            "embedding": None if embedding is None else list(embedding),
            "word_count": len(content.split()),
            "chunk_type": chunk_type,
            "question_number": question_number,
            "user_id": self.parents[origin][parent_id].get("user_id"),
            "session_id": session_id,
            "created_at": NOW.isoformat(),
        }
        return chunk_id

    def _row(self, origin: ChunkOrigin, chunk: dict) -> dict:
        tables = ORIGIN_TABLES[origin]
        row = dict(chunk)
        row[tables.parent] = self.parents[origin].get(chunk[tables.parent_fk]) or {}
        return row

    # ChunkStore surface

    def fetch_indexable(self, origin: ChunkOrigin):
        self._check(origin)
        if self.fetch_hook is not None:
            self.fetch_hook(origin)
        return [
            row_to_chunk(origin, self._row(origin, c))
            for c in self.chunks[origin].values()
            if c["embedding"] is not None
        ]

    def fetch_contents(self, origin: ChunkOrigin, chunk_ids):
        fk = ORIGIN_TABLES[origin].parent_fk
        return {
            cid: (self.chunks[origin][cid][fk], self.chunks[origin][cid]["content"])
            for cid in chunk_ids
            if cid in self.chunks[origin]
        }

    def fetch_document_meta(self, origin: ChunkOrigin, document_ids):
        return {d: self.parents[origin][d] for d in document_ids if d in self.parents[origin]}

    def fetch_transcripts(self, subject_id=None):
        hits = []
        for c in self.chunks[ChunkOrigin.TRANSCRIPT].values():
            video = self.parents[ChunkOrigin.TRANSCRIPT][c["video_id"]]
            if c["embedding"] is None or (subject_id and video["subject_id"] != subject_id):
                continue
            hits.append((row_to_chunk(ChunkOrigin.TRANSCRIPT, self._row(ChunkOrigin.TRANSCRIPT, c)), video))
        return hits

    def insert_chunks(self, origin, parent_id, chunks, user_id=None, session_id=None):
        ids = []
        for chunk in chunks:
            cid = self.add_chunk(
                origin, parent_id, chunk.content, None, session_id=session_id,
                chunk_type=chunk.chunk_type, question_number=chunk.question_number,
            )
            if user_id is not None:
                self.chunks[origin][cid]["user_id"] = user_id
            ids.append(cid)
        return ids

    def attach_embedding(self, origin, chunk_id, vector, model_name):
        self.chunks[origin][chunk_id]["embedding"] = list(vector)
        self.chunks[origin][chunk_id]["embedding_model"] = model_name

    def set_exercise_flag(self, origin, parent_id, is_exercise):
        if origin is not ChunkOrigin.TRANSCRIPT:
            self.parents[origin][parent_id]["is_exercise"] = is_exercise

    def delete_by_document(self, origin, parent_id):
        fk = ORIGIN_TABLES[origin].parent_fk
        ids = [cid for cid, c in self.chunks[origin].items() if c[fk] == parent_id]
        for cid in ids:
            del self.chunks[origin][cid]
        return len(ids)

    def delete_by_ids(self, origin, chunk_ids):
        ids = [cid for cid in chunk_ids if cid in self.chunks[origin]]
        for cid in ids:
            del self.chunks[origin][cid]
        return len(ids)

    def create_temporary_document(self, user_id, file_name, file_size, mime_type, subject_id=None, file_path=None):
        return self.add_parent(
            ChunkOrigin.TEMPORARY, subject_id=subject_id, user_id=user_id,
            uploaded_at=datetime.now(timezone.utc), file_name=file_name, file_path=file_path,
        )

    def list_temporary_documents(self, older_than=None):
        self._check()
        docs = []
        for p in self.parents[ChunkOrigin.TEMPORARY].values():
            uploaded_at = datetime.fromisoformat(p["uploaded_at"])
            if older_than is None or uploaded_at < older_than:
                docs.append(TemporaryDocument(
                    id=p["id"], user_id=p["user_id"], file_name=p["file_name"],
                    uploaded_at=uploaded_at, file_path=p["file_path"], subject_id=p["subject_id"],
                ))
        return docs

    def get_temporary_document(self, document_id):
        self._check()
        return next((d for d in self.list_temporary_documents() if d.id == document_id), None)

    def delete_temporary_document(self, document_id):
        if document_id in self.failing_documents:
            raise ChunkStoreError("connection reset")
        deleted = self.delete_by_document(ChunkOrigin.TEMPORARY, document_id)
        self.parents[ChunkOrigin.TEMPORARY].pop(document_id, None)
        return deleted

    def delete_all_temporary_chunks(self):
        self._check()
        n = len(self.chunks[ChunkOrigin.TEMPORARY])
        self.chunks[ChunkOrigin.TEMPORARY].clear()
        return n

    def delete_all_temporary_documents(self):
        self._check()
        n = len(self.parents[ChunkOrigin.TEMPORARY])
        self.parents[ChunkOrigin.TEMPORARY].clear()
        return n

    def list_missing_embeddings(self, origin, limit=100):
        self._check(origin)
        pending = [
            PendingEmbedding(origin, cid, c["content"])
            for cid, c in sorted(self.chunks[origin].items())
            if c["embedding"] is None
        ]
        return pending[:limit]

    def embedding_stats(self):
        return {
            o.value: {
                "total_chunks": len(self.chunks[o]),
                "chunks_with_embeddings": sum(c["embedding"] is not None for c in self.chunks[o].values()),
            }
            for o in ChunkOrigin
        }

    def temporary_stats(self, now, retention):
        self._check()
        uploaded = [datetime.fromisoformat(p["uploaded_at"]) for p in self.parents[ChunkOrigin.TEMPORARY].values()]
        return {
            "total_temporary_docs": len(uploaded),
            "expired_temporary_docs": sum(u < now - retention for u in uploaded),
            "temporary_docs_older_than_1_hour": sum(u < now - timedelta(hours=1) for u in uploaded),
        }


# ── Fixtures ─────────────────────────────────────────────

@pytest.fixture
def store():
    return InMemoryChunkStore()


@pytest.fixture
def embeddings():
    return FakeEmbeddings()


@pytest.fixture
def embedder(embeddings):
    return EmbeddingProvider(embeddings, model_name="fake-embedding", dimensions=DIM, timeout=5)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        SUPABASE_URL="http://localhost:54321",
        SUPABASE_KEY="test-anon-key",
        EMBEDDING_DIMENSIONS=DIM,
        UPLOAD_DIR=str(tmp_path / "uploads"),
        CLEAN_SHUTDOWN_MARKER=str(tmp_path / ".clean_shutdown"),
    )


@pytest.fixture
def fast_llm():
    return fake_chat("Đây là câu trả lời nhanh.")


@pytest.fixture
def deep_llm():
    return fake_chat("Đây là lời giải chi tiết.")


@pytest.fixture
def model_router(fast_llm, deep_llm):
    return ModelRouter(
        fast=ModelBackend("deepseek-chat", fast_llm, timeout=5),
        deep=ModelBackend("deepseek-reasoner", deep_llm, timeout=5),
    )


@pytest.fixture
def services(settings, store, embedder, model_router):
    return assemble_services(settings, store=store, embedder=embedder, router=model_router)
