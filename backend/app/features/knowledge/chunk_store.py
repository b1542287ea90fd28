"""
Knowledge feature: Chunk store backed by Supabase (PostgREST).

Each origin lives in its own table; they are only unified at read time.
Subject / owner context is joined from the parent document or video row.

All methods are synchronous (supabase-py is sync). Async callers run them
with `asyncio.to_thread` so the event loop is never blocked on the database.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from postgrest.exceptions import APIError
from supabase import Client

from app.core.exceptions import ChunkStoreError, MissingTableError
from app.features.knowledge.models import (
    Chunk,
    ChunkOrigin,
    ChunkType,
    NewChunk,
    PendingEmbedding,
    PermanentChunk,
    TemporaryChunk,
    TemporaryDocument,
    TranscriptChunk,
)

logger = logging.getLogger(__name__)

PAGE_SIZE = 1000
INSERT_BATCH_SIZE = 50

# PostgreSQL "undefined_table" and PostgREST "table not found in schema cache"
_MISSING_TABLE_CODES = {"42P01", "PGRST205"}
_TEMPORARY_DOCUMENT_COLUMNS = "id, user_id, file_name, file_path, subject_id, uploaded_at"


@dataclass(frozen=True)
class OriginTables:
    chunks: str
    parent: str
    parent_fk: str
    parent_columns: str
    timestamp_column: str


ORIGIN_TABLES: dict[ChunkOrigin, OriginTables] = {
    ChunkOrigin.PERMANENT: OriginTables(
        chunks="document_chunks",
        parent="documents",
        parent_fk="document_id",
        parent_columns="subject_id, user_id, is_exercise, uploaded_at",
        timestamp_column="uploaded_at",
    ),
    ChunkOrigin.TEMPORARY: OriginTables(
        chunks="temporary_document_chunks",
        parent="temporary_documents",
        parent_fk="document_id",
        parent_columns="subject_id, user_id, is_exercise, uploaded_at",
        timestamp_column="uploaded_at",
    ),
    ChunkOrigin.TRANSCRIPT: OriginTables(
        chunks="transcript_chunks",
        parent="videos",
        parent_fk="video_id",
        parent_columns="subject_id, user_id, processed_at",
        timestamp_column="processed_at",
    ),
}


# ── Row parsing helpers ──────────────────────────────────

def parse_timestamp(value) -> datetime | None:
    """Parse a PostgREST timestamp; naive values are treated as UTC."""
    if value is None:
        return None
    if isinstance(value, datetime):
        ts = value
    else:
        try:
            ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def parse_embedding(value) -> tuple[float, ...] | None:
    """Parse the serialized float array stored in the `embedding` column.

    Returns None for NULL, empty or malformed values.
    """
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except (ValueError, TypeError):
            return None
    if not isinstance(value, (list, tuple)) or not value:
        return None
    try:
        return tuple(float(x) for x in value)
    except (ValueError, TypeError):
        return None


def row_to_chunk(origin: ChunkOrigin, row: dict) -> Chunk:
    """Build the typed chunk for one joined row of an origin's chunk table."""
    tables = ORIGIN_TABLES[origin]
    parent = row.get(tables.parent) or {}
    timestamp = (
        parse_timestamp(parent.get(tables.timestamp_column))
        or parse_timestamp(row.get("created_at"))
        or datetime.fromtimestamp(0, tz=timezone.utc)
    )
    common = dict(
        id=row["id"],
        content=row.get("content") or "",
        subject_id=parent.get("subject_id"),
        timestamp=timestamp,
        embedding=parse_embedding(row.get("embedding")),
        question_number=_as_str(row.get("question_number")),
        word_count=row.get("word_count") or 0,
    )

    match origin:
        case ChunkOrigin.PERMANENT:
            return PermanentChunk(
                **common,
                document_id=row["document_id"],
                owner_user_id=parent.get("user_id"),
                is_exercise=bool(parent.get("is_exercise")),
                chunk_type=row.get("chunk_type") or ChunkType.STANDARD.value,
            )
        case ChunkOrigin.TEMPORARY:
            return TemporaryChunk(
                **common,
                document_id=row["document_id"],
                session_id=row.get("session_id"),
                owner_user_id=row.get("user_id") or parent.get("user_id"),
                is_exercise=bool(parent.get("is_exercise")),
                chunk_type=row.get("chunk_type") or ChunkType.STANDARD.value,
            )
        case ChunkOrigin.TRANSCRIPT:
            return TranscriptChunk(
                **common,
                video_id=row["video_id"],
                owner_user_id=parent.get("user_id"),
            )


def _as_str(value) -> str | None:
    return None if value is None else str(value)


class ChunkStore:
    """Durable storage of chunks across the three origins."""

    def __init__(self, db: Client):
        self.db = db

    # ── Plumbing ─────────────────────────────────────────

    def _execute(self, query, table: str):
        try:
            return query.execute()
        except APIError as e:
            if e.code in _MISSING_TABLE_CODES:
                raise MissingTableError(table, e.message or "")
            raise ChunkStoreError(f"{table}: {e.message or e}") from e
        except Exception as e:
            raise ChunkStoreError(f"{table}: {e}") from e

    def _fetch_all(self, build: Callable, table: str) -> list[dict]:
        """Read every row of a query, one PostgREST page at a time."""
        rows: list[dict] = []
        start = 0
        while True:
            res = self._execute(build().range(start, start + PAGE_SIZE - 1), table)
            batch = res.data or []
            rows.extend(batch)
            if len(batch) < PAGE_SIZE:
                return rows
            start += PAGE_SIZE

    # ── Writes ───────────────────────────────────────────

    def insert_chunks(
        self,
        origin: ChunkOrigin,
        parent_id: int,
        chunks: list[NewChunk],
        user_id: int | None = None,
        session_id: int | None = None,
    ) -> list[int]:
        """Insert chunks without embeddings. Returns the new chunk ids in order."""
        tables = ORIGIN_TABLES[origin]
        rows = []
        for chunk in chunks:
            row = {
                tables.parent_fk: parent_id,
                "chunk_index": chunk.chunk_index,
                "content": chunk.content,
                "word_count": chunk.word_count,
            }
            if origin is not ChunkOrigin.TRANSCRIPT:
                row["chunk_type"] = chunk.chunk_type
                row["question_number"] = chunk.question_number
            if origin is ChunkOrigin.TEMPORARY:
                row["user_id"] = user_id
                row["session_id"] = session_id
            rows.append(row)

        ids: list[int] = []
        for i in range(0, len(rows), INSERT_BATCH_SIZE):
            res = self._execute(
                self.db.table(tables.chunks).insert(rows[i:i + INSERT_BATCH_SIZE]),
                tables.chunks,
            )
            ids.extend(r["id"] for r in res.data or [])
        return ids

    def attach_embedding(
        self, origin: ChunkOrigin, chunk_id: int, vector: list[float], model_name: str
    ) -> None:
        table = ORIGIN_TABLES[origin].chunks
        self._execute(
            self.db.table(table)
            .update({"embedding": json.dumps(vector), "embedding_model": model_name})
            .eq("id", chunk_id),
            table,
        )

    def set_exercise_flag(self, origin: ChunkOrigin, parent_id: int, is_exercise: bool) -> None:
        """Record exercise detection on the parent document (videos have no flag)."""
        if origin is ChunkOrigin.TRANSCRIPT:
            return
        table = ORIGIN_TABLES[origin].parent
        self._execute(
            self.db.table(table).update({"is_exercise": is_exercise}).eq("id", parent_id),
            table,
        )

    def delete_by_document(self, origin: ChunkOrigin, parent_id: int) -> int:
        tables = ORIGIN_TABLES[origin]
        res = self._execute(
            self.db.table(tables.chunks).delete().eq(tables.parent_fk, parent_id),
            tables.chunks,
        )
        return len(res.data or [])

    def delete_by_ids(self, origin: ChunkOrigin, chunk_ids: list[int]) -> int:
        if not chunk_ids:
            return 0
        table = ORIGIN_TABLES[origin].chunks
        res = self._execute(self.db.table(table).delete().in_("id", chunk_ids), table)
        return len(res.data or [])

    # ── Temporary documents ──────────────────────────────

    def create_temporary_document(
        self,
        user_id: int,
        file_name: str,
        file_size: int,
        mime_type: str,
        subject_id: str | None = None,
        file_path: str | None = None,
    ) -> int:
        table = ORIGIN_TABLES[ChunkOrigin.TEMPORARY].parent
        res = self._execute(
            self.db.table(table).insert({
                "user_id": user_id,
                "file_name": file_name,
                "file_size": file_size,
                "mime_type": mime_type,
                "subject_id": subject_id,
                "file_path": file_path,
                "status": "processed",
            }),
            table,
        )
        return res.data[0]["id"]

    @staticmethod
    def _temporary_document(row: dict) -> TemporaryDocument:
        return TemporaryDocument(
            id=row["id"],
            user_id=row.get("user_id"),
            file_name=row.get("file_name") or "",
            file_path=row.get("file_path"),
            subject_id=row.get("subject_id"),
            uploaded_at=parse_timestamp(row.get("uploaded_at"))
            or datetime.fromtimestamp(0, tz=timezone.utc),
        )

    def list_temporary_documents(self, older_than: datetime | None = None) -> list[TemporaryDocument]:
        """List temporary documents, optionally only those uploaded before a cutoff."""
        table = ORIGIN_TABLES[ChunkOrigin.TEMPORARY].parent

        def build():
            query = self.db.table(table).select(_TEMPORARY_DOCUMENT_COLUMNS)
            if older_than is not None:
                query = query.lt("uploaded_at", older_than.isoformat())
            return query.order("id")

        return [self._temporary_document(row) for row in self._fetch_all(build, table)]

    def get_temporary_document(self, document_id: int) -> TemporaryDocument | None:
        table = ORIGIN_TABLES[ChunkOrigin.TEMPORARY].parent
        res = self._execute(
            self.db.table(table).select(_TEMPORARY_DOCUMENT_COLUMNS).eq("id", document_id).limit(1),
            table,
        )
        rows = res.data or []
        return self._temporary_document(rows[0]) if rows else None

    def delete_temporary_document(self, document_id: int) -> int:
        """Delete one temporary document and its chunks. Returns deleted chunk count."""
        deleted = self.delete_by_document(ChunkOrigin.TEMPORARY, document_id)
        table = ORIGIN_TABLES[ChunkOrigin.TEMPORARY].parent
        self._execute(self.db.table(table).delete().eq("id", document_id), table)
        return deleted

    def delete_all_temporary_chunks(self) -> int:
        table = ORIGIN_TABLES[ChunkOrigin.TEMPORARY].chunks
        # PostgREST refuses an unfiltered DELETE
        res = self._execute(self.db.table(table).delete().gte("id", 0), table)
        return len(res.data or [])

    def delete_all_temporary_documents(self) -> int:
        table = ORIGIN_TABLES[ChunkOrigin.TEMPORARY].parent
        res = self._execute(self.db.table(table).delete().gte("id", 0), table)
        return len(res.data or [])

    # ── Reads ────────────────────────────────────────────

    def fetch_indexable(self, origin: ChunkOrigin) -> list[Chunk]:
        """All chunks of one origin that carry an embedding, with parent context."""
        tables = ORIGIN_TABLES[origin]
        columns = "id, content, embedding, word_count, created_at, " + tables.parent_fk
        if origin is not ChunkOrigin.TRANSCRIPT:
            columns += ", chunk_type, question_number"
        if origin is ChunkOrigin.TEMPORARY:
            columns += ", user_id, session_id"
        columns += f", {tables.parent}!inner({tables.parent_columns})"

        def build():
            query = self.db.table(tables.chunks).select(columns).not_.is_("embedding", "null")
            if origin is ChunkOrigin.TRANSCRIPT:
                query = query.not_.is_(f"{tables.parent}.processed_at", "null")
            return query.order("id")

        chunks: list[Chunk] = []
        for row in self._fetch_all(build, tables.chunks):
            chunk = row_to_chunk(origin, row)
            if not chunk.has_embedding:
                logger.error(f"❌ Invalid embedding format for {origin.value} chunk {row.get('id')}")
                continue
            chunks.append(chunk)
        return chunks

    def fetch_contents(self, origin: ChunkOrigin, chunk_ids: list[int]) -> dict[int, tuple[int, str]]:
        """Re-read chunks by id. Returns {chunk_id: (parent_id, content)}; missing ids are absent."""
        if not chunk_ids:
            return {}
        tables = ORIGIN_TABLES[origin]
        res = self._execute(
            self.db.table(tables.chunks)
            .select(f"id, {tables.parent_fk}, content")
            .in_("id", chunk_ids),
            tables.chunks,
        )
        return {r["id"]: (r[tables.parent_fk], r.get("content") or "") for r in res.data or []}

    def fetch_document_meta(self, origin: ChunkOrigin, document_ids: list[int]) -> dict[int, dict]:
        """File name / uploader / subject of parent documents, keyed by id."""
        if not document_ids or origin is ChunkOrigin.TRANSCRIPT:
            return {}
        table = ORIGIN_TABLES[origin].parent
        res = self._execute(
            self.db.table(table).select("id, file_name, user_id, subject_id").in_("id", document_ids),
            table,
        )
        return {r["id"]: r for r in res.data or []}

    def fetch_transcripts(self, subject_id: str | None = None) -> list[tuple[TranscriptChunk, dict]]:
        """Transcript chunks of the shared video library with their video metadata."""
        tables = ORIGIN_TABLES[ChunkOrigin.TRANSCRIPT]
        columns = (
            "id, video_id, content, embedding, word_count, created_at, "
            "videos!inner(subject_id, user_id, processed_at, file_name, google_drive_id, content_preview)"
        )

        def build():
            query = self.db.table(tables.chunks).select(columns).not_.is_("embedding", "null")
            if subject_id:
                query = query.eq("videos.subject_id", subject_id)
            return query.order("id")

        hits = []
        for row in self._fetch_all(build, tables.chunks):
            chunk = row_to_chunk(ChunkOrigin.TRANSCRIPT, row)
            if chunk.has_embedding:
                hits.append((chunk, row.get("videos") or {}))
        return hits

    def list_missing_embeddings(self, origin: ChunkOrigin, limit: int = 100) -> list[PendingEmbedding]:
        table = ORIGIN_TABLES[origin].chunks
        res = self._execute(
            self.db.table(table)
            .select("id, content")
            .is_("embedding", "null")
            .order("id")
            .limit(limit),
            table,
        )
        return [PendingEmbedding(origin, r["id"], r.get("content") or "") for r in res.data or []]

    # ── Statistics ───────────────────────────────────────

    def _count(self, table: str, apply=None) -> int:
        query = self.db.table(table).select("id", count="exact", head=True)
        if apply is not None:
            query = apply(query)
        res = self._execute(query, table)
        return res.count or 0

    def embedding_stats(self) -> dict[str, dict[str, int]]:
        stats = {}
        for origin, tables in ORIGIN_TABLES.items():
            total = self._count(tables.chunks)
            embedded = self._count(tables.chunks, lambda q: q.not_.is_("embedding", "null"))
            stats[origin.value] = {
                "total_chunks": total,
                "chunks_with_embeddings": embedded,
                "chunks_without_embeddings": total - embedded,
            }
        return stats

    def temporary_stats(self, now: datetime, retention: timedelta) -> dict[str, int]:
        table = ORIGIN_TABLES[ChunkOrigin.TEMPORARY].parent
        expired_cutoff = (now - retention).isoformat()
        hour_cutoff = (now - timedelta(hours=1)).isoformat()
        return {
            "total_temporary_docs": self._count(table),
            "expired_temporary_docs": self._count(table, lambda q: q.lt("uploaded_at", expired_cutoff)),
            "temporary_docs_older_than_1_hour": self._count(
                table, lambda q: q.lt("uploaded_at", hour_cutoff)
            ),
        }
