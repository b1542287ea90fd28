"""
Knowledge feature: domain types for chunks and retrieval results.

A chunk comes from one of three origins, each stored in its own table:
  - permanent:  document_chunks            (parent: documents)
  - temporary:  temporary_document_chunks  (parent: temporary_documents)
  - transcript: transcript_chunks          (parent: videos)

The three origins share one shape and differ only in their parent reference
(and, for temporary chunks, the owning chat session).
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import ClassVar


class ChunkOrigin(str, Enum):
    PERMANENT = "permanent"
    TEMPORARY = "temporary"
    TRANSCRIPT = "transcript"


class ChunkType(str, Enum):
    STANDARD = "standard"
    EXERCISE_QUESTION = "exercise_question"
    TRANSCRIPT = "transcript"


@dataclass(frozen=True, kw_only=True)
class BaseChunk:
    id: int
    content: str
    subject_id: str | None
    owner_user_id: int | None
    timestamp: datetime
    embedding: tuple[float, ...] | None = None
    chunk_type: str = ChunkType.STANDARD.value
    question_number: str | None = None
    is_exercise: bool = False
    word_count: int = 0

    origin: ClassVar[ChunkOrigin]

    @property
    def has_embedding(self) -> bool:
        return bool(self.embedding)

    @property
    def parent_id(self) -> int:
        raise NotImplementedError


@dataclass(frozen=True, kw_only=True)
class PermanentChunk(BaseChunk):
    document_id: int

    origin: ClassVar[ChunkOrigin] = ChunkOrigin.PERMANENT

    @property
    def parent_id(self) -> int:
        return self.document_id


@dataclass(frozen=True, kw_only=True)
class TemporaryChunk(BaseChunk):
    document_id: int
    session_id: int | None = None

    origin: ClassVar[ChunkOrigin] = ChunkOrigin.TEMPORARY

    @property
    def parent_id(self) -> int:
        return self.document_id


@dataclass(frozen=True, kw_only=True)
class TranscriptChunk(BaseChunk):
    video_id: int
    chunk_type: str = ChunkType.TRANSCRIPT.value

    origin: ClassVar[ChunkOrigin] = ChunkOrigin.TRANSCRIPT

    @property
    def parent_id(self) -> int:
        return self.video_id


Chunk = PermanentChunk | TemporaryChunk | TranscriptChunk


@dataclass(frozen=True)
class NewChunk:
    """A chunk produced by the chunker, not yet stored (no id, no embedding)."""
    content: str
    chunk_index: int
    word_count: int
    chunk_type: str = ChunkType.STANDARD.value
    question_number: str | None = None


@dataclass(frozen=True)
class PendingEmbedding:
    """A stored chunk that still needs its embedding (backfill input)."""
    origin: ChunkOrigin
    chunk_id: int
    content: str


@dataclass(frozen=True)
class TemporaryDocument:
    id: int
    user_id: int
    file_name: str
    uploaded_at: datetime
    file_path: str | None = None
    subject_id: str | None = None


@dataclass(frozen=True)
class RetrievalResult:
    """One ranked passage returned to the chat layer. Never persisted."""
    chunk_id: int
    document_id: int
    content: str
    similarity: float
    origin: ChunkOrigin
    timestamp: datetime
    is_exercise: bool = False
    chunk_type: str = ChunkType.STANDARD.value
    question_number: str | None = None

    @property
    def is_temporary(self) -> bool:
        return self.origin is ChunkOrigin.TEMPORARY


@dataclass(frozen=True)
class VideoMatch:
    """Best-matching video from the shared transcript library."""
    video_id: int
    file_name: str
    google_drive_id: str | None
    content_preview: str
    transcript_match: str
    similarity: float
    uploader_user_id: int | None


@dataclass(frozen=True)
class RelatedDocument:
    document_id: int
    origin: ChunkOrigin
    file_name: str
    content_preview: str
    chunk_match: str
    similarity: float
    uploader_user_id: int | None


@dataclass
class SweepReport:
    """Outcome of one lifecycle sweep."""
    deleted: int = 0
    files_removed: int = 0
    failed: list[int] = field(default_factory=list)
    index_rebuilt: bool = False
