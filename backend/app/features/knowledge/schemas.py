from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.features.knowledge.models import ChunkOrigin


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    subject_id: Optional[str] = None
    user_id: int
    session_id: Optional[int] = None
    is_video_context: bool = False
    top_n: Optional[int] = Field(None, ge=1, le=50)


class RetrievalResultResponse(BaseModel):
    chunk_id: int
    document_id: int
    content: str
    similarity: float
    origin: ChunkOrigin
    timestamp: datetime
    is_exercise: bool
    chunk_type: str
    question_number: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class IngestRequest(BaseModel):
    origin: ChunkOrigin
    parent_id: int
    file_name: str
    text: str = Field(..., min_length=1)
    user_id: Optional[int] = None
    session_id: Optional[int] = None


class TemporaryUploadRequest(BaseModel):
    user_id: int
    file_name: str
    text: str = Field(..., min_length=1)
    subject_id: Optional[str] = None
    session_id: Optional[int] = None
    file_path: Optional[str] = None
    mime_type: str = "text/plain"


class IngestionResponse(BaseModel):
    parent_id: int
    origin: ChunkOrigin
    is_exercise: bool
    chunk_ids: list[int]
    embedded: int
    pending: int

    model_config = ConfigDict(from_attributes=True)


class DeleteChunksRequest(BaseModel):
    origin: ChunkOrigin
    chunk_ids: list[int] = Field(..., min_length=1)


class SweepReportResponse(BaseModel):
    deleted: int
    files_removed: int
    failed: list[int]
    index_rebuilt: bool

    model_config = ConfigDict(from_attributes=True)


class VideoSearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    subject_id: Optional[str] = None


class VideoMatchResponse(BaseModel):
    video_id: int
    file_name: str
    google_drive_id: Optional[str] = None
    content_preview: str
    transcript_match: str
    similarity: float
    uploader_user_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class RelatedDocumentsRequest(BaseModel):
    title: str
    content: str
    subject_id: Optional[str] = None
    user_id: Optional[int] = None
    limit: int = Field(5, ge=1, le=20)


class RelatedDocumentResponse(BaseModel):
    document_id: int
    origin: ChunkOrigin
    file_name: str
    content_preview: str
    chunk_match: str
    similarity: float
    uploader_user_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)
