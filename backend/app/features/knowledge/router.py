import asyncio
import logging

from fastapi import APIRouter, Depends

from app.core.dependencies import get_services
from app.core.exceptions import (
    AppBaseError,
    ChunkStoreError,
    EmbeddingProviderError,
    EmptyIndexError,
    app_error_to_http,
)
from app.core.services import ServiceContainer
from app.background.embedding_tasks import backfill_missing_embeddings
from app.features.knowledge.models import ChunkOrigin
from app.features.knowledge.schemas import (
    DeleteChunksRequest,
    IngestionResponse,
    IngestRequest,
    RelatedDocumentResponse,
    RelatedDocumentsRequest,
    RetrievalResultResponse,
    SearchRequest,
    SweepReportResponse,
    TemporaryUploadRequest,
    VideoMatchResponse,
    VideoSearchRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Knowledge Base"])


def _http_error(e: AppBaseError):
    if isinstance(e, EmbeddingProviderError):
        return app_error_to_http(e, status_code=502)
    if isinstance(e, ChunkStoreError):
        return app_error_to_http(e, status_code=503)
    return app_error_to_http(e)


@router.post("/search", response_model=list[RetrievalResultResponse])
async def search(body: SearchRequest, services: ServiceContainer = Depends(get_services)):
    """
    Tìm các đoạn tài liệu liên quan nhất cho một câu hỏi.
    - Ưu tiên tài liệu tạm vừa upload trong phiên chat.
    - Lọc theo môn học và quyền sở hữu.
    """
    try:
        results = await services.retrieval.retrieve(
            body.query,
            body.subject_id,
            body.user_id,
            current_session_id=body.session_id,
            is_video_context=body.is_video_context,
            top_n=body.top_n,
        )
    except AppBaseError as e:
        raise _http_error(e)
    return [RetrievalResultResponse.model_validate(r) for r in results]


@router.post("/ingest", response_model=IngestionResponse)
async def ingest(body: IngestRequest, services: ServiceContainer = Depends(get_services)):
    """Băm nhỏ và nhúng vector cho văn bản đã trích xuất của một tài liệu / video có sẵn."""
    try:
        report = await services.ingestion.ingest(
            body.origin, body.parent_id, body.file_name, body.text,
            user_id=body.user_id, session_id=body.session_id,
        )
    except AppBaseError as e:
        raise _http_error(e)
    return IngestionResponse.model_validate(report)


@router.post("/temporary", response_model=IngestionResponse)
async def upload_temporary(body: TemporaryUploadRequest, services: ServiceContainer = Depends(get_services)):
    """Đăng ký tài liệu tạm (upload trong lúc chat, tự xóa sau 2 giờ) và nhúng vector."""
    try:
        report = await services.ingestion.upload_temporary(
            body.user_id, body.file_name, body.text,
            subject_id=body.subject_id,
            session_id=body.session_id,
            file_path=body.file_path,
            mime_type=body.mime_type,
        )
    except AppBaseError as e:
        raise _http_error(e)
    return IngestionResponse.model_validate(report)


@router.post("/rebuild")
async def rebuild_index(services: ServiceContainer = Depends(get_services)):
    """Dựng lại vector index từ toàn bộ chunks đã có embedding."""
    services.index.invalidate()
    try:
        await services.index.build()
    except EmptyIndexError:
        pass
    except AppBaseError as e:
        raise _http_error(e)
    return {"vectors": services.index.size, "state": services.index.state.value}


@router.post("/backfill")
async def backfill(services: ServiceContainer = Depends(get_services)):
    """Nhúng vector cho các chunks còn thiếu embedding."""
    return await backfill_missing_embeddings(
        services, services.settings.EMBEDDING_BACKFILL_BATCH_SIZE
    )


@router.get("/stats")
async def stats(services: ServiceContainer = Depends(get_services)):
    try:
        embedding_stats = await asyncio.to_thread(services.store.embedding_stats)
    except AppBaseError as e:
        raise _http_error(e)
    return {
        "embeddings": embedding_stats,
        "index": {
            "state": services.index.state.value,
            "vectors": services.index.size,
            "embedding_model": services.embedder.model_name,
            "dimensions": services.embedder.dimensions,
        },
    }


@router.post("/cleanup", response_model=SweepReportResponse)
async def cleanup_expired(services: ServiceContainer = Depends(get_services)):
    """Xóa ngay các tài liệu tạm đã quá hạn."""
    report = await services.lifecycle.sweep_expired()
    return SweepReportResponse.model_validate(report)


@router.get("/cleanup/stats")
async def cleanup_stats(services: ServiceContainer = Depends(get_services)):
    try:
        return await services.lifecycle.temporary_stats()
    except AppBaseError as e:
        raise _http_error(e)


@router.post("/crash-cleanup", response_model=SweepReportResponse)
async def crash_cleanup(services: ServiceContainer = Depends(get_services)):
    """Xóa TOÀN BỘ tài liệu tạm (dùng khi phục hồi sau sự cố)."""
    report = await services.lifecycle.recover_after_crash()
    return SweepReportResponse.model_validate(report)


@router.delete("/documents/{origin}/{document_id}")
async def delete_document(
    origin: ChunkOrigin,
    document_id: int,
    services: ServiceContainer = Depends(get_services),
):
    """Xóa chunks của một tài liệu (tài liệu tạm: xóa luôn file upload và bản ghi tài liệu)."""
    try:
        if origin is ChunkOrigin.TEMPORARY:
            deleted = await services.lifecycle.delete_temporary(document_id)
        else:
            deleted = await asyncio.to_thread(services.store.delete_by_document, origin, document_id)
            services.index.invalidate()
    except AppBaseError as e:
        raise _http_error(e)
    logger.info(f"🗑️ Deleted {deleted} chunks of {origin.value} document {document_id}")
    return {"deleted_chunks": deleted}


@router.post("/chunks/delete")
async def delete_chunks(body: DeleteChunksRequest, services: ServiceContainer = Depends(get_services)):
    try:
        deleted = await asyncio.to_thread(services.store.delete_by_ids, body.origin, body.chunk_ids)
    except AppBaseError as e:
        raise _http_error(e)
    services.index.invalidate()
    return {"deleted_chunks": deleted}


@router.post("/videos/search", response_model=VideoMatchResponse | None)
async def search_video(body: VideoSearchRequest, services: ServiceContainer = Depends(get_services)):
    """Tìm video phù hợp nhất trong thư viện video dùng chung."""
    try:
        match = await services.retrieval.search_relevant_video(body.query, body.subject_id)
    except AppBaseError as e:
        raise _http_error(e)
    return VideoMatchResponse.model_validate(match) if match else None


@router.post("/videos/related-documents", response_model=list[RelatedDocumentResponse])
async def related_documents(body: RelatedDocumentsRequest, services: ServiceContainer = Depends(get_services)):
    try:
        docs = await services.retrieval.search_related_documents(
            body.title, body.content, body.subject_id, body.limit,
            requesting_user_id=body.user_id,
        )
    except AppBaseError as e:
        raise _http_error(e)
    return [RelatedDocumentResponse.model_validate(d) for d in docs]
