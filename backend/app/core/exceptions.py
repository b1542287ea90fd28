"""
Custom exception classes for unified error handling.
"""

from fastapi import HTTPException


class AppBaseError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message: str, detail: str | None = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class EmbeddingProviderError(AppBaseError):
    """Raised when the embedding model fails (quota, timeout, auth)."""
    def __init__(self, original_error: str, message: str = "Không tạo được vector embedding"):
        super().__init__(
            message=message,
            detail=original_error,
        )


class EmbeddingDimensionError(EmbeddingProviderError):
    """Raised when a vector does not match the pinned embedding dimension."""
    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            original_error=f"expected {expected} dimensions, got {actual}",
            message="Kích thước vector embedding không khớp",
        )


class EmptyIndexError(AppBaseError):
    """Raised when the vector index is built while no chunk has an embedding."""
    def __init__(self):
        super().__init__(
            message="Chưa có đoạn tài liệu nào được nhúng vector",
            detail="Vector index is empty.",
        )


class StaleReferenceError(AppBaseError):
    """An index entry points to a chunk that no longer exists in the store."""
    def __init__(self, origin: str, chunk_id: int):
        self.origin = origin
        self.chunk_id = chunk_id
        super().__init__(
            message="Đoạn tài liệu không còn tồn tại",
            detail=f"{origin} chunk {chunk_id} is gone from the chunk store",
        )


class ChunkStoreError(AppBaseError):
    """Raised when the chunk database is unavailable or a query fails."""
    def __init__(self, original_error: str, message: str = "Lỗi truy cập cơ sở dữ liệu tài liệu"):
        super().__init__(
            message=message,
            detail=original_error,
        )


class MissingTableError(ChunkStoreError):
    """Raised when a chunk table has not been migrated yet."""
    def __init__(self, table: str, original_error: str = ""):
        self.table = table
        super().__init__(
            original_error=original_error or f"table '{table}' does not exist",
            message=f"Bảng '{table}' chưa được tạo",
        )


class CleanupPartialFailure(AppBaseError):
    """A single file or row could not be deleted during a lifecycle sweep."""
    def __init__(self, document_id: int, original_error: str):
        self.document_id = document_id
        super().__init__(
            message=f"Không xóa được tài liệu tạm {document_id}",
            detail=original_error,
        )


class ModelBackendError(AppBaseError):
    """Raised when a language-model backend fails to produce a response."""
    def __init__(self, backend: str, original_error: str):
        self.backend = backend
        super().__init__(
            message=f"Có lỗi xảy ra khi kết nối với {backend}. Vui lòng thử lại sau.",
            detail=original_error,
        )


# ── Utility: convert to HTTPException ────────────────────

def app_error_to_http(error: AppBaseError, status_code: int = 400) -> HTTPException:
    """Convert an AppBaseError to an HTTPException with consistent JSON body."""
    return HTTPException(
        status_code=status_code,
        detail={
            "error": error.message,
            "detail": error.detail,
            "type": type(error).__name__,
        },
    )
