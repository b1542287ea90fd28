"""
Background cleanup: vòng đời của tài liệu tạm (temporary documents).

Tài liệu tạm là file học sinh upload trong lúc chat. Chúng chỉ sống
TEMP_RETENTION_HOURS (mặc định 2 giờ):

  sweep_expired()       chạy mỗi CLEANUP_INTERVAL_MINUTES theo APScheduler,
                        xóa file + chunks + bản ghi của tài liệu quá hạn.
  recover_after_crash() chạy một lần sau khi khởi động nếu lần tắt trước
                        không sạch sẽ, xóa TOÀN BỘ dữ liệu tạm.

Lần tắt "sạch" được đánh dấu bằng một sentinel file (CLEAN_SHUTDOWN_MARKER)
ghi ra trong lifespan shutdown và xóa đi ngay khi khởi động.
"""

import asyncio
import logging
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

from app.config import Settings
from app.core.exceptions import (
    ChunkStoreError,
    CleanupPartialFailure,
    EmptyIndexError,
    MissingTableError,
)
from app.features.knowledge.models import SweepReport, TemporaryDocument

logger = logging.getLogger(__name__)


class LifecycleManager:
    def __init__(
        self,
        store,
        index,
        retention: timedelta = timedelta(hours=2),
        upload_dir: str | Path = "uploads",
        marker_path: str | Path = ".clean_shutdown",
    ):
        self.store = store
        self.index = index
        self.retention = retention
        self.upload_dir = Path(upload_dir)
        self.marker_path = Path(marker_path)

    @classmethod
    def from_settings(cls, settings: Settings, store, index) -> "LifecycleManager":
        return cls(
            store=store,
            index=index,
            retention=timedelta(hours=settings.TEMP_RETENTION_HOURS),
            upload_dir=settings.UPLOAD_DIR,
            marker_path=settings.CLEAN_SHUTDOWN_MARKER,
        )

    # ── Clean-shutdown sentinel ──────────────────────────

    def was_clean_shutdown(self) -> bool:
        """True if the previous process wrote the marker on its way out."""
        return self.marker_path.exists()

    def mark_running(self) -> None:
        self.marker_path.unlink(missing_ok=True)

    def mark_clean_shutdown(self) -> None:
        self.marker_path.parent.mkdir(parents=True, exist_ok=True)
        self.marker_path.write_text(datetime.now(timezone.utc).isoformat(), encoding="utf-8")
        logger.info(f"🏁 Clean shutdown marker written: {self.marker_path}")

    # ── Helpers ──────────────────────────────────────────

    def _file_path(self, doc: TemporaryDocument) -> Path | None:
        if not doc.file_path:
            return None
        path = Path(doc.file_path)
        return path if path.is_absolute() else self.upload_dir / path

    def _remove_file(self, doc: TemporaryDocument) -> bool:
        """Delete the uploaded file of a document. Returns False if there was none.

        Raises:
            CleanupPartialFailure: the file exists but could not be removed.
        """
        path = self._file_path(doc)
        if path is None:
            return False
        try:
            os.remove(path)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise CleanupPartialFailure(doc.id, f"{path}: {e}")
        logger.info(f"🗑️ Deleted temporary file: {path}")
        return True

    async def _rebuild_index(self) -> bool:
        self.index.invalidate()
        try:
            await self.index.build()
        except EmptyIndexError:
            # nothing left to index is a valid outcome
            return True
        except Exception as e:
            logger.error(f"❌ Index rebuild after cleanup failed: {e}")
            return False
        return True

    async def _delete_document(self, doc: TemporaryDocument, report: SweepReport) -> None:
        """Delete file, chunks and row of one document; a file error does not keep the rows."""
        file_error = None
        try:
            if self._remove_file(doc):
                report.files_removed += 1
        except CleanupPartialFailure as e:
            file_error = e

        try:
            chunks = await asyncio.to_thread(self.store.delete_temporary_document, doc.id)
        except ChunkStoreError as e:
            raise CleanupPartialFailure(doc.id, e.detail or str(e))

        report.deleted += 1
        logger.info(f"🗑️ Deleted temporary document {doc.id} '{doc.file_name}' ({chunks} chunks)")
        if file_error is not None:
            raise file_error

    async def delete_temporary(self, document_id: int) -> int:
        """Delete one temporary document now (file, chunks, row). Returns deleted chunk count.

        A file that cannot be removed is logged and the rows are deleted anyway,
        the same as in a sweep.

        Raises:
            ChunkStoreError: the chunks or the document row could not be deleted.
        """
        doc = await asyncio.to_thread(self.store.get_temporary_document, document_id)
        if doc is not None:
            try:
                self._remove_file(doc)
            except CleanupPartialFailure as e:
                logger.warning(f"⚠️ {e.message}: {e.detail}")

        try:
            chunks = await asyncio.to_thread(self.store.delete_temporary_document, document_id)
        finally:
            self.index.invalidate()
        logger.info(f"🗑️ Deleted temporary document {document_id} on request ({chunks} chunks)")
        return chunks

    # ── Sweeps ───────────────────────────────────────────

    async def sweep_expired(self, now: datetime | None = None) -> SweepReport:
        """Delete every temporary document uploaded before `now - retention`.

        Per-document failures are logged and collected in the report; the
        sweep always continues with the remaining documents.
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - self.retention
        report = SweepReport()

        try:
            docs = await asyncio.to_thread(self.store.list_temporary_documents, cutoff)
        except MissingTableError as e:
            logger.info(f"🧹 Temporary tables not migrated yet, nothing to sweep ({e.table})")
            return report

        if not docs:
            logger.debug("🧹 No expired temporary documents")
            return report

        logger.info(f"🧹 Sweeping {len(docs)} expired temporary documents (uploaded before {cutoff.isoformat()})")
        for doc in docs:
            try:
                await self._delete_document(doc, report)
            except CleanupPartialFailure as e:
                report.failed.append(doc.id)
                logger.warning(f"⚠️ {e.message}: {e.detail}")

        if report.deleted:
            report.index_rebuilt = await self._rebuild_index()

        logger.info(
            f"✅ Temporary sweep finished: deleted={report.deleted}, "
            f"files_removed={report.files_removed}, failed={len(report.failed)}"
        )
        return report

    async def recover_after_crash(self) -> SweepReport:
        """Drop all temporary state left behind by an unclean shutdown.

        Files, chunks and document rows are removed in that order; each step is
        guarded on its own so a failure in one does not skip the others.
        """
        logger.info("🧹 Crash recovery: removing all temporary documents...")
        report = SweepReport()

        try:
            docs = await asyncio.to_thread(self.store.list_temporary_documents, None)
        except ChunkStoreError as e:
            logger.warning(f"⚠️ Crash recovery could not list temporary documents: {e.detail}")
            docs = []

        for doc in docs:
            try:
                if self._remove_file(doc):
                    report.files_removed += 1
            except CleanupPartialFailure as e:
                report.failed.append(doc.id)
                logger.warning(f"⚠️ {e.message}: {e.detail}")

        try:
            chunks = await asyncio.to_thread(self.store.delete_all_temporary_chunks)
            logger.info(f"🗑️ Deleted {chunks} temporary chunks")
        except ChunkStoreError as e:
            logger.warning(f"⚠️ Crash recovery could not delete temporary chunks: {e.detail}")

        try:
            report.deleted = await asyncio.to_thread(self.store.delete_all_temporary_documents)
            logger.info(f"🗑️ Deleted {report.deleted} temporary documents")
        except ChunkStoreError as e:
            logger.warning(f"⚠️ Crash recovery could not delete temporary documents: {e.detail}")

        report.index_rebuilt = await self._rebuild_index()
        logger.info(
            f"✅ Crash recovery finished: deleted={report.deleted}, "
            f"files_removed={report.files_removed}, failed={len(report.failed)}"
        )
        return report

    async def temporary_stats(self, now: datetime | None = None) -> dict[str, int]:
        now = now or datetime.now(timezone.utc)
        try:
            return await asyncio.to_thread(self.store.temporary_stats, now, self.retention)
        except MissingTableError:
            return {
                "total_temporary_docs": 0,
                "expired_temporary_docs": 0,
                "temporary_docs_older_than_1_hour": 0,
            }
