"""
HTTP tests for the knowledge and tutor routers (no lifespan, fixture services).
"""

from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.features.knowledge.models import ChunkOrigin
from app.features.knowledge.router import router as knowledge_router
from app.features.tutor.router import router as tutor_router
from conftest import FailingChatModel, unit


def _app(services=None) -> FastAPI:
    app = FastAPI()
    app.include_router(knowledge_router, prefix="/api/knowledge")
    app.include_router(tutor_router, prefix="/api/tutor")
    if services is not None:
        app.state.services = services
    return app


@pytest.fixture
def client(services):
    return TestClient(_app(services))


class TestKnowledgeApi:
    def test_search(self, client, store, embeddings):
        embeddings.table["định lý Pythagore"] = unit(1)
        doc = store.add_parent(ChunkOrigin.PERMANENT, subject_id="MATH_001")
        cid = store.add_chunk(ChunkOrigin.PERMANENT, doc, "a^2 + b^2 = c^2", unit(1))

        res = client.post("/api/knowledge/search", json={
            "query": "định lý Pythagore", "subject_id": "MATH_001", "user_id": 1,
        })

        assert res.status_code == 200
        body = res.json()
        assert [r["chunk_id"] for r in body] == [cid]
        assert body[0]["origin"] == "permanent"
        assert body[0]["content"] == "a^2 + b^2 = c^2"

    def test_search_embedding_failure_is_502(self, client, store, embeddings):
        embeddings.fail = True
        res = client.post("/api/knowledge/search", json={"query": "x", "user_id": 1})
        assert res.status_code == 502
        assert res.json()["detail"]["type"] == "EmbeddingProviderError"

    def test_search_validation(self, client):
        res = client.post("/api/knowledge/search", json={"query": "", "user_id": 1})
        assert res.status_code == 422

    def test_temporary_upload_and_delete(self, client, store, services):
        res = client.post("/api/knowledge/temporary", json={
            "user_id": 3, "file_name": "ghi-chu.txt",
            "text": "Ghi chú: quang hợp tạo ra glucose và oxy.", "session_id": 5,
        })
        assert res.status_code == 200
        body = res.json()
        assert body["origin"] == "temporary"
        assert body["embedded"] == len(body["chunk_ids"]) == 1

        res = client.delete(f"/api/knowledge/documents/temporary/{body['parent_id']}")

        assert res.status_code == 200
        assert res.json() == {"deleted_chunks": 1}
        assert store.parents[ChunkOrigin.TEMPORARY] == {}

    def test_delete_temporary_removes_uploaded_file(self, client, store, settings):
        upload_dir = Path(settings.UPLOAD_DIR)
        upload_dir.mkdir(parents=True, exist_ok=True)
        (upload_dir / "de-cuong.pdf").write_bytes(b"%PDF-1.4")
        doc = store.add_parent(ChunkOrigin.TEMPORARY, user_id=3, file_path="de-cuong.pdf")
        store.add_chunk(ChunkOrigin.TEMPORARY, doc, "đề cương ôn tập", unit(1))

        res = client.delete(f"/api/knowledge/documents/temporary/{doc}")

        assert res.json() == {"deleted_chunks": 1}
        assert list(upload_dir.iterdir()) == []

    def test_rebuild_and_stats(self, client, store):
        doc = store.add_parent(ChunkOrigin.PERMANENT)
        store.add_chunk(ChunkOrigin.PERMANENT, doc, "có embedding", unit(1))
        store.add_chunk(ChunkOrigin.PERMANENT, doc, "chưa có", None)

        res = client.post("/api/knowledge/rebuild")
        assert res.json() == {"vectors": 1, "state": "ready"}

        stats = client.get("/api/knowledge/stats").json()
        assert stats["embeddings"]["permanent"] == {"total_chunks": 2, "chunks_with_embeddings": 1}
        assert stats["index"]["dimensions"] == 8

    def test_rebuild_empty_index(self, client):
        res = client.post("/api/knowledge/rebuild")
        assert res.json() == {"vectors": 0, "state": "uninitialized"}

    def test_cleanup_endpoints(self, client):
        assert client.post("/api/knowledge/cleanup").json()["deleted"] == 0
        assert client.get("/api/knowledge/cleanup/stats").json()["total_temporary_docs"] == 0

    def test_services_not_ready_is_503(self):
        client = TestClient(_app())
        res = client.post("/api/knowledge/search", json={"query": "x", "user_id": 1})
        assert res.status_code == 503


class TestTutorApi:
    def test_ask(self, client):
        res = client.post("/api/tutor/ask", json={
            "message": "Định nghĩa đạo hàm là gì?", "subject_id": "MATH_001", "user_id": 1,
        })
        assert res.status_code == 200
        body = res.json()
        assert body["model_used"] == "deepseek-chat"
        assert body["content"] == "Đây là câu trả lời nhanh."
        assert body["sources"] == []
        assert not body["irrelevant"]

    def test_ask_irrelevant(self, client, embeddings):
        res = client.post("/api/tutor/ask", json={"message": "hello", "user_id": 1})
        body = res.json()
        assert body["irrelevant"]
        assert body["model_used"] is None
        assert embeddings.calls == []

    def test_backend_failure_is_502(self, client, services):
        services.router.fast.llm = FailingChatModel()
        res = client.post("/api/tutor/ask", json={"message": "Định nghĩa đạo hàm là gì?", "user_id": 1})
        assert res.status_code == 502
        assert res.json()["detail"]["type"] == "ModelBackendError"
