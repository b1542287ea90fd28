"""
Tests for the tutor answer flow: off-topic short-circuit, retrieval, prompting.
"""

from datetime import datetime, timedelta, timezone

import pytest
from langchain_core.messages import AIMessage

from app.core.exceptions import EmbeddingProviderError
from app.features.knowledge.models import ChunkOrigin, RetrievalResult
from app.features.tutor.model_router import ModelBackend, ModelRouter
from app.features.tutor.prompts import (
    IRRELEVANT_QUERY_RESPONSE,
    build_system_prompt,
    build_user_prompt,
    format_context,
    get_subject_teacher,
)
from app.features.tutor.service import TutorService
from conftest import NOW, unit

NOTE = "Ghi chú buổi học: định luật Ohm phát biểu rằng U = I * R."
QUESTION = "giải thích tài liệu này"


class RecordingChatModel:
    def __init__(self, reply: str = "Định luật Ohm nói rằng..."):
        self.reply = reply
        self.messages = []

    async def ainvoke(self, messages, **kwargs):
        self.messages.append(messages)
        return AIMessage(content=self.reply)


@pytest.fixture
def recording_llm():
    return RecordingChatModel()


@pytest.fixture
def tutor(services, recording_llm):
    router = ModelRouter(
        fast=ModelBackend("deepseek-chat", recording_llm, timeout=5),
        deep=ModelBackend("deepseek-reasoner", recording_llm, timeout=5),
    )
    return TutorService(services.retrieval, router)


def _result(**kwargs):
    defaults = dict(
        chunk_id=1, document_id=1, content="nội dung", similarity=0.456,
        origin=ChunkOrigin.PERMANENT, timestamp=NOW,
    )
    defaults.update(kwargs)
    return RetrievalResult(**defaults)


class TestPrompts:
    def test_context_sections_are_labelled(self):
        context = format_context([
            _result(content="Bài 1: giải x + 1 = 0", is_exercise=True),
            _result(chunk_id=2, content="Định nghĩa đạo hàm", similarity=0.9),
        ])
        assert context.startswith("📚 **Tài liệu tham khảo:**")
        assert "### Tài liệu 1 [BÀI TẬP] (similarity: 45.6%)\nBài 1: giải x + 1 = 0" in context
        assert "### Tài liệu 2 [LÝ THUYẾT] (similarity: 90.0%)" in context

    def test_no_results_no_context(self):
        assert format_context([]) == ""
        assert build_user_prompt("câu hỏi") == "câu hỏi"

    def test_user_prompt_wraps_context(self):
        prompt = build_user_prompt("câu hỏi", "NGỮ CẢNH")
        assert prompt.startswith("NGỮ CẢNH")
        assert "📝 **Câu hỏi của học sinh:** câu hỏi" in prompt

    def test_system_prompt_per_subject(self):
        assert get_subject_teacher("PHY_001").name in build_system_prompt("PHY_001")
        assert get_subject_teacher("UNKNOWN") == get_subject_teacher("MATH_001")
        assert get_subject_teacher(None) == get_subject_teacher("MATH_001")


class TestTutorService:
    async def test_irrelevant_query_short_circuits(self, tutor, embeddings, recording_llm):
        answer = await tutor.answer("ok", "MATH_001", user_id=1)

        assert answer.irrelevant
        assert answer.content == IRRELEVANT_QUERY_RESPONSE
        assert answer.model_used is None
        assert embeddings.calls == []
        assert recording_llm.messages == []

    async def test_answer_uses_retrieved_context(self, store, tutor, embeddings, recording_llm):
        embeddings.table[QUESTION] = unit(1, 1)
        embeddings.table[NOTE] = unit(1)
        # retrieval runs against the wall clock here
        uploaded_at = datetime.now(timezone.utc) - timedelta(seconds=20)
        doc = store.add_parent(ChunkOrigin.TEMPORARY, user_id=1, uploaded_at=uploaded_at)
        store.add_chunk(ChunkOrigin.TEMPORARY, doc, NOTE, unit(1), session_id=3)

        answer = await tutor.answer(QUESTION, "MATH_001", user_id=1, session_id=3)

        assert not answer.irrelevant
        assert answer.model_used == "deepseek-chat"
        assert [s.content for s in answer.sources] == [NOTE]
        system, user = recording_llm.messages[0]
        assert "Tài liệu 1" in user.content
        assert NOTE in user.content
        assert QUESTION in user.content

    async def test_no_context_still_answers(self, tutor, recording_llm):
        answer = await tutor.answer("đạo hàm là gì?", "MATH_001", user_id=1)

        assert answer.sources == []
        _, user = recording_llm.messages[0]
        assert user.content == "đạo hàm là gì?"

    async def test_embedding_failure_propagates(self, store, tutor, embeddings):
        doc = store.add_parent(ChunkOrigin.PERMANENT)
        store.add_chunk(ChunkOrigin.PERMANENT, doc, "x", unit(1))
        embeddings.fail = True
        with pytest.raises(EmbeddingProviderError):
            await tutor.answer("đạo hàm là gì?", "MATH_001", user_id=1)


async def test_upload_then_ask_finds_the_upload(services, embeddings):
    """A file uploaded a moment ago is the first source of the next answer."""
    embeddings.table[QUESTION] = unit(1, 1)
    embeddings.table[NOTE] = unit(0.2, 1)
    doc = services.store.add_parent(ChunkOrigin.PERMANENT, uploaded_at=NOW - timedelta(days=60))
    services.store.add_chunk(ChunkOrigin.PERMANENT, doc, "Bài giảng cũ về điện học", unit(1, 1))

    await services.ingestion.upload_temporary(
        user_id=1, file_name="ghi-chu.txt", text=NOTE, subject_id="MATH_001", session_id=3,
    )
    answer = await services.tutor.answer(QUESTION, "MATH_001", user_id=1, session_id=3)

    assert answer.sources[0].is_temporary
    assert answer.sources[0].content == NOTE
    assert answer.model_used == "deepseek-chat"

    # another student never sees it
    other = await services.tutor.answer(QUESTION, "MATH_001", user_id=2, session_id=9)
    assert all(not s.is_temporary for s in other.sources)


async def test_expired_upload_is_gone_from_later_answers(services, embeddings):
    """Two hours after the upload the sweep removes it; the same question falls back to lectures."""
    question = "giải thích cái này"
    lecture = "Bài giảng cũ về điện học"
    embeddings.table[question] = unit(1, 1)
    embeddings.table[NOTE] = unit(0.2, 1)
    doc = services.store.add_parent(ChunkOrigin.PERMANENT, uploaded_at=NOW - timedelta(days=60))
    services.store.add_chunk(ChunkOrigin.PERMANENT, doc, lecture, unit(1, 1))

    t0 = datetime.now(timezone.utc)
    await services.ingestion.upload_temporary(
        user_id=1, file_name="ghi-chu.txt", text=NOTE, subject_id="MATH_001", session_id=3,
    )
    before = await services.tutor.answer(question, "MATH_001", user_id=1, session_id=3)
    assert before.sources[0].is_temporary

    report = await services.lifecycle.sweep_expired(now=t0 + timedelta(hours=3))
    assert report.deleted == 1

    after = await services.tutor.answer(question, "MATH_001", user_id=1, session_id=3)
    assert [s.content for s in after.sources] == [lecture]
    assert not any(s.is_temporary for s in after.sources)
