"""
Tutor feature: answer one student question.

Flow: off-topic check → retrieval (bounded by a timeout) → context
formatting → model routing.
"""

import logging
from dataclasses import dataclass, field

from app.features.knowledge.models import RetrievalResult
from app.features.knowledge.retrieval import RetrievalEngine
from app.features.tutor.model_router import ModelRouter
from app.features.tutor.prompts import IRRELEVANT_QUERY_RESPONSE, format_context
from app.features.tutor.complexity import is_irrelevant_query

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TutorAnswer:
    content: str
    model_used: str | None
    is_fallback: bool = False
    irrelevant: bool = False
    sources: list[RetrievalResult] = field(default_factory=list)


class TutorService:
    def __init__(self, retrieval: RetrievalEngine, router: ModelRouter):
        self.retrieval = retrieval
        self.router = router

    async def answer(
        self,
        message: str,
        subject_id: str | None,
        user_id: int,
        session_id: int | None = None,
        is_video_context: bool = False,
    ) -> TutorAnswer:
        """
        Raises:
            EmbeddingProviderError: the question could not be embedded.
            ChunkStoreError: the chunk store is unavailable.
            ModelBackendError: no backend could answer.
        """
        if is_irrelevant_query(message):
            logger.info(f"🚫 Irrelevant query short-circuited: '{message[:30]}'")
            return TutorAnswer(content=IRRELEVANT_QUERY_RESPONSE, model_used=None, irrelevant=True)

        results = await self.retrieval.retrieve_with_timeout(
            message,
            subject_id,
            user_id,
            current_session_id=session_id,
            is_video_context=is_video_context,
        )
        context = format_context(results)

        routed = await self.router.route(message, subject_id, context)
        return TutorAnswer(
            content=routed.content,
            model_used=routed.model_used,
            is_fallback=routed.is_fallback,
            sources=results,
        )
