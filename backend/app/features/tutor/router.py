import logging

from fastapi import APIRouter, Depends

from app.core.dependencies import get_services
from app.core.exceptions import AppBaseError, ModelBackendError, app_error_to_http
from app.core.services import ServiceContainer
from app.features.knowledge.schemas import RetrievalResultResponse
from app.features.tutor.schemas import AskRequest, AskResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Tutor"])


@router.post("/ask", response_model=AskResponse)
async def ask(body: AskRequest, services: ServiceContainer = Depends(get_services)):
    """
    Trả lời câu hỏi của học sinh.
    - Câu hỏi không liên quan đến học tập: trả lời cố định, không gọi model.
    - Câu hỏi phức tạp: dùng model suy luận (deep), lỗi thì chuyển sang model nhanh.
    """
    try:
        answer = await services.tutor.answer(
            body.message,
            body.subject_id,
            body.user_id,
            session_id=body.session_id,
            is_video_context=body.is_video_context,
        )
    except ModelBackendError as e:
        logger.error(f"❌ Tutor answer failed: {e.detail}")
        raise app_error_to_http(e, status_code=502)
    except AppBaseError as e:
        logger.error(f"❌ Tutor answer failed: {e.message} ({e.detail})")
        raise app_error_to_http(e, status_code=503)

    return AskResponse(
        content=answer.content,
        model_used=answer.model_used,
        is_fallback=answer.is_fallback,
        irrelevant=answer.irrelevant,
        sources=[RetrievalResultResponse.model_validate(r) for r in answer.sources],
    )
