from typing import Optional

from pydantic import BaseModel, Field

from app.features.knowledge.schemas import RetrievalResultResponse


class AskRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=4000)
    subject_id: Optional[str] = None
    user_id: int
    session_id: Optional[int] = None
    is_video_context: bool = False


class AskResponse(BaseModel):
    content: str
    model_used: Optional[str] = None
    is_fallback: bool = False
    irrelevant: bool = False
    sources: list[RetrievalResultResponse] = []
