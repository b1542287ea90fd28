"""
Knowledge feature: candidate scoring for retrieval.

Raw index similarity is weighted by a chain of named stages, then held to a
per-origin acceptance threshold and a set of hard filters:

    weighted = raw × recency × origin bonus × video-context bonus

Each stage is a small object so the weighting can be tested (and tuned) in
isolation.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta

from app.features.knowledge.models import ChunkOrigin
from app.features.knowledge.vector_index import IndexEntry, SearchHit


# ── Query classification ─────────────────────────────────

# Demonstrative / deictic phrasing: the student is pointing at something
# ("giải thích cái này", "the file I just sent") rather than naming a topic.
DEICTIC_TERMS = (
    "này", "kia", "nọ", "đó", "đây",
    "vừa rồi", "vừa", "mới", "vừa mới", "vừa xong",
    "tài liệu vừa", "file vừa", "document vừa",
    "tài liệu", "file", "document", "cái", "thứ", "nội dung", "văn bản", "bài",
    "cái gì", "gì", "như thế nào", "ra sao",
    "upload", "tải lên", "gửi", "đưa lên", "post",
    "this", "that", "these", "those", "just now", "the file", "the document",
    "uploaded", "attached",
)

# Specific curriculum nouns. A query naming one of these is about a topic,
# not about "whatever I just uploaded".
SUBJECT_KEYWORDS = (
    # Toán
    "đạo hàm", "tích phân", "nguyên hàm", "phương trình", "bất phương trình",
    "hàm số", "ma trận", "giới hạn", "lượng giác", "logarit", "hình học",
    "xác suất", "tổ hợp", "cấp số", "vectơ", "số phức", "đồ thị",
    # Vật lý
    "định luật", "điện trở", "dao động", "sóng cơ", "cơ năng", "động năng",
    "gia tốc", "vận tốc", "điện trường", "từ trường", "quang học",
    # Hóa học
    "phản ứng", "nguyên tử", "phân tử", "axit", "bazơ", "oxi hóa",
    "hóa trị", "liên kết", "dung dịch", "bảng tuần hoàn",
    # Sinh học
    "quang hợp", "tế bào", "di truyền", "nhiễm sắc thể", "hô hấp", "tiến hóa",
    # Văn, Sử, Địa, Anh
    "tác phẩm", "nhân vật", "bài thơ", "truyện ngắn", "nghị luận",
    "chiến tranh", "cách mạng", "triều đại", "khí hậu", "địa hình", "dân số",
    "ngữ pháp", "từ vựng", "thì hiện tại", "câu bị động",
    # English topic nouns
    "derivative", "integral", "equation", "photosynthesis", "grammar",
)


def _term_pattern(terms) -> re.Pattern:
    alternatives = "|".join(re.escape(t) for t in sorted(terms, key=len, reverse=True))
    return re.compile(rf"(?<!\w)(?:{alternatives})(?!\w)", re.IGNORECASE)


_DEICTIC_RE = _term_pattern(DEICTIC_TERMS)
_SUBJECT_RE = _term_pattern(SUBJECT_KEYWORDS)


@dataclass(frozen=True)
class QueryProfile:
    text: str
    is_vague: bool

    @classmethod
    def analyze(cls, query: str) -> "QueryProfile":
        text = (query or "").strip()
        lowered = text.lower()
        is_vague = bool(_DEICTIC_RE.search(lowered)) and not _SUBJECT_RE.search(lowered)
        return cls(text=text, is_vague=is_vague)


# ── Candidates ───────────────────────────────────────────

@dataclass(frozen=True)
class ScoringContext:
    subject_id: str | None
    requesting_user_id: int
    now: datetime
    profile: QueryProfile
    current_session_id: int | None = None
    is_video_context: bool = False


@dataclass
class Candidate:
    entry: IndexEntry
    raw_similarity: float
    age: timedelta
    weighted_similarity: float
    threshold: float = 0.0

    @classmethod
    def from_hit(cls, hit: SearchHit, now: datetime) -> "Candidate":
        age = now - hit.entry.timestamp
        if age < timedelta(0):
            age = timedelta(0)
        return cls(
            entry=hit.entry,
            raw_similarity=hit.similarity,
            age=age,
            weighted_similarity=hit.similarity,
        )

    @property
    def is_temporary(self) -> bool:
        return self.entry.origin is ChunkOrigin.TEMPORARY


# ── Weighting stages ─────────────────────────────────────

def recency_weight(age: timedelta, vague: bool = False) -> float:
    """Multiplier by chunk age. Non-increasing in age for a fixed `vague`."""
    minutes = age.total_seconds() / 60
    hours = minutes / 60

    if minutes < 2:
        return 5.0 if vague else 3.0
    if minutes < 5:
        return 4.0 if vague else 2.5
    if minutes < 15:
        return 3.0 if vague else 2.0
    if hours < 1:
        return 1.5
    if hours < 24:
        return 1.2
    if hours < 24 * 7:
        # linear from 1.0 at one day down to 0.5 at one week
        return 1.0 - 0.5 * (hours - 24) / (24 * 6)
    return 0.5


class RecencyStage:
    name = "recency"

    def factor(self, candidate: Candidate, ctx: ScoringContext) -> float:
        return recency_weight(candidate.age, ctx.profile.is_vague)


class OriginStage:
    name = "origin"

    def __init__(self, temporary_bonus: float = 1.2):
        self.temporary_bonus = temporary_bonus

    def factor(self, candidate: Candidate, ctx: ScoringContext) -> float:
        return self.temporary_bonus if candidate.is_temporary else 1.0


class VideoContextStage:
    name = "video_context"

    def __init__(self, transcript_bonus: float = 1.35):
        self.transcript_bonus = transcript_bonus

    def factor(self, candidate: Candidate, ctx: ScoringContext) -> float:
        if ctx.is_video_context and candidate.entry.origin is ChunkOrigin.TRANSCRIPT:
            return self.transcript_bonus
        return 1.0


# ── Acceptance threshold ─────────────────────────────────

class ThresholdStage:
    """Minimum weighted similarity, by origin and age.

    A temporary chunk uploaded in the last few minutes is held to an almost
    zero bar so an immediate follow-up question always sees it.
    """

    def __init__(
        self,
        standard: float = 0.35,
        temporary: float = 0.50,
        video_transcript_factor: float = 0.8,
    ):
        self.standard = standard
        self.temporary = temporary
        self.video_transcript_factor = video_transcript_factor

    def threshold(self, candidate: Candidate, ctx: ScoringContext) -> float:
        origin = candidate.entry.origin
        if origin is ChunkOrigin.TEMPORARY:
            value = self.temporary
            if candidate.age < timedelta(minutes=1):
                value = 0.01
            elif candidate.age < timedelta(minutes=3):
                value = 0.02
            if ctx.profile.is_vague and candidate.age < timedelta(minutes=3):
                value /= 2
            return value

        value = self.standard
        if origin is ChunkOrigin.TRANSCRIPT and ctx.is_video_context:
            value *= self.video_transcript_factor
        return value

    def accepts(self, candidate: Candidate, ctx: ScoringContext) -> bool:
        candidate.threshold = self.threshold(candidate, ctx)
        return candidate.weighted_similarity >= candidate.threshold


# ── Hard filters ─────────────────────────────────────────

class SubjectFilter:
    name = "subject"

    def accepts(self, candidate: Candidate, ctx: ScoringContext) -> bool:
        return candidate.entry.subject_id == ctx.subject_id


class OwnershipFilter:
    """Temporary chunks are private to their uploader (and, loosely, their session)."""
    name = "ownership"

    def __init__(self, session_grace: timedelta = timedelta(minutes=5)):
        self.session_grace = session_grace

    def accepts(self, candidate: Candidate, ctx: ScoringContext) -> bool:
        if not candidate.is_temporary:
            return True
        entry = candidate.entry
        if entry.owner_user_id != ctx.requesting_user_id:
            return False
        if (
            ctx.current_session_id is not None
            and entry.session_id is not None
            and entry.session_id != ctx.current_session_id
        ):
            # a brand-new session may not have been attached to the upload yet
            return candidate.age < self.session_grace
        return True


# ── Pipeline ─────────────────────────────────────────────

class ScoringPipeline:
    def __init__(self, weights=None, threshold: ThresholdStage | None = None, filters=None):
        self.weights = weights if weights is not None else [
            RecencyStage(), OriginStage(), VideoContextStage(),
        ]
        self.threshold = threshold or ThresholdStage()
        self.filters = filters if filters is not None else [SubjectFilter(), OwnershipFilter()]

    def weigh(self, candidate: Candidate, ctx: ScoringContext) -> Candidate:
        weighted = candidate.raw_similarity
        for stage in self.weights:
            weighted *= stage.factor(candidate, ctx)
        candidate.weighted_similarity = weighted
        return candidate

    def score(self, hits: list[SearchHit], ctx: ScoringContext) -> list[Candidate]:
        """Weight, threshold, filter and rank search hits.

        Temporary chunks come first regardless of score, then higher weighted
        similarity; ties fall back to recency and id so ordering is stable.
        """
        survivors = []
        for hit in hits:
            candidate = self.weigh(Candidate.from_hit(hit, ctx.now), ctx)
            if not self.threshold.accepts(candidate, ctx):
                continue
            if all(f.accepts(candidate, ctx) for f in self.filters):
                survivors.append(candidate)

        survivors.sort(key=lambda c: (
            not c.is_temporary,
            -c.weighted_similarity,
            c.age,
            c.entry.origin.value,
            c.entry.chunk_id,
        ))
        return survivors
