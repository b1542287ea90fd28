"""
Tutor feature: query classification.

Two cheap, deterministic checks run before any model call:
  - is_irrelevant_query():       noise / chit-chat that should not reach retrieval at all
  - analyze_query_complexity():  picks the fast or the deep model backend
"""

import re
from dataclasses import dataclass, field

COMPLEX_SCORE_THRESHOLD = 2
LONG_MESSAGE_CHARS = 200

MATHEMATICAL_PATTERNS = [
    r"phương trình.*bậc.*[3-9]",
    r"đạo hàm.*cấp.*[2-9]",
    r"tích phân.*phức",
    r"ma trận.*nghịch đảo",
    r"hệ phương trình.*nhiều ẩn",
    r"chứng minh.*quy nạp",
    r"giới hạn.*vô cực",
    r"chuỗi.*hội tụ",
]

REASONING_PATTERNS = [
    r"tại sao.*vì sao.*như thế nào",
    r"phân tích.*nguyên nhân",
    r"so sánh.*đối chiếu.*khác biệt",
    r"chứng minh.*giải thích.*lý luận",
    r"đánh giá.*quan điểm",
    r"lập luận.*tranh luận",
]

PROBLEM_SOLVING_PATTERNS = [
    r"bài toán.*phức tạp",
    r"nhiều bước.*nhiều giai đoạn",
    r"kết hợp.*nhiều phương pháp",
    r"ứng dụng.*thực tế.*thực tiễn",
    r"thiết kế.*xây dựng.*tạo ra",
]

SIMPLE_PATTERNS = [
    r"là gì\?",
    r"định nghĩa",
    r"công thức.*đơn giản",
    r"ví dụ.*cơ bản",
    r"tính.*đơn giản",
    r"liệt kê",
    r"kể tên",
]

# (category, weight, patterns)
COMPLEXITY_RULES = [
    ("mathematical", 3, [re.compile(p) for p in MATHEMATICAL_PATTERNS]),
    ("reasoning", 2, [re.compile(p) for p in REASONING_PATTERNS]),
    ("problem_solving", 1, [re.compile(p) for p in PROBLEM_SOLVING_PATTERNS]),
    ("simple", -2, [re.compile(p) for p in SIMPLE_PATTERNS]),
]


@dataclass(frozen=True)
class QueryComplexity:
    is_complex: bool
    score: int
    confidence: float
    reasons: list[str] = field(default_factory=list)


def analyze_query_complexity(message: str) -> QueryComplexity:
    """Score a question; score ≥ 2 means it should go to the deep backend."""
    text = (message or "").lower()
    score = 0
    reasons: list[str] = []

    for category, weight, patterns in COMPLEXITY_RULES:
        for pattern in patterns:
            if pattern.search(text):
                score += weight
                reasons.append(f"{category}: {pattern.pattern}")

    if len(message or "") > LONG_MESSAGE_CHARS:
        score += 1
        reasons.append("long message")

    if (message or "").count("?") > 2:
        score += 1
        reasons.append("multiple questions")

    return QueryComplexity(
        is_complex=score >= COMPLEX_SCORE_THRESHOLD,
        score=score,
        confidence=min(0.9, abs(score) * 0.2 + 0.5),
        reasons=reasons,
    )


IRRELEVANT_PATTERNS = [
    re.compile(p) for p in (
        r"[0-9]+",                                   # chỉ có số
        r"[a-z]",                                    # một chữ cái
        r"[^\w\s]+",                                 # chỉ có dấu câu
        r"(a+|e+|i+|o+|u+|y+)",                      # nguyên âm lặp
        r"(test|testing|123|abc|xyz|hello|hi|hey)",  # từ test / chào hỏi
        r"(ád|ưe|ơi|êu|ây|òi)",                      # thán từ
        r"(haha|hehe|lol|wow|ok|ko|kg|cm|mm)",       # chat speak
    )
]


def is_irrelevant_query(message: str) -> bool:
    """True for noise that should get the static off-topic reply."""
    text = (message or "").strip().lower()
    if len(text) <= 2:
        return True
    return any(pattern.fullmatch(text) for pattern in IRRELEVANT_PATTERNS)
