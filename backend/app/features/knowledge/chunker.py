"""
Knowledge feature: document chunking.

Exercise sheets ("BT" = bài tập) are split one question per chunk so a
question like "giải câu 3" lands on exactly the right passage. Everything
else goes through the standard recursive splitter.
"""

import logging
import re

from langchain_text_splitters import RecursiveCharacterTextSplitter

from app.features.knowledge.models import ChunkType, NewChunk

logger = logging.getLogger(__name__)

MIN_QUESTION_CHARS = 10
MIN_INTRO_OFFSET = 50
MIN_INTRO_CHARS = 20

_EXERCISE_MARKER_RE = re.compile(r"\bBT\b")

# Question markers, checked at the start of a line. When several match at the
# same position the first one listed wins.
QUESTION_PATTERNS = [
    re.compile(r"^Câu\s+(\d+)[.:]", re.MULTILINE),
    re.compile(r"^Câu\s+([^\s:.]+)[.:]", re.MULTILINE),
    re.compile(r"^Bài\s+(\d+)[.:]", re.MULTILINE),
    re.compile(r"^Bài\s+([^\s:.]+)[.:]", re.MULTILINE),
    re.compile(r"^(\d+)[.:]\s+", re.MULTILINE),
    re.compile(r"^([A-Z])[.:]\s+", re.MULTILINE),
    re.compile(r"^(\d+)[ \t]*$", re.MULTILINE),
    re.compile(r"^([A-Z])[ \t]*$", re.MULTILINE),
]

_splitter = RecursiveCharacterTextSplitter(
    chunk_size=1000,
    chunk_overlap=200,
    separators=["\n\n", "\n", " ", ""],
)


def count_words(text: str) -> int:
    return len(text.split())


def detect_is_exercise(file_name: str, text: str) -> bool:
    """An exercise document has a standalone "BT" token in its name or body."""
    in_name = bool(_EXERCISE_MARKER_RE.search((file_name or "").upper()))
    in_text = bool(_EXERCISE_MARKER_RE.search((text or "").upper()))
    logger.debug(f"📝 Exercise detection for '{file_name}': name={in_name}, content={in_text}")
    return in_name or in_text


def find_question_starts(text: str) -> list[tuple[int, str]]:
    """Positions of question markers as (offset, label), in document order."""
    starts: dict[int, str] = {}
    for pattern in QUESTION_PATTERNS:
        for match in pattern.finditer(text):
            starts.setdefault(match.start(), match.group(1))
    return sorted(starts.items())


def chunk_standard(text: str) -> list[NewChunk]:
    pieces = [p.strip() for p in _splitter.split_text(text or "")]
    pieces = [p for p in pieces if len(p) > MIN_QUESTION_CHARS]
    return [
        NewChunk(content=p, chunk_index=i, word_count=count_words(p))
        for i, p in enumerate(pieces)
    ]


def chunk_exercise(text: str) -> list[NewChunk]:
    """Split an exercise sheet at question markers.

    Text before the first question becomes an intro chunk when it is long
    enough. Falls back to standard chunking when no marker is found.
    """
    starts = find_question_starts(text)
    if not starts:
        logger.info("⚠️ No question markers found, falling back to standard chunking")
        return chunk_standard(text)

    pieces: list[tuple[str, str, str | None]] = []

    first_offset = starts[0][0]
    if first_offset > MIN_INTRO_OFFSET:
        intro = text[:first_offset].strip()
        if len(intro) > MIN_INTRO_CHARS:
            pieces.append((intro, ChunkType.STANDARD.value, None))

    for i, (offset, label) in enumerate(starts):
        end = starts[i + 1][0] if i + 1 < len(starts) else len(text)
        content = text[offset:end].strip()
        if len(content) <= MIN_QUESTION_CHARS:
            continue
        question_number = str(int(label)) if label.isdigit() else None
        pieces.append((content, ChunkType.EXERCISE_QUESTION.value, question_number))

    logger.info(f"✅ Exercise chunking: {len(pieces)} chunks from {len(starts)} markers")
    return [
        NewChunk(
            content=content,
            chunk_index=i,
            word_count=count_words(content),
            chunk_type=chunk_type,
            question_number=question_number,
        )
        for i, (content, chunk_type, question_number) in enumerate(pieces)
    ]


def chunk_document(file_name: str, text: str) -> tuple[list[NewChunk], bool]:
    """Chunk extracted text. Returns (chunks, is_exercise)."""
    is_exercise = detect_is_exercise(file_name, text)
    chunks = chunk_exercise(text) if is_exercise else chunk_standard(text)
    return chunks, is_exercise
