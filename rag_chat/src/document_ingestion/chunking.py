import math
import re
from typing import List

_PARAGRAPH_BREAK = re.compile(r"\n\n+")


def chunk_text(text: str, max_chunk_size: int = 1000) -> List[str]:
    """
    Naive paragraph chunking.

    Paragraphs (split on blank-line runs) are trimmed and packed greedily into
    chunks joined by a blank line. A chunk is closed when the next paragraph
    would push it past `max_chunk_size`; a single paragraph larger than the
    limit is kept whole as its own chunk.
    """
    chunks: List[str] = []
    current = ""

    for para in _PARAGRAPH_BREAK.split(text):
        trimmed = para.strip()
        if not trimmed:
            continue

        if current and len(current) + len(trimmed) > max_chunk_size:
            chunks.append(current.strip())
            current = ""

        current += ("\n\n" if current else "") + trimmed

    if current.strip():
        chunks.append(current.strip())

    return chunks if chunks else [text.strip()]


def estimate_tokens(text: str) -> int:
    """Rough token estimate, ~4 characters per token."""
    return math.ceil(len(text) / 4)
