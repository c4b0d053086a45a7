"""Split oversized section text into paragraph-aligned chunks."""

from __future__ import annotations

import re
from typing import List

PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


def split_paragraphs(text: str) -> List[str]:
    return [part.strip() for part in PARAGRAPH_BREAK.split(text) if part.strip()]


def chunk_text(text: str, max_chars: int) -> List[str]:
    """Greedily pack whole paragraphs into chunks of at most ``max_chars``.

    A paragraph is never split; one longer than the budget becomes a chunk
    of its own.
    """
    if max_chars <= 0:
        raise ValueError("max_chars must be positive")
    chunks: List[str] = []
    buffer: List[str] = []
    size = 0
    for paragraph in split_paragraphs(text):
        added = len(paragraph) + (2 if buffer else 0)
        if buffer and size + added > max_chars:
            chunks.append("\n\n".join(buffer))
            buffer = []
            size = 0
            added = len(paragraph)
        buffer.append(paragraph)
        size += added
    if buffer:
        chunks.append("\n\n".join(buffer))
    return chunks
