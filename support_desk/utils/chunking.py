"""Utilities for splitting documents into manageable chunks."""

from __future__ import annotations

import re
from typing import Dict, Iterator, List

from ..errors import ConfigurationError
from ..models import TextChunk, utcnow

DEFAULT_CHUNK_SIZE = 500
DEFAULT_CHUNK_OVERLAP = 50
DEFAULT_MIN_CHUNK_SIZE = 100

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_PARAGRAPH_JOINER = "\n\n"


def _windows(text: str, size: int, step: int) -> Iterator[tuple[int, int]]:
    """Yield ``(start, end)`` windows over ``text``, stopping at the end."""

    start = 0
    while start < len(text):
        end = min(len(text), start + size)
        yield start, end
        if end >= len(text):
            break
        start += step


class Chunker:
    """Split raw text into overlapping, size-bounded :class:`TextChunk` objects.

    Sizes are measured in characters. In paragraph mode blank lines are the
    preferred split points and only paragraphs longer than ``max_chunk_size``
    are cut with a sliding window. In fixed-size mode the whole text is
    windowed directly.
    """

    def __init__(
        self,
        *,
        max_chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
        min_chunk_size: int = DEFAULT_MIN_CHUNK_SIZE,
        split_by_paragraph: bool = True,
    ) -> None:
        if max_chunk_size <= 0:
            raise ConfigurationError("max_chunk_size must be positive")
        if min_chunk_size <= 0:
            raise ConfigurationError("min_chunk_size must be positive")
        if min_chunk_size > max_chunk_size:
            raise ConfigurationError("min_chunk_size cannot exceed max_chunk_size")
        if chunk_overlap < 0 or chunk_overlap >= max_chunk_size:
            raise ConfigurationError("chunk_overlap must be in [0, max_chunk_size)")

        self.max_chunk_size = max_chunk_size
        self.chunk_overlap = chunk_overlap
        self.min_chunk_size = min_chunk_size
        self.split_by_paragraph = split_by_paragraph

    @property
    def step(self) -> int:
        return self.max_chunk_size - self.chunk_overlap

    def chunk(
        self,
        text: str,
        document_id: str,
        *,
        source_name: str = "",
        source_type: str = "text",
    ) -> List[TextChunk]:
        """Split ``text`` into chunks whose ids are ``<document_id>-<index>``."""

        if not text or not text.strip():
            return []

        if self.split_by_paragraph:
            segments = self._split_paragraphs(text)
        else:
            segments = self._split_fixed(text)

        created_at = utcnow().isoformat()
        chunks: List[TextChunk] = []
        for segment in segments:
            if not segment.strip():
                continue
            index = len(chunks)
            chunks.append(
                TextChunk(
                    id=f"{document_id}-{index}",
                    document_id=document_id,
                    content=segment,
                    index=index,
                    metadata={
                        "source_name": source_name,
                        "source_type": source_type,
                        "size": len(segment),
                        "created_at": created_at,
                    },
                )
            )
        return chunks

    # ------------------------------------------------------------------
    def _split_paragraphs(self, text: str) -> List[str]:
        segments: List[str] = []
        buffer = ""

        for paragraph in _PARAGRAPH_BREAK.split(text):
            paragraph = paragraph.strip()
            if not paragraph:
                continue

            if len(paragraph) > self.max_chunk_size:
                if buffer:
                    segments.append(buffer)
                    buffer = ""
                segments.extend(
                    paragraph[start:end]
                    for start, end in _windows(paragraph, self.max_chunk_size, self.step)
                )
                continue

            if buffer and len(buffer) + len(_PARAGRAPH_JOINER) + len(paragraph) > self.max_chunk_size:
                segments.append(buffer)
                buffer = paragraph
            elif buffer:
                buffer = buffer + _PARAGRAPH_JOINER + paragraph
            else:
                buffer = paragraph

        if buffer:
            segments.append(buffer)
        return segments

    def _split_fixed(self, text: str) -> List[str]:
        segments: List[str] = []
        for start, end in _windows(text, self.max_chunk_size, self.step):
            window = text[start:end]
            # Short windows are only kept when they carry the end of the text.
            if len(window) >= self.min_chunk_size or end >= len(text):
                segments.append(window)
        return segments


def chunk_stats(chunks: List[TextChunk]) -> Dict[str, int]:
    """Summarise chunk sizes for logging and upload responses."""

    if not chunks:
        return {"total": 0, "total_size": 0, "avg_size": 0, "min_size": 0, "max_size": 0}

    sizes = [len(chunk.content) for chunk in chunks]
    total_size = sum(sizes)
    return {
        "total": len(chunks),
        "total_size": total_size,
        "avg_size": round(total_size / len(chunks)),
        "min_size": min(sizes),
        "max_size": max(sizes),
    }
