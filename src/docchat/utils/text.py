"""Text helpers including paragraph-aware chunking."""

from __future__ import annotations

import re
from typing import List

from docchat.models import Chunk, chunk_id

DEFAULT_CHUNK_SIZE = 500
DEFAULT_OVERLAP = 100

_EXCESS_NEWLINES = re.compile(r"\n{3,}")
_PARAGRAPH_BREAK = re.compile(r"\n\n+")
_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")


def normalize_text(text: str) -> str:
    """Unify line endings, collapse blank-line runs and strip the edges."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return _EXCESS_NEWLINES.sub("\n\n", text).strip()


def split_paragraphs(text: str) -> List[str]:
    return _PARAGRAPH_BREAK.split(text)


def split_sentences(paragraph: str) -> List[str]:
    return _SENTENCE_BREAK.split(paragraph)


class _ChunkBuilder:
    """Accumulates content and emits sequentially numbered chunks."""

    def __init__(self, document_id: str) -> None:
        self.document_id = document_id
        self.chunks: List[Chunk] = []
        self.content = ""
        self.start = 0

    def flush(self) -> None:
        if not self.content:
            return
        self.chunks.append(
            Chunk(
                id=chunk_id(self.document_id, len(self.chunks)),
                document_id=self.document_id,
                content=self.content,
                start_index=self.start,
                end_index=self.start + len(self.content),
            )
        )
        self.content = ""

    def restart(self, content: str, start: int) -> None:
        self.content = content
        self.start = start


def chunk_text(
    text: str,
    document_id: str,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_OVERLAP,
) -> List[Chunk]:
    """Split text into paragraph-packed chunks of at most ``chunk_size`` characters.

    Paragraphs are packed greedily; a paragraph longer than ``chunk_size`` is
    packed sentence by sentence instead. A single sentence longer than
    ``chunk_size`` is kept whole. Offsets are relative to the normalized text
    and track paragraph starts, so they are approximate within a chunk.

    ``overlap`` is accepted for interface compatibility and currently unused:
    adjacent chunks never share content.
    """
    normalized = normalize_text(text)
    if not normalized:
        return []

    builder = _ChunkBuilder(document_id)
    cursor = 0

    for raw_paragraph in split_paragraphs(normalized):
        paragraph = raw_paragraph.strip()
        if not paragraph:
            cursor += len(raw_paragraph) + 2
            continue

        if len(builder.content) + len(paragraph) + 2 <= chunk_size:
            if builder.content:
                builder.content += "\n\n" + paragraph
            else:
                builder.restart(paragraph, cursor)
        else:
            builder.flush()
            if len(paragraph) > chunk_size:
                builder.restart("", cursor)
                for sentence in split_sentences(paragraph):
                    if len(builder.content) + len(sentence) + 1 <= chunk_size:
                        builder.content = (
                            f"{builder.content} {sentence}" if builder.content else sentence
                        )
                    else:
                        builder.flush()
                        builder.restart(sentence, cursor)
            else:
                builder.restart(paragraph, cursor)

        cursor += len(raw_paragraph) + 2

    builder.flush()
    return builder.chunks
