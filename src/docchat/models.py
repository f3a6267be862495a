"""Core DocChat data models."""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import List, Sequence


def new_document_id() -> str:
    """Return a fresh document id of the form ``doc-<millis>-<suffix>``."""
    return f"doc-{int(time.time() * 1000)}-{secrets.token_hex(5)}"


def chunk_id(document_id: str, sequence: int) -> str:
    return f"{document_id}-chunk-{sequence}"


@dataclass(slots=True, frozen=True)
class Chunk:
    """Contiguous excerpt of a document, the unit of retrieval.

    Offsets refer to the normalized document text.
    """

    id: str
    document_id: str
    content: str
    start_index: int
    end_index: int
    embedding: List[float] = field(default_factory=list)

    def with_embedding(self, embedding: Sequence[float]) -> "Chunk":
        return replace(self, embedding=[float(value) for value in embedding])


@dataclass(slots=True)
class Document:
    """A stored document and the chunks it owns."""

    id: str
    name: str
    content: str
    chunks: List[Chunk] = field(default_factory=list)
    uploaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(slots=True)
class SearchResult:
    chunk: Chunk
    similarity: float
    document_name: str


@dataclass(slots=True)
class ChunkReference:
    """Context passage handed to a completion provider."""

    document_name: str
    content: str
    similarity: float

    @classmethod
    def from_result(cls, result: SearchResult) -> "ChunkReference":
        return cls(
            document_name=result.document_name,
            content=result.chunk.content,
            similarity=result.similarity,
        )


@dataclass(slots=True)
class StoreStats:
    document_count: int = 0
    chunk_count: int = 0
