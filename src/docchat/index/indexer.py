"""Document ingestion pipeline."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

from docchat.embedding.encoder import DEFAULT_BATCH_SIZE, EmbeddingProvider, embed_in_batches
from docchat.errors import DocChatError, InputError
from docchat.index.storage import SQLiteVectorStore
from docchat.ingestion.loader import load_text
from docchat.models import Document, new_document_id
from docchat.utils.files import iter_document_paths
from docchat.utils.text import DEFAULT_CHUNK_SIZE, DEFAULT_OVERLAP, chunk_text

LOGGER = logging.getLogger(__name__)


def find_documents(paths: Sequence[Path]) -> list[Path]:
    """Find all supported documents under the given paths."""
    return list(iter_document_paths(paths))


@dataclass(slots=True)
class IndexStats:
    inserted: int = 0
    skipped: int = 0
    failed: int = 0
    processed_files: list[Path] = field(default_factory=list)
    document_ids: list[str] = field(default_factory=list)

    def increment(self, status: str, path: Path) -> None:
        if status == "inserted":
            self.inserted += 1
        elif status == "skipped":
            self.skipped += 1
        else:
            self.failed += 1
        self.processed_files.append(path)


class Indexer:
    """Chunks, embeds and stores documents."""

    def __init__(
        self,
        embedder: EmbeddingProvider,
        store: SQLiteVectorStore,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        overlap: int = DEFAULT_OVERLAP,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.chunk_size = chunk_size
        self.overlap = overlap
        self.batch_size = batch_size

    def ingest_text(self, name: str, text: str) -> Document:
        """Chunk, embed and persist one document.

        Raises ``InputError`` when the text yields no chunks. Provider and
        store failures propagate; nothing is written unless every batch was
        embedded.
        """
        document_id = new_document_id()
        drafts = chunk_text(
            text, document_id, chunk_size=self.chunk_size, overlap=self.overlap
        )
        if not drafts:
            raise InputError(f"No chunks created from {name}")

        vectors = embed_in_batches(
            self.embedder, [draft.content for draft in drafts], batch_size=self.batch_size
        )
        if len(vectors) != len(drafts):
            raise DocChatError(
                f"Embedding count mismatch for {name}: {len(vectors)} for {len(drafts)} chunks"
            )

        document = Document(
            id=document_id,
            name=name,
            content=text,
            chunks=[draft.with_embedding(vector) for draft, vector in zip(drafts, vectors)],
        )
        self.store.add_document(document)
        LOGGER.info("Indexed %s as %s (%d chunks)", name, document_id, len(document.chunks))
        return document

    def index(self, paths: Sequence[Path]) -> IndexStats:
        """Index every supported document found under the given paths."""
        files = find_documents(paths)
        stats = IndexStats()
        if not files:
            LOGGER.warning("No supported documents found")
            return stats

        for path in files:
            LOGGER.info("Processing: %s", path)
            try:
                document = self.ingest_text(path.name, load_text(path))
            except InputError as exc:
                LOGGER.warning("Skipping %s: %s", path, exc)
                stats.increment("skipped", path)
            except (DocChatError, OSError) as exc:
                LOGGER.error("Failed to process %s: %s", path, exc)
                stats.increment("failed", path)
            else:
                stats.increment("inserted", path)
                stats.document_ids.append(document.id)

        return stats
