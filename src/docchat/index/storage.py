"""SQLite-backed document and chunk store with brute-force vector search."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence

import numpy as np

from docchat.errors import StoreError
from docchat.index.similarity import (
    DEFAULT_THRESHOLD,
    DEFAULT_TOP_K,
    cosine_similarities,
    select_top_k,
)
from docchat.models import Chunk, Document, SearchResult, StoreStats

LOGGER = logging.getLogger(__name__)

UNKNOWN_DOCUMENT = "Unknown"
_EMBEDDING_DTYPE = "<f8"


def _encode_embedding(embedding: Sequence[float]) -> bytes:
    return np.asarray(embedding, dtype=_EMBEDDING_DTYPE).tobytes()


def _decode_embedding(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=_EMBEDDING_DTYPE)


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        document_id=row["document_id"],
        content=row["content"],
        start_index=row["start_index"],
        end_index=row["end_index"],
        embedding=_decode_embedding(row["embedding"]).tolist(),
    )


class SQLiteVectorStore:
    """Persistence layer for documents, their chunks and chunk embeddings."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        with self._guard():
            self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "SQLiteVectorStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @staticmethod
    @contextmanager
    def _guard() -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self._guard():
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    content TEXT NOT NULL,
                    uploaded_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """CREATE INDEX IF NOT EXISTS idx_documents_name
                    ON documents(name)
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS chunks (
                    id TEXT PRIMARY KEY,
                    document_id TEXT NOT NULL,
                    content TEXT NOT NULL,
                    start_index INTEGER NOT NULL,
                    end_index INTEGER NOT NULL,
                    embedding BLOB NOT NULL
                )
                """
            )
            conn.execute(
                """CREATE INDEX IF NOT EXISTS idx_chunks_document_id
                    ON chunks(document_id)
                """
            )

    def _put_document(self, conn: sqlite3.Connection, document: Document) -> None:
        conn.execute(
            """
            INSERT INTO documents(id, name, content, uploaded_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                content = excluded.content,
                uploaded_at = excluded.uploaded_at
            """,
            (document.id, document.name, document.content, document.uploaded_at.isoformat()),
        )

    def _put_chunks(self, conn: sqlite3.Connection, chunks: Sequence[Chunk]) -> None:
        conn.executemany(
            """
            INSERT INTO chunks(id, document_id, content, start_index, end_index, embedding)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                document_id = excluded.document_id,
                content = excluded.content,
                start_index = excluded.start_index,
                end_index = excluded.end_index,
                embedding = excluded.embedding
            """,
            [
                (
                    chunk.id,
                    chunk.document_id,
                    chunk.content,
                    chunk.start_index,
                    chunk.end_index,
                    sqlite3.Binary(_encode_embedding(chunk.embedding)),
                )
                for chunk in chunks
            ],
        )

    def save_document(self, document: Document) -> None:
        """Insert or overwrite the document row. Chunks are saved separately."""
        with self.transaction() as conn:
            self._put_document(conn, document)

    def save_chunks(self, chunks: Sequence[Chunk]) -> None:
        """Insert or overwrite a batch of chunks; all or none become visible."""
        if not chunks:
            return
        with self.transaction() as conn:
            self._put_chunks(conn, chunks)

    def add_document(self, document: Document) -> None:
        """Persist a document together with its chunks in one transaction."""
        with self.transaction() as conn:
            self._put_document(conn, document)
            if document.chunks:
                self._put_chunks(conn, document.chunks)
        LOGGER.debug("Stored %s with %d chunks", document.id, len(document.chunks))

    def _chunks_by_document(self, document_id: Optional[str] = None) -> Dict[str, List[Chunk]]:
        if document_id is None:
            rows = self._conn.execute("SELECT * FROM chunks ORDER BY rowid").fetchall()
        else:
            rows = self._conn.execute(
                "SELECT * FROM chunks WHERE document_id = ? ORDER BY rowid", (document_id,)
            ).fetchall()
        grouped: Dict[str, List[Chunk]] = {}
        for row in rows:
            grouped.setdefault(row["document_id"], []).append(_row_to_chunk(row))
        return grouped

    @staticmethod
    def _row_to_document(row: sqlite3.Row, chunks: List[Chunk]) -> Document:
        return Document(
            id=row["id"],
            name=row["name"],
            content=row["content"],
            chunks=chunks,
            uploaded_at=datetime.fromisoformat(row["uploaded_at"]),
        )

    def get_all_documents(self) -> List[Document]:
        """Return every document, in insertion order, with its chunks attached."""
        with self._guard():
            rows = self._conn.execute("SELECT * FROM documents ORDER BY rowid").fetchall()
            chunks = self._chunks_by_document()
        return [self._row_to_document(row, chunks.get(row["id"], [])) for row in rows]

    def get_document(self, document_id: str) -> Optional[Document]:
        with self._guard():
            row = self._conn.execute(
                "SELECT * FROM documents WHERE id = ?", (document_id,)
            ).fetchone()
            if row is None:
                return None
            chunks = self._chunks_by_document(document_id)
        return self._row_to_document(row, chunks.get(document_id, []))

    def iter_chunks(self) -> Iterator[Chunk]:
        with self._guard():
            rows = self._conn.execute("SELECT * FROM chunks ORDER BY rowid").fetchall()
        for row in rows:
            yield _row_to_chunk(row)

    def delete_document(self, document_id: str) -> bool:
        """Delete a document and every chunk it owns.

        Returns False when no document had that id; orphaned chunks carrying
        the id are still removed.
        """
        with self.transaction() as conn:
            deleted = conn.execute("DELETE FROM documents WHERE id = ?", (document_id,)).rowcount
            removed = conn.execute(
                "DELETE FROM chunks WHERE document_id = ?", (document_id,)
            ).rowcount
        if deleted:
            LOGGER.info("Deleted document %s (%d chunks)", document_id, removed)
        return bool(deleted)

    def search_similar_chunks(
        self,
        query_embedding: Sequence[float],
        *,
        top_k: int = DEFAULT_TOP_K,
        threshold: float = DEFAULT_THRESHOLD,
    ) -> List[SearchResult]:
        """Rank every stored chunk against the query embedding.

        Chunks whose embedding dimension differs from the query score 0.0.
        """
        with self._guard():
            rows = self._conn.execute(
                """
                SELECT
                    c.*,
                    COALESCE(d.name, ?) AS document_name
                FROM chunks c
                LEFT JOIN documents d ON d.id = c.document_id
                ORDER BY c.rowid
                """,
                (UNKNOWN_DOCUMENT,),
            ).fetchall()

        if not rows:
            return []

        dimension = len(query_embedding)
        vectors = [_decode_embedding(row["embedding"]) for row in rows]
        scores = np.zeros(len(rows), dtype=np.float64)
        matching = [idx for idx, vector in enumerate(vectors) if vector.shape[0] == dimension]
        if matching:
            matrix = np.vstack([vectors[idx] for idx in matching])
            scores[matching] = cosine_similarities(query_embedding, matrix)
        if len(matching) < len(rows):
            LOGGER.debug(
                "%d chunks have a dimension other than %d", len(rows) - len(matching), dimension
            )

        ranked = select_top_k(
            ((idx, float(scores[idx])) for idx in range(len(rows))),
            top_k=top_k,
            threshold=threshold,
        )
        return [
            SearchResult(
                chunk=_row_to_chunk(rows[idx]),
                similarity=score,
                document_name=rows[idx]["document_name"],
            )
            for idx, score in ranked
        ]

    def clear_all_data(self) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM documents")
            conn.execute("DELETE FROM chunks")

    def get_stats(self) -> StoreStats:
        with self._guard():
            documents = self._conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
            chunks = self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
        return StoreStats(document_count=documents, chunk_count=chunks)
