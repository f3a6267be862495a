"""Semantic search and question answering."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, List

from docchat.completion.chat import CompletionProvider
from docchat.embedding.encoder import EmbeddingProvider
from docchat.errors import DocChatError
from docchat.index.similarity import DEFAULT_THRESHOLD, DEFAULT_TOP_K
from docchat.index.storage import SQLiteVectorStore
from docchat.models import ChunkReference, SearchResult

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class Answer:
    """Retrieved sources plus a lazily streamed answer.

    ``fragments`` can be consumed once.
    """

    question: str
    sources: List[ChunkReference]
    fragments: Iterator[str]

    def text(self) -> str:
        return "".join(self.fragments)


class Searcher:
    """High-level API to query the vector store."""

    def __init__(
        self,
        embedder: EmbeddingProvider,
        store: SQLiteVectorStore,
        completion: CompletionProvider | None = None,
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.completion = completion

    def search(
        self,
        query: str,
        *,
        top_k: int = DEFAULT_TOP_K,
        threshold: float = DEFAULT_THRESHOLD,
    ) -> List[SearchResult]:
        embedding = self.embedder.embed(query)
        results = self.store.search_similar_chunks(embedding, top_k=top_k, threshold=threshold)
        LOGGER.debug("Query matched %d chunks", len(results))
        return results

    def ask(
        self,
        question: str,
        *,
        top_k: int = DEFAULT_TOP_K,
        threshold: float = DEFAULT_THRESHOLD,
    ) -> Answer:
        if self.completion is None:
            raise DocChatError("No completion provider configured")
        results = self.search(question, top_k=top_k, threshold=threshold)
        sources = [ChunkReference.from_result(result) for result in results]
        return Answer(
            question=question,
            sources=sources,
            fragments=self.completion.stream_completion(question, sources),
        )
