"""Shared fixtures."""

from __future__ import annotations

from pathlib import Path
from typing import List, Sequence

import pytest

from docchat.index.storage import SQLiteVectorStore

VOCABULARY = ("cat", "dog", "python", "sqlite", "rain", "sun", "music", "code")


class KeywordEmbedder:
    """Deterministic embedder counting vocabulary words."""

    max_batch_size = 100
    dimension = len(VOCABULARY)

    def __init__(self, *, fail_on_batch: int | None = None) -> None:
        self.batches: List[List[str]] = []
        self.calls = 0
        self.fail_on_batch = fail_on_batch

    def embed(self, text: str) -> List[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        from docchat.errors import ProviderError

        call = self.calls
        self.calls += 1
        if call == self.fail_on_batch:
            raise ProviderError("rate limited")
        self.batches.append(list(texts))
        vectors = []
        for text in texts:
            words = text.lower().replace(".", " ").replace(",", " ").split()
            vectors.append([float(words.count(term)) for term in VOCABULARY])
        return vectors

    def validate_credential(self) -> bool:
        return True


@pytest.fixture
def embedder() -> KeywordEmbedder:
    return KeywordEmbedder()


@pytest.fixture
def temp_db(tmp_path: Path):
    """Create a temporary store for testing."""
    store = SQLiteVectorStore(tmp_path / "test.db")
    yield store
    store.close()
