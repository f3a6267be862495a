"""Application configuration defaults."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from docchat.index.similarity import DEFAULT_THRESHOLD, DEFAULT_TOP_K
from docchat.utils.text import DEFAULT_CHUNK_SIZE, DEFAULT_OVERLAP

DEFAULT_COMPLETION_MODEL = "gpt-4o-mini"


def _get_default_db_path() -> Path:
    """Get the default database path based on platform and execution context."""
    user_db = Path.home() / "Documents" / "DocChat" / "docchat.db"

    if getattr(sys, "frozen", False):
        return user_db

    # When running from source, prefer local data/ if it exists
    local_db = Path("data/docchat.db")
    if local_db.exists():
        return local_db

    return user_db


@dataclass(slots=True)
class AppConfig:
    db_path: Path | None = None
    provider: Literal["openai", "local"] = "openai"
    # None picks the provider's default model
    embedding_model: str | None = None
    completion_model: str = DEFAULT_COMPLETION_MODEL
    chunk_size: int = DEFAULT_CHUNK_SIZE
    overlap: int = DEFAULT_OVERLAP
    top_k: int = DEFAULT_TOP_K
    threshold: float = DEFAULT_THRESHOLD
    embed_batch_size: int = 100
    api_key: str | None = None
    language: str | None = None

    def __post_init__(self) -> None:
        if self.db_path is None:
            self.db_path = _get_default_db_path()

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path
