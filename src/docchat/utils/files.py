"""Utility helpers for working with files."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Iterator

from docchat.ingestion.loader import SUPPORTED_SUFFIXES


def is_supported(path: Path) -> bool:
    return path.suffix.lower() in SUPPORTED_SUFFIXES


def iter_document_paths(inputs: Iterable[Path]) -> Iterator[Path]:
    """Yield supported document paths, descending into directories."""
    for item in inputs:
        if item.is_dir():
            yield from iter_document_paths(
                sorted(child for child in item.rglob("*") if child.is_file())
            )
        elif item.is_file() and is_supported(item):
            yield item
