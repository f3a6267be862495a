"""FastAPI application exposing DocChat over HTTP."""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Iterator, List, TypeVar

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from docchat import __version__
from docchat.completion.chat import CompletionProvider, create_completion_provider
from docchat.config import AppConfig
from docchat.embedding.encoder import EmbeddingProvider, create_embedding_provider
from docchat.errors import DocChatError, InputError, ProviderError
from docchat.index.indexer import Indexer
from docchat.index.search import Searcher
from docchat.index.similarity import DEFAULT_THRESHOLD, DEFAULT_TOP_K
from docchat.index.storage import SQLiteVectorStore
from docchat.models import Document

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

SOURCES_HEADER = "X-DocChat-Sources"

app = FastAPI(title="DocChat API", version=__version__)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[SOURCES_HEADER],
)


class DocumentPayload(BaseModel):
    name: str
    text: str


class SearchPayload(BaseModel):
    query: str
    top_k: int = DEFAULT_TOP_K
    threshold: float = Field(default=DEFAULT_THRESHOLD, ge=-1.0, le=1.0)


class AskPayload(BaseModel):
    question: str
    top_k: int = DEFAULT_TOP_K
    threshold: float = Field(default=DEFAULT_THRESHOLD, ge=-1.0, le=1.0)


def get_config() -> AppConfig:
    """Build the configuration from the environment."""
    db = os.environ.get("DOCCHAT_DB")
    return AppConfig(
        db_path=Path(db) if db else None,
        provider=os.environ.get("DOCCHAT_PROVIDER", "openai"),  # type: ignore[arg-type]
        api_key=os.environ.get("OPENAI_API_KEY"),
        language=os.environ.get("DOCCHAT_LANGUAGE"),
    )


def get_embedder(config: AppConfig = Depends(get_config)) -> EmbeddingProvider:
    return create_embedding_provider(config)


def get_completion(config: AppConfig = Depends(get_config)) -> CompletionProvider:
    return create_completion_provider(config)


def _resolve_db_path(config: AppConfig) -> Path:
    return config.resolve_db_path(Path.cwd())


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _with_store(config: AppConfig, action: Callable[[SQLiteVectorStore], T]) -> T:
    """Run ``action`` against a store opened (and closed) in the calling thread."""
    resolved_db = _resolve_db_path(config)
    _ensure_db_parent(resolved_db)
    with SQLiteVectorStore(resolved_db) as store:
        return action(store)


def _document_summary(document: Document) -> dict[str, Any]:
    return {
        "id": document.id,
        "name": document.name,
        "chunk_count": len(document.chunks),
        "uploaded_at": document.uploaded_at.isoformat(),
    }


@app.on_event("startup")
async def startup_event() -> None:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")


@app.exception_handler(DocChatError)
async def docchat_error_handler(request: Request, exc: DocChatError) -> JSONResponse:
    if isinstance(exc, InputError):
        status_code = 400
    elif isinstance(exc, ProviderError):
        status_code = 502
    else:
        status_code = 500
    if not isinstance(exc, InputError):
        LOGGER.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.get("/validate")
async def validate_credential(
    embedder: EmbeddingProvider = Depends(get_embedder),
) -> dict[str, bool]:
    """Check the configured credential against the embedding provider."""
    valid = await asyncio.to_thread(embedder.validate_credential)
    return {"valid": valid}


@app.post("/documents")
async def add_document(
    payload: DocumentPayload,
    config: AppConfig = Depends(get_config),
    embedder: EmbeddingProvider = Depends(get_embedder),
) -> dict[str, Any]:
    name = payload.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Empty document name")

    def _ingest(store: SQLiteVectorStore) -> Document:
        indexer = Indexer(
            embedder,
            store,
            chunk_size=config.chunk_size,
            overlap=config.overlap,
            batch_size=config.embed_batch_size,
        )
        return indexer.ingest_text(name, payload.text)

    document = await asyncio.to_thread(_with_store, config, _ingest)
    return {"status": "ok", "document": _document_summary(document)}


@app.get("/documents")
async def list_documents(config: AppConfig = Depends(get_config)) -> dict[str, Any]:
    """List all indexed documents in the database."""

    def _list(store: SQLiteVectorStore) -> dict[str, Any]:
        documents = store.get_all_documents()
        stats = store.get_stats()
        return {
            "documents": [_document_summary(document) for document in documents],
            "stats": {"document_count": stats.document_count, "chunk_count": stats.chunk_count},
        }

    return await asyncio.to_thread(_with_store, config, _list)


@app.delete("/documents/{doc_id}")
async def delete_document(doc_id: str, config: AppConfig = Depends(get_config)) -> dict[str, Any]:
    """Delete a document and its chunks."""
    deleted = await asyncio.to_thread(
        _with_store, config, lambda store: store.delete_document(doc_id)
    )
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Document with ID {doc_id} not found")
    return {"status": "ok", "deleted_id": doc_id}


@app.delete("/documents")
async def clear_documents(config: AppConfig = Depends(get_config)) -> dict[str, str]:
    await asyncio.to_thread(_with_store, config, lambda store: store.clear_all_data())
    return {"status": "ok"}


@app.get("/stats")
async def get_stats(config: AppConfig = Depends(get_config)) -> dict[str, int]:
    stats = await asyncio.to_thread(_with_store, config, lambda store: store.get_stats())
    return {"document_count": stats.document_count, "chunk_count": stats.chunk_count}


@app.post("/search")
async def search_documents(
    payload: SearchPayload,
    config: AppConfig = Depends(get_config),
    embedder: EmbeddingProvider = Depends(get_embedder),
) -> dict[str, List[dict[str, Any]]]:
    query = payload.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Empty query")

    top_k = max(1, min(payload.top_k, 50))
    results = await asyncio.to_thread(
        _with_store,
        config,
        lambda store: Searcher(embedder, store).search(
            query, top_k=top_k, threshold=payload.threshold
        ),
    )
    return {
        "results": [
            {
                "chunk_id": result.chunk.id,
                "document_id": result.chunk.document_id,
                "document_name": result.document_name,
                "content": result.chunk.content,
                "similarity": result.similarity,
            }
            for result in results
        ]
    }


@app.post("/ask")
async def ask_question(
    payload: AskPayload,
    config: AppConfig = Depends(get_config),
    embedder: EmbeddingProvider = Depends(get_embedder),
    completion: CompletionProvider = Depends(get_completion),
) -> StreamingResponse:
    question = payload.question.strip()
    if not question:
        raise HTTPException(status_code=400, detail="Empty question")

    top_k = max(1, min(payload.top_k, 50))
    answer = await asyncio.to_thread(
        _with_store,
        config,
        lambda store: Searcher(embedder, store, completion).ask(
            question, top_k=top_k, threshold=payload.threshold
        ),
    )
    # Pull the first fragment up front so provider failures become an error
    # response instead of a truncated stream.
    first = await asyncio.to_thread(next, answer.fragments, None)
    fragments: Iterator[str] = itertools.chain([first] if first else [], answer.fragments)

    sources = json.dumps(
        [
            {
                "document_name": source.document_name,
                "content": source.content,
                "similarity": source.similarity,
            }
            for source in answer.sources
        ]
    )
    return StreamingResponse(
        fragments, media_type="text/plain; charset=utf-8", headers={SOURCES_HEADER: sources}
    )
