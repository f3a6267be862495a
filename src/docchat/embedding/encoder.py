"""Embedding providers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Literal, Protocol, Sequence

import numpy as np
import openai
from sentence_transformers import SentenceTransformer

from docchat.errors import ProviderError

if TYPE_CHECKING:
    from docchat.config import AppConfig

DEFAULT_OPENAI_MODEL = "text-embedding-3-small"
DEFAULT_LOCAL_MODEL = "sentence-transformers/all-mpnet-base-v2"
DEFAULT_BATCH_SIZE = 100

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    """Anything that turns text into fixed-length vectors."""

    max_batch_size: int

    @property
    def dimension(self) -> int | None: ...

    def embed(self, text: str) -> List[float]: ...

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]: ...

    def validate_credential(self) -> bool: ...


def embed_in_batches(
    provider: EmbeddingProvider, texts: Sequence[str], *, batch_size: int = DEFAULT_BATCH_SIZE
) -> List[List[float]]:
    """Embed texts in sequential batches no larger than the provider allows.

    The first failing batch aborts the remaining ones.
    """
    size = max(1, min(batch_size, provider.max_batch_size))
    vectors: List[List[float]] = []
    for start in range(0, len(texts), size):
        batch = list(texts[start : start + size])
        logger.debug("Embedding batch %d-%d of %d", start, start + len(batch), len(texts))
        vectors.extend(provider.embed_batch(batch))
    return vectors


class OpenAIEmbeddingProvider:
    """Embeddings from the OpenAI API.

    One instance wraps one client bound to one credential; build a new provider
    when the key changes.
    """

    max_batch_size = DEFAULT_BATCH_SIZE

    def __init__(
        self,
        api_key: str,
        *,
        model: str = DEFAULT_OPENAI_MODEL,
        client: openai.OpenAI | None = None,
    ) -> None:
        self.model = model
        self._client = client or openai.OpenAI(api_key=api_key)
        self._dimension: int | None = None

    @property
    def dimension(self) -> int | None:
        """Vector size, known after the first successful call."""
        return self._dimension

    def embed(self, text: str) -> List[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        if len(texts) > self.max_batch_size:
            raise ValueError(f"Batch size {len(texts)} exceeds limit {self.max_batch_size}")
        if not texts:
            return []
        try:
            response = self._client.embeddings.create(model=self.model, input=list(texts))
        except openai.OpenAIError as exc:
            logger.error("Embedding request failed: %s", exc)
            raise ProviderError(f"Embedding request failed: {exc}") from exc

        vectors = [list(item.embedding) for item in response.data]
        if vectors:
            self._dimension = len(vectors[0])
        return vectors

    def validate_credential(self) -> bool:
        try:
            self._client.models.list()
        except openai.OpenAIError as exc:
            logger.warning("API key validation failed: %s", exc)
            return False
        return True


@dataclass(slots=True)
class EmbeddingConfig:
    model_name: str = DEFAULT_LOCAL_MODEL
    batch_size: int = 16
    normalize: bool = True
    backend: Literal["torch", "onnx", "openvino"] = "torch"
    device: str | None = None


class SentenceTransformerProvider:
    """Thin wrapper around `SentenceTransformer` running locally.

    Needs no credential, so ``validate_credential`` always succeeds.
    """

    max_batch_size = DEFAULT_BATCH_SIZE

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()
        try:
            self._model = SentenceTransformer(
                self.config.model_name,
                backend=self.config.backend,
                device=self.config.device,
            )
        except Exception as exc:
            raise ProviderError(f"Unable to load model {self.config.model_name}: {exc}") from exc
        self._dimension = int(self._model.get_sentence_embedding_dimension())
        logger.info(
            "Loaded %s (backend: %s, dimension: %d)",
            self.config.model_name,
            self.config.backend,
            self._dimension,
        )

    @property
    def dimension(self) -> int:
        return self._dimension

    def embed(self, text: str) -> List[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        try:
            embeddings = self._model.encode(
                list(texts),
                batch_size=self.config.batch_size,
                show_progress_bar=False,
                convert_to_numpy=True,
                normalize_embeddings=self.config.normalize,
            )
        except Exception as exc:
            raise ProviderError(f"Local embedding failed: {exc}") from exc
        return np.asarray(embeddings, dtype=np.float64).tolist()

    def validate_credential(self) -> bool:
        return True


def create_embedding_provider(config: "AppConfig") -> EmbeddingProvider:
    """Build the embedding provider selected by ``config.provider``."""
    if config.provider == "local":
        return SentenceTransformerProvider(
            EmbeddingConfig(model_name=config.embedding_model or DEFAULT_LOCAL_MODEL)
        )
    if not config.api_key:
        raise ProviderError("An OpenAI API key is required (set OPENAI_API_KEY or --api-key)")
    return OpenAIEmbeddingProvider(
        config.api_key, model=config.embedding_model or DEFAULT_OPENAI_MODEL
    )
