"""Streaming answer generation over retrieved context."""

from __future__ import annotations

import logging
from typing import Dict, Iterator, List, Protocol, Sequence

import openai

from docchat.config import DEFAULT_COMPLETION_MODEL, AppConfig
from docchat.errors import ProviderError
from docchat.models import ChunkReference

LOGGER = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a helpful assistant that answers questions based on the provided context.\n"
    "If the answer cannot be found in the context, say so clearly.\n"
    "Always cite which part of the context you used for your answer."
)


class CompletionProvider(Protocol):
    def stream_completion(
        self, question: str, context: Sequence[ChunkReference]
    ) -> Iterator[str]: ...


def format_context(context: Sequence[ChunkReference]) -> str:
    return "\n\n---\n\n".join(
        f"[Source {number}: {reference.document_name}]\n{reference.content}"
        for number, reference in enumerate(context, start=1)
    )


def build_messages(
    question: str, context: Sequence[ChunkReference], language: str | None = None
) -> List[Dict[str, str]]:
    """Build the chat messages for a question and its supporting passages."""
    system = SYSTEM_PROMPT
    if language:
        system += f"\nAnswer in {language}."
    user = (
        f"Context:\n{format_context(context)}\n\n"
        f"Question: {question}\n\n"
        "Answer the question using the context above and name the sources you used."
    )
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]


class OpenAIChatProvider:
    """Chat completions streamed from the OpenAI API.

    The returned iterator is lazy and can be consumed once. Stop iterating to
    abandon an answer; the request itself is not aborted.
    """

    def __init__(
        self,
        api_key: str,
        *,
        model: str = DEFAULT_COMPLETION_MODEL,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        language: str | None = None,
        client: openai.OpenAI | None = None,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.language = language
        self._client = client or openai.OpenAI(api_key=api_key)

    def stream_completion(
        self, question: str, context: Sequence[ChunkReference]
    ) -> Iterator[str]:
        try:
            stream = self._client.chat.completions.create(
                model=self.model,
                messages=build_messages(question, context, self.language),
                stream=True,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
            for event in stream:
                if not event.choices:
                    continue
                content = event.choices[0].delta.content
                if content:
                    yield content
        except openai.OpenAIError as exc:
            LOGGER.error("Completion request failed: %s", exc)
            raise ProviderError(f"Completion request failed: {exc}") from exc


def create_completion_provider(config: AppConfig) -> CompletionProvider:
    if not config.api_key:
        raise ProviderError("An OpenAI API key is required (set OPENAI_API_KEY or --api-key)")
    return OpenAIChatProvider(
        config.api_key, model=config.completion_model, language=config.language
    )
