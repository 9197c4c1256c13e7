"""Async OpenAI client wrapper and the provider protocols used by pipeline stages.

Classes:
    EmbeddingProvider: Protocol for anything that turns texts into vectors.
    TextGenerator: Protocol for anything that turns a prompt into text.
    OpenAIService: Embeddings and chat completions with retry semantics, raising ProviderError on failure.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol, Sequence

from openai import AsyncOpenAI, OpenAIError
from tenacity import RetryError, retry, stop_after_attempt, wait_exponential

from conversation_analysis.core.config import Settings, get_settings
from conversation_analysis.core.errors import ProviderError

_LOGGER = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    async def embed(self, texts: Sequence[str]) -> list[list[float]]: ...


class TextGenerator(Protocol):
    async def generate(
        self,
        prompt: str,
        *,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        json_mode: bool = False,
    ) -> str: ...


class OpenAIService:
    def __init__(self, client: Optional[AsyncOpenAI] = None, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        api_key = settings.openai_api_key.get_secret_value() if settings.openai_api_key else None
        if client is not None:
            self._client = client
        elif api_key:
            self._client = AsyncOpenAI(api_key=api_key)
        else:
            self._client = None
        self._settings = settings

    @property
    def chat_model(self) -> str:
        return self._settings.openai_chat_model

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        docs = list(texts)
        if not docs:
            return []
        if self._client is None:
            raise ProviderError("OpenAI client not configured. Set OPENAI_API_KEY.")

        payload = dict(model=self._settings.openai_embedding_model, input=docs)
        try:
            response = await _retry_embeddings(
                self._client, payload, self._settings.openai_embedding_fallback_model
            )
        except RetryError as exc:
            raise ProviderError(f"Embedding request failed: {exc.last_attempt.exception()}") from exc
        except OpenAIError as exc:
            raise ProviderError(f"Embedding request failed: {exc}") from exc

        vectors = [item.embedding for item in sorted(response.data, key=lambda item: item.index)]
        if len(vectors) != len(docs):
            raise ProviderError(f"Embedding provider returned {len(vectors)} vectors for {len(docs)} texts")
        return vectors

    async def generate(
        self,
        prompt: str,
        *,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        json_mode: bool = False,
    ) -> str:
        if self._client is None:
            raise ProviderError("OpenAI client not configured. Set OPENAI_API_KEY.")

        messages: list[dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt.strip()})
        messages.append({"role": "user", "content": prompt})

        payload: dict[str, Any] = dict(
            model=self._settings.openai_chat_model,
            messages=messages,
            n=1,
        )
        if temperature is not None:
            payload["temperature"] = temperature
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        try:
            response = await _retry_chat(self._client, payload)
        except RetryError as exc:
            raise ProviderError(f"Chat completion failed: {exc.last_attempt.exception()}") from exc
        except OpenAIError as exc:
            raise ProviderError(f"Chat completion failed: {exc}") from exc

        content = getattr(response.choices[0].message, "content", "") or ""
        if not content.strip():
            raise ProviderError("Chat completion returned no content")
        return content.strip()


@retry(wait=wait_exponential(multiplier=1, min=1, max=20), stop=stop_after_attempt(5))
async def _retry_chat(client: AsyncOpenAI, payload: dict[str, Any]):
    return await client.chat.completions.create(**payload)


@retry(wait=wait_exponential(multiplier=1, min=1, max=20), stop=stop_after_attempt(5))
async def _retry_embeddings(client: AsyncOpenAI, payload: dict[str, Any], fallback_model: str | None):
    try:
        return await client.embeddings.create(**payload)
    except OpenAIError:
        if not fallback_model or payload.get("model") == fallback_model:
            raise
        _LOGGER.warning("Embedding model %s failed; retrying with %s", payload.get("model"), fallback_model)
        return await client.embeddings.create(**{**payload, "model": fallback_model})
