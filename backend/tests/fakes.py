"""Deterministic stand-ins for the OpenAI-backed providers."""

from __future__ import annotations

import json
import zlib
from typing import Optional, Sequence

import numpy as np

from conversation_analysis.core.errors import ProviderError

TOPIC_AXES = {"parking": 0, "food": 1, "wifi": 2, "noise": 3}
DIM = 8


def vector_for(text: str) -> list[float]:
    vec = np.zeros(DIM)
    lowered = text.lower()
    for word, axis in TOPIC_AXES.items():
        if word in lowered:
            vec[axis] = 1.0
    rng = np.random.default_rng(zlib.crc32(text.encode("utf-8")))
    vec += rng.normal(scale=0.3, size=DIM)
    return vec.tolist()


class FakeEmbedder:
    def __init__(self, fail_after: Optional[int] = None) -> None:
        self.calls: list[list[str]] = []
        self._fail_after = fail_after

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if self._fail_after is not None and len(self.calls) >= self._fail_after:
            self.calls.append(list(texts))
            raise ProviderError("embedding service unavailable")
        self.calls.append(list(texts))
        return [vector_for(text) for text in texts]

    @property
    def embedded_texts(self) -> list[str]:
        return [text for batch in self.calls if batch for text in batch]


class FakeGenerator:
    chat_model = "fake-chat"

    def __init__(self, fail_when: Optional[str] = None, raw: Optional[str] = None) -> None:
        self.prompts: list[str] = []
        self.temperatures: list[Optional[float]] = []
        self._fail_when = fail_when
        self._raw = raw

    async def generate(
        self,
        prompt: str,
        *,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        json_mode: bool = False,
    ) -> str:
        self.prompts.append(prompt)
        self.temperatures.append(temperature)
        if self._fail_when is not None and self._fail_when in prompt:
            raise ProviderError("generation failed")
        if self._raw is not None:
            return self._raw
        if '"statement"' in prompt:
            return json.dumps({"statement": "Participants agree on this point."})
        return json.dumps({"name": "Shared Concern", "description": "Responses about a shared concern."})
