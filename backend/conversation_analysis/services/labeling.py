"""Theme names and descriptions for clusters.

Classes:
    ClusterTexts: Texts of one cluster with its size and cohesion.
    ThemeDraft: Label produced for a cluster, possibly a placeholder.

Functions:
    sample_diverse_texts(texts, limit): Evenly spaced sample across arrival order.
    fallback_theme(cluster): Deterministic placeholder label.
    label_cluster(generator, cluster, sample_size): Ask the text generator for a label.
    label_clusters(generator, clusters, sample_size): Label every cluster concurrently.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from conversation_analysis.core.errors import ProviderError
from conversation_analysis.services.openai_client import TextGenerator

_LOGGER = logging.getLogger(__name__)

LABEL_TEMPERATURE = 0.3
DEFAULT_SAMPLE_SIZE = 20

LABEL_SYSTEM_PROMPT = "You analyze participant feedback and identify the themes it contains."

LABEL_PROMPT = """Analyze these participant responses and create a concise theme:

Responses:
{responses}

Generate:
1. A short theme name (2-5 words)
2. A brief description (1-2 sentences) explaining the common thread

Respond in JSON format:
{{"name": "Theme Name", "description": "Brief description of the theme"}}"""


@dataclass(slots=True)
class ClusterTexts:
    cluster_index: int
    texts: list[str]
    cohesion: Optional[float] = None

    @property
    def size(self) -> int:
        return len(self.texts)


@dataclass(slots=True)
class ThemeDraft:
    cluster_index: int
    name: str
    description: str
    size: int
    cohesion: Optional[float] = None
    is_fallback: bool = False


def sample_diverse_texts(texts: Sequence[str], limit: int = DEFAULT_SAMPLE_SIZE) -> list[str]:
    if limit <= 0:
        return []
    if len(texts) <= limit:
        return list(texts)
    step = len(texts) / limit
    return [texts[int(idx * step)] for idx in range(limit)]


def fallback_theme(cluster: ClusterTexts) -> ThemeDraft:
    return ThemeDraft(
        cluster_index=cluster.cluster_index,
        name=f"Theme {cluster.cluster_index + 1}",
        description=f"{cluster.size} related responses",
        size=cluster.size,
        cohesion=cluster.cohesion,
        is_fallback=True,
    )


async def label_cluster(
    generator: TextGenerator,
    cluster: ClusterTexts,
    *,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
    temperature: float = LABEL_TEMPERATURE,
) -> ThemeDraft:
    sample = sample_diverse_texts(cluster.texts, sample_size)
    if not sample:
        return fallback_theme(cluster)

    numbered = "\n".join(f"{idx}. {text}" for idx, text in enumerate(sample, start=1))
    content = await generator.generate(
        LABEL_PROMPT.format(responses=numbered),
        system_prompt=LABEL_SYSTEM_PROMPT,
        temperature=temperature,
        json_mode=True,
    )
    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        raise ProviderError(f"Label output is not JSON: {content[:80]!r}") from exc
    if not isinstance(data, dict):
        raise ProviderError("Label output is not an object")

    name = data.get("name")
    description = data.get("description")
    if not isinstance(name, str) or not name.strip():
        raise ProviderError("Label output has no name")
    if not isinstance(description, str) or not description.strip():
        description = f"{cluster.size} related responses"

    return ThemeDraft(
        cluster_index=cluster.cluster_index,
        name=name.strip(),
        description=description.strip(),
        size=cluster.size,
        cohesion=cluster.cohesion,
    )


async def label_clusters(
    generator: TextGenerator,
    clusters: Sequence[ClusterTexts],
    *,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
    temperature: float = LABEL_TEMPERATURE,
) -> list[ThemeDraft]:
    """Label all clusters concurrently, ordered by descending size.

    A cluster whose call fails receives a placeholder theme; the stage itself never fails.
    """

    if not clusters:
        return []

    results = await asyncio.gather(
        *(
            label_cluster(generator, cluster, sample_size=sample_size, temperature=temperature)
            for cluster in clusters
        ),
        return_exceptions=True,
    )

    themes: list[ThemeDraft] = []
    for cluster, result in zip(clusters, results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            _LOGGER.warning("Labeling failed for cluster %d; using placeholder: %s", cluster.cluster_index, result)
            themes.append(fallback_theme(cluster))
        else:
            themes.append(result)

    themes.sort(key=lambda theme: (-theme.size, theme.cluster_index))
    return themes
