"""Embedding stage: batched provider calls and all-or-nothing write-back.

Classes:
    EmbeddingTarget: A response id and the text to embed.

Functions:
    embed_in_batches(provider, texts, batch_size, concurrency, on_batch): Embed texts in fixed batches, preserving order.
    persist_embeddings(session, targets, vectors, model): Upsert unit-length float32 vectors by response id.
    load_embeddings(session, response_ids): Read stored vectors back as numpy arrays.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence
from uuid import UUID

import numpy as np
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from conversation_analysis.core.errors import AnalysisError, PersistenceError, ProviderError
from conversation_analysis.models import Embedding
from conversation_analysis.services.openai_client import EmbeddingProvider
from conversation_analysis.services.projection import l2_normalise

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class EmbeddingTarget:
    response_id: UUID
    text: str


async def embed_in_batches(
    provider: EmbeddingProvider,
    texts: Sequence[str],
    *,
    batch_size: int = 100,
    concurrency: int = 1,
    on_batch: Optional[Callable[[int], Awaitable[None]]] = None,
) -> np.ndarray:
    """Embed ``texts`` and return an ``(N, dim)`` matrix of unit-length rows.

    Batches run with at most ``concurrency`` calls in flight and are reassembled by
    index. The first failing batch raises ProviderError and no partial result escapes.
    ``on_batch`` is awaited with the batch index as each batch completes, one at a time.
    """

    docs = list(texts)
    if not docs:
        return np.zeros((0, 0), dtype=np.float32)

    batch_size = max(1, int(batch_size))
    semaphore = asyncio.Semaphore(max(1, int(concurrency)))
    batches = [docs[start : start + batch_size] for start in range(0, len(docs), batch_size)]

    async def _embed(index: int, batch: list[str]) -> tuple[int, list[list[float]]]:
        async with semaphore:
            try:
                vectors = await provider.embed(batch)
            except AnalysisError:
                raise
            except Exception as exc:
                raise ProviderError(f"Embedding batch {index} failed: {exc}") from exc
        if len(vectors) != len(batch):
            raise ProviderError(
                f"Embedding batch {index} returned {len(vectors)} vectors for {len(batch)} texts"
            )
        return index, vectors

    tasks = [asyncio.create_task(_embed(idx, batch)) for idx, batch in enumerate(batches)]
    results: list[tuple[int, list[list[float]]]] = []
    try:
        for finished in asyncio.as_completed(tasks):
            index, vectors = await finished
            results.append((index, vectors))
            if on_batch is not None:
                await on_batch(index)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    ordered: list[list[float]] = []
    for _, vectors in sorted(results, key=lambda item: item[0]):
        ordered.extend(vectors)

    dims = {len(vector) for vector in ordered}
    if len(dims) != 1 or 0 in dims:
        raise ProviderError(f"Embedding provider returned inconsistent dimensions: {sorted(dims)}")

    matrix = l2_normalise(np.asarray(ordered, dtype=np.float64)).astype(np.float32)
    _LOGGER.debug("Embedded %d texts in %d batches", len(docs), len(batches))
    return matrix


async def persist_embeddings(
    session,
    targets: Sequence[EmbeddingTarget],
    vectors: np.ndarray,
    *,
    model: str,
) -> None:
    if not targets:
        return
    if len(targets) != vectors.shape[0]:
        raise PersistenceError(f"{len(targets)} targets but {vectors.shape[0]} vectors")

    ids = [target.response_id for target in targets]
    try:
        await session.execute(delete(Embedding).where(Embedding.response_id.in_(ids)))
        session.add_all(
            [
                Embedding(
                    response_id=response_id,
                    model=model,
                    dim=int(vector.shape[0]),
                    vector=np.asarray(vector, dtype=np.float32).tobytes(),
                )
                for response_id, vector in zip(ids, vectors)
            ]
        )
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise PersistenceError(f"Failed to store embeddings: {exc}") from exc


async def load_embeddings(session, response_ids: Optional[Sequence[UUID]] = None) -> dict[UUID, np.ndarray]:
    stmt = select(Embedding)
    if response_ids is not None:
        stmt = stmt.where(Embedding.response_id.in_(list(response_ids)))
    result = await session.execute(stmt)
    vectors: dict[UUID, np.ndarray] = {}
    for row in result.scalars().all():
        vectors[row.response_id] = np.frombuffer(row.vector, dtype=np.float32).copy()
    return vectors
