"""Near-duplicate grouping of responses within clusters.

Classes:
    ClusteredVector: A response id, its cluster index, and its full-dimensional embedding.
    SimilarityGroupDraft: One connected component of near-duplicate responses.

Functions:
    cosine_similarity(a, b): Cosine similarity that treats zero-magnitude vectors as dissimilar.
    similarity_matrix(vectors): Pairwise cosine similarity for a stack of vectors.
    group_responses_by_similarity(items, threshold, min_group_size): Connected components per cluster.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Optional, Sequence
from uuid import UUID

import numpy as np
from scipy.sparse import csr_matrix
from scipy.sparse.csgraph import connected_components

from conversation_analysis.core.errors import ValidationError

_LOGGER = logging.getLogger(__name__)

ALGORITHM_VERSION = "v1.1"
DEFAULT_SIMILARITY_THRESHOLD = 0.88
DEFAULT_MIN_GROUP_SIZE = 2


@dataclass(slots=True)
class ClusteredVector:
    response_id: UUID
    cluster_index: Optional[int]
    vector: np.ndarray


@dataclass(slots=True)
class SimilarityGroupDraft:
    cluster_index: int
    representative_id: UUID
    member_ids: list[UUID]
    params: dict[str, object] = field(default_factory=dict)

    @property
    def size(self) -> int:
        return len(self.member_ids)


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.shape != vb.shape:
        raise ValidationError(f"Vector shapes differ: {va.shape} vs {vb.shape}")
    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


def similarity_matrix(vectors: np.ndarray) -> np.ndarray:
    """Return the pairwise cosine similarity of ``vectors`` (rows), zero rows yielding 0."""

    matrix = np.asarray(vectors, dtype=float)
    norms = np.linalg.norm(matrix, axis=1)
    safe = np.where(norms == 0.0, 1.0, norms)
    unit = matrix / safe[:, None]
    unit[norms == 0.0] = 0.0
    sims = unit @ unit.T
    return np.clip(sims, -1.0, 1.0)


def _pick_representative(vectors: np.ndarray) -> int:
    centroid = vectors.mean(axis=0)
    norm = float(np.linalg.norm(centroid))
    if norm > 0.0:
        centroid = centroid / norm
    scores = [cosine_similarity(vector, centroid) for vector in vectors]
    return int(np.argmax(scores))


def group_responses_by_similarity(
    items: Sequence[ClusteredVector],
    *,
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    min_group_size: int = DEFAULT_MIN_GROUP_SIZE,
) -> list[SimilarityGroupDraft]:
    """Group responses whose embeddings are transitively similar within the same cluster.

    Two responses share an edge when their cosine similarity is at least ``threshold``;
    each connected component of at least ``min_group_size`` members becomes a group whose
    representative is the member closest to the component's mean vector. Responses without
    a cluster index are ignored and no comparison ever crosses a cluster boundary.
    """

    if not 0.0 <= threshold <= 1.0:
        raise ValidationError(f"Similarity threshold must be within [0, 1], got {threshold}")
    min_group_size = max(1, int(min_group_size))

    by_cluster: dict[int, list[ClusteredVector]] = defaultdict(list)
    for item in items:
        if item.cluster_index is None:
            continue
        by_cluster[item.cluster_index].append(item)

    params = {
        "threshold": threshold,
        "min_group_size": min_group_size,
        "algorithm_version": ALGORITHM_VERSION,
    }

    groups: list[SimilarityGroupDraft] = []
    for cluster_index in sorted(by_cluster):
        members = by_cluster[cluster_index]
        if len(members) < min_group_size:
            continue
        vectors = np.vstack([np.asarray(member.vector, dtype=float) for member in members])
        adjacency = similarity_matrix(vectors) >= threshold
        np.fill_diagonal(adjacency, False)
        n_components, component_labels = connected_components(
            csr_matrix(adjacency), directed=False, return_labels=True
        )
        for component in range(n_components):
            indices = np.flatnonzero(component_labels == component)
            if indices.size < min_group_size:
                continue
            representative = indices[_pick_representative(vectors[indices])]
            groups.append(
                SimilarityGroupDraft(
                    cluster_index=cluster_index,
                    representative_id=members[representative].response_id,
                    member_ids=[members[idx].response_id for idx in indices],
                    params=dict(params),
                )
            )

    _LOGGER.debug(
        "Grouped %d responses across %d clusters into %d similarity groups",
        len(items),
        len(by_cluster),
        len(groups),
    )
    return groups
