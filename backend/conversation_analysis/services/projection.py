"""Dimensionality reduction, clustering, and outlier scoring over response embeddings.

Classes:
    ProjectionResult: 2D coordinates plus the method and parameters that produced them.
    ClusterResult: K-means labels relabeled by size, with centroid distances and per-cluster cohesion.
    OutlierResult: Per-point modified z-scores and outlier flags.

Functions:
    l2_normalise(matrix): Row-normalise a matrix, leaving zero rows untouched.
    compute_projection(vectors, ...): UMAP to 2D with a PCA fallback for tiny or failing inputs.
    compute_pca_projection(vectors): Deterministic PCA projection to 2D.
    run_kmeans(vectors, k, random_state): Partition vectors into at most k clusters.
    detect_outliers(labels, distances, ...): Flag points far from their centroid using MAD z-scores.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np
from sklearn.cluster import KMeans
from sklearn.decomposition import PCA
from umap import UMAP

from conversation_analysis.core.errors import ValidationError

_LOGGER = logging.getLogger(__name__)

MAD_SCALE = 0.6745


@dataclass(slots=True)
class ProjectionResult:
    coords_2d: np.ndarray
    method: str
    params: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ClusterResult:
    labels: np.ndarray
    centroids: np.ndarray
    distances: np.ndarray
    sizes: dict[int, int]
    cohesion: dict[int, float]

    @property
    def n_clusters(self) -> int:
        return len(self.sizes)


@dataclass(slots=True)
class OutlierResult:
    scores: np.ndarray
    flags: np.ndarray

    @property
    def count(self) -> int:
        return int(self.flags.sum())


def _as_matrix(vectors: np.ndarray) -> np.ndarray:
    matrix = np.asarray(vectors, dtype=float)
    if matrix.ndim != 2:
        raise ValidationError(f"Expected a 2D embedding matrix, got shape {matrix.shape}")
    if matrix.size and not np.isfinite(matrix).all():
        raise ValidationError("Embedding matrix contains non-finite values")
    return matrix


def l2_normalise(matrix: np.ndarray) -> np.ndarray:
    data = np.asarray(matrix, dtype=float)
    norms = np.linalg.norm(data, axis=1, keepdims=True)
    norms[norms == 0.0] = 1.0
    return data / norms


def compute_pca_projection(vectors: np.ndarray) -> np.ndarray:
    matrix = _as_matrix(vectors)
    n_samples = matrix.shape[0]
    if n_samples == 0:
        return np.zeros((0, 2), dtype=float)
    if n_samples == 1:
        return np.zeros((1, 2), dtype=float)
    components = min(2, n_samples, matrix.shape[1])
    coords = PCA(n_components=components).fit_transform(matrix)
    if coords.shape[1] < 2:
        coords = np.column_stack([coords, np.zeros((n_samples, 2 - coords.shape[1]))])
    return np.asarray(coords, dtype=float)


def compute_projection(
    vectors: np.ndarray,
    *,
    n_neighbors: int = 15,
    min_dist: float = 0.1,
    metric: str = "cosine",
    min_points: int = 10,
    random_state: Optional[int] = None,
) -> ProjectionResult:
    """Project embeddings to 2D.

    UMAP's neighbour count is clamped to ``N - 1``. Inputs with fewer than ``min_points``
    rows are projected with PCA instead, as are inputs on which UMAP raises.
    """

    matrix = _as_matrix(vectors)
    n_samples = matrix.shape[0]
    if n_samples <= 1:
        return ProjectionResult(coords_2d=np.zeros((n_samples, 2), dtype=float), method="none")

    if n_samples < max(3, min_points):
        return ProjectionResult(
            coords_2d=compute_pca_projection(matrix),
            method="pca",
            warnings=[f"{n_samples} points is below the UMAP minimum of {min_points}"],
        )

    effective_neighbors = int(max(2, min(n_neighbors, n_samples - 1)))
    params = {
        "n_neighbors": effective_neighbors,
        "min_dist": float(min_dist),
        "metric": metric,
        "random_state": random_state,
    }
    try:
        reducer = UMAP(
            n_components=2,
            n_neighbors=effective_neighbors,
            min_dist=min_dist,
            metric=metric,
            random_state=random_state,
        )
        coords = reducer.fit_transform(matrix)
    except Exception as exc:  # umap raises a mix of ValueError and numba errors
        _LOGGER.warning("UMAP projection failed for %d points; using PCA", n_samples, exc_info=True)
        return ProjectionResult(
            coords_2d=compute_pca_projection(matrix),
            method="pca",
            params=params,
            warnings=[f"UMAP failed: {exc}"],
        )
    return ProjectionResult(coords_2d=np.asarray(coords, dtype=float), method="umap", params=params)


def _relabel_by_size(labels: np.ndarray) -> np.ndarray:
    unique, counts = np.unique(labels, return_counts=True)
    order = sorted(zip(unique.tolist(), counts.tolist()), key=lambda item: (-item[1], item[0]))
    mapping = {old: new for new, (old, _) in enumerate(order)}
    return np.array([mapping[int(label)] for label in labels], dtype=int)


def run_kmeans(
    vectors: np.ndarray,
    *,
    k: int,
    random_state: Optional[int] = None,
) -> ClusterResult:
    """Cluster unit-normalised vectors with K-means using ``min(k, N)`` clusters.

    Labels are renumbered so that cluster 0 is the largest. Distances are cosine distances
    to the member's centroid and cohesion is the mean cosine similarity to the centroid.
    """

    matrix = _as_matrix(vectors)
    n_samples = matrix.shape[0]
    if n_samples == 0:
        return ClusterResult(
            labels=np.zeros(0, dtype=int),
            centroids=np.zeros((0, matrix.shape[1])),
            distances=np.zeros(0, dtype=float),
            sizes={},
            cohesion={},
        )
    if k < 1:
        raise ValidationError(f"Cluster count must be positive, got {k}")

    unit = l2_normalise(matrix)
    n_clusters = min(int(k), n_samples)
    if n_clusters == 1:
        raw_labels = np.zeros(n_samples, dtype=int)
    else:
        model = KMeans(n_clusters=n_clusters, n_init=10, random_state=random_state)
        raw_labels = model.fit_predict(unit)
    labels = _relabel_by_size(np.asarray(raw_labels, dtype=int))

    cluster_ids = sorted(set(labels.tolist()))
    centroids = np.vstack([unit[labels == cluster].mean(axis=0) for cluster in cluster_ids])
    unit_centroids = l2_normalise(centroids)

    similarities = np.einsum("ij,ij->i", unit, unit_centroids[labels])
    similarities = np.clip(similarities, -1.0, 1.0)
    distances = 1.0 - similarities

    sizes = {cluster: int(np.sum(labels == cluster)) for cluster in cluster_ids}
    cohesion = {cluster: float(similarities[labels == cluster].mean()) for cluster in cluster_ids}
    return ClusterResult(
        labels=labels,
        centroids=unit_centroids,
        distances=distances,
        sizes=sizes,
        cohesion=cohesion,
    )


def detect_outliers(
    labels: np.ndarray,
    distances: np.ndarray,
    *,
    z_threshold: float = 3.5,
    min_cluster_size: int = 6,
    max_ratio: float = 0.2,
) -> OutlierResult:
    """Flag points whose centroid distance is anomalous within their cluster.

    Uses the modified z-score ``0.6745 * |d - median| / MAD``. Clusters smaller than
    ``min_cluster_size`` or with a zero MAD produce no outliers, and at most
    ``max_ratio`` of a cluster's members are flagged, highest scores first.
    """

    labels = np.asarray(labels, dtype=int)
    distances = np.asarray(distances, dtype=float)
    if labels.shape != distances.shape:
        raise ValidationError("Labels and distances must have the same length")

    scores = np.zeros(labels.shape[0], dtype=float)
    flags = np.zeros(labels.shape[0], dtype=bool)
    for cluster in np.unique(labels):
        members = np.flatnonzero(labels == cluster)
        if members.size < min_cluster_size:
            continue
        cluster_distances = distances[members]
        median = float(np.median(cluster_distances))
        mad = float(np.median(np.abs(cluster_distances - median)))
        if mad == 0.0:
            continue
        z_scores = MAD_SCALE * np.abs(cluster_distances - median) / mad
        scores[members] = z_scores

        candidates = [idx for idx in np.argsort(-z_scores) if z_scores[idx] > z_threshold]
        cap = int(np.floor(members.size * max_ratio))
        for idx in candidates[:cap]:
            flags[members[idx]] = True
    return OutlierResult(scores=scores, flags=flags)
