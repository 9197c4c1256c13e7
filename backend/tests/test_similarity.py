from uuid import uuid4

import numpy as np
import pytest

from conversation_analysis.core.errors import ValidationError
from conversation_analysis.services.similarity import (
    ALGORITHM_VERSION,
    ClusteredVector,
    cosine_similarity,
    group_responses_by_similarity,
)


def _gram_vectors(gram: list[list[float]]) -> np.ndarray:
    return np.linalg.cholesky(np.asarray(gram, dtype=float))


def test_cosine_similarity_identities():
    a = np.array([0.3, -1.2, 2.0])
    b = np.array([1.0, 0.5, -0.25])
    assert cosine_similarity(a, a) == pytest.approx(1.0)
    assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))
    assert -1.0 <= cosine_similarity(a, b) <= 1.0
    assert cosine_similarity(a, -a) == pytest.approx(-1.0)


def test_cosine_similarity_of_orthogonal_vectors_is_zero():
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([0.0, 3.0, 0.0], [2.0, 0.0, -1.0]) == pytest.approx(0.0)


def test_cosine_similarity_zero_vector_is_zero():
    assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0
    assert cosine_similarity([0.0, 0.0], [0.0, 0.0]) == 0.0


def test_cosine_similarity_rejects_mismatched_shapes():
    with pytest.raises(ValidationError):
        cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])


def test_transitive_chain_forms_single_group_with_middle_representative():
    vectors = _gram_vectors([[1.0, 0.92, 0.85], [0.92, 1.0, 0.90], [0.85, 0.90, 1.0]])
    ids = [uuid4(), uuid4(), uuid4()]
    assert cosine_similarity(vectors[0], vectors[2]) == pytest.approx(0.85)

    groups = group_responses_by_similarity(
        [ClusteredVector(response_id=rid, cluster_index=0, vector=vec) for rid, vec in zip(ids, vectors)],
        threshold=0.88,
        min_group_size=2,
    )

    assert len(groups) == 1
    group = groups[0]
    assert set(group.member_ids) == set(ids)
    assert group.size == 3
    assert group.representative_id == ids[1]
    assert group.params == {"threshold": 0.88, "min_group_size": 2, "algorithm_version": ALGORITHM_VERSION}


def test_groups_never_cross_clusters_and_skip_unclustered():
    vec = np.array([1.0, 0.0, 0.0])
    items = [
        ClusteredVector(response_id=uuid4(), cluster_index=0, vector=vec),
        ClusteredVector(response_id=uuid4(), cluster_index=1, vector=vec),
        ClusteredVector(response_id=uuid4(), cluster_index=None, vector=vec),
    ]
    assert group_responses_by_similarity(items) == []

    items.append(ClusteredVector(response_id=uuid4(), cluster_index=1, vector=vec * 2))
    groups = group_responses_by_similarity(items)
    assert len(groups) == 1
    assert groups[0].cluster_index == 1
    assert set(groups[0].member_ids) == {items[1].response_id, items[3].response_id}


def test_undersized_components_are_discarded():
    rng = np.random.default_rng(3)
    base = rng.normal(size=6)
    items = [
        ClusteredVector(response_id=uuid4(), cluster_index=0, vector=base),
        ClusteredVector(response_id=uuid4(), cluster_index=0, vector=base + 0.01),
        ClusteredVector(response_id=uuid4(), cluster_index=0, vector=-base),
    ]
    groups = group_responses_by_similarity(items, min_group_size=2)
    assert len(groups) == 1
    assert items[2].response_id not in groups[0].member_ids

    assert group_responses_by_similarity(items, min_group_size=3) == []


def test_group_membership_is_exclusive_and_representative_is_member():
    rng = np.random.default_rng(11)
    items = []
    for cluster in range(3):
        centre = rng.normal(size=16)
        for _ in range(6):
            items.append(
                ClusteredVector(
                    response_id=uuid4(),
                    cluster_index=cluster,
                    vector=centre + rng.normal(scale=0.2, size=16),
                )
            )

    groups = group_responses_by_similarity(items, threshold=0.9)
    seen = set()
    clusters = {item.response_id: item.cluster_index for item in items}
    for group in groups:
        assert group.size >= 2
        assert group.representative_id in group.member_ids
        assert {clusters[member] for member in group.member_ids} == {group.cluster_index}
        assert seen.isdisjoint(group.member_ids)
        seen.update(group.member_ids)


def test_threshold_out_of_range_is_rejected():
    with pytest.raises(ValidationError):
        group_responses_by_similarity([], threshold=1.5)


def test_near_duplicates_group_while_other_cluster_stays_alone():
    ids = [uuid4(), uuid4(), uuid4()]
    items = [
        ClusteredVector(response_id=ids[0], cluster_index=0, vector=np.array([1.0, 0.0])),
        ClusteredVector(response_id=ids[1], cluster_index=0, vector=np.array([0.95, 0.1])),
        ClusteredVector(response_id=ids[2], cluster_index=1, vector=np.array([0.0, 1.0])),
    ]

    groups = group_responses_by_similarity(items, threshold=0.9, min_group_size=2)

    assert len(groups) == 1
    assert groups[0].cluster_index == 0
    assert set(groups[0].member_ids) == {ids[0], ids[1]}
    assert groups[0].size == 2
