import pytest

from fakes import FakeGenerator

from conversation_analysis.services.labeling import (
    ClusterTexts,
    fallback_theme,
    label_clusters,
    sample_diverse_texts,
)


def test_sample_diverse_texts_spreads_across_arrival_order():
    texts = [f"text-{idx}" for idx in range(100)]
    sample = sample_diverse_texts(texts, 20)
    assert len(sample) == 20
    assert sample[0] == "text-0"
    assert sample[1] == "text-5"
    assert sample[-1] == "text-95"
    assert sample_diverse_texts(texts[:3], 20) == texts[:3]


def test_fallback_theme_is_deterministic():
    theme = fallback_theme(ClusterTexts(cluster_index=2, texts=["a", "b", "c"]))
    assert theme.name == "Theme 3"
    assert theme.description == "3 related responses"
    assert theme.is_fallback


@pytest.mark.asyncio
async def test_one_failing_cluster_gets_placeholder_and_others_are_labeled():
    clusters = [
        ClusterTexts(cluster_index=idx, texts=[f"cluster-{idx} response {n}" for n in range(idx + 2)])
        for idx in range(5)
    ]
    generator = FakeGenerator(fail_when="cluster-3 response")

    themes = await label_clusters(generator, clusters)

    assert len(themes) == 5
    assert [theme.size for theme in themes] == sorted((theme.size for theme in themes), reverse=True)
    by_index = {theme.cluster_index: theme for theme in themes}
    assert by_index[3].name == "Theme 4"
    assert by_index[3].description == "5 related responses"
    for idx in (0, 1, 2, 4):
        assert by_index[idx].name == "Shared Concern"
        assert not by_index[idx].is_fallback


@pytest.mark.asyncio
async def test_labels_use_at_most_sample_size_texts():
    cluster = ClusterTexts(cluster_index=0, texts=[f"item {n}" for n in range(50)])
    generator = FakeGenerator()
    await label_clusters(generator, [cluster], sample_size=10)
    prompt = generator.prompts[0]
    assert "10. item" in prompt
    assert "11. item" not in prompt


@pytest.mark.asyncio
async def test_malformed_label_output_falls_back():
    themes = await label_clusters(FakeGenerator(raw="[]"), [ClusterTexts(cluster_index=0, texts=["x"])])
    assert themes[0].name == "Theme 1"
