from uuid import uuid4

import pytest

from fakes import FakeGenerator

from conversation_analysis.core.errors import ProviderError
from conversation_analysis.services.consolidation import (
    ConsolidationInput,
    GroupResponse,
    consolidate_groups,
    filter_eligible_groups,
    format_combined_responses,
    synthesize_statement,
)


def _group(*texts: str) -> ConsolidationInput:
    responses = [GroupResponse(id=uuid4(), text=text) for text in texts]
    return ConsolidationInput(
        group_id=uuid4(),
        cluster_index=0,
        representative_id=responses[0].id if responses else uuid4(),
        responses=responses,
    )


def test_format_combined_responses_joins_id_and_text():
    group = _group("Parking is expensive", "Parking costs too much")
    first, second = group.responses
    assert format_combined_responses(group.responses) == (
        f"{first.id}: Parking is expensive | {second.id}: Parking costs too much"
    )


def test_filter_eligible_groups_keeps_pairs_and_larger():
    single = _group("Only one")
    pair = _group("a", "b")
    triple = _group("a", "b", "c")
    assert filter_eligible_groups([single, pair, triple]) == [pair, triple]


@pytest.mark.asyncio
async def test_synthesize_edge_cases_skip_provider():
    generator = FakeGenerator()
    assert await synthesize_statement(generator, []) == ""
    assert await synthesize_statement(generator, ["Keep the library open late"]) == "Keep the library open late"
    assert generator.prompts == []


@pytest.mark.asyncio
async def test_synthesize_parses_json_statement():
    generator = FakeGenerator()
    statement = await synthesize_statement(generator, ["More bike racks", "Add bike parking"])
    assert statement == "Participants agree on this point."
    assert '1. "More bike racks"' in generator.prompts[0]


@pytest.mark.asyncio
async def test_synthesize_rejects_malformed_output():
    with pytest.raises(ProviderError):
        await synthesize_statement(FakeGenerator(raw="not json"), ["a", "b"])
    with pytest.raises(ProviderError):
        await synthesize_statement(FakeGenerator(raw='{"other": "x"}'), ["a", "b"])


@pytest.mark.asyncio
async def test_consolidate_groups_falls_back_per_group():
    ok = _group("Cheaper coffee please", "Coffee prices are high")
    broken = _group("Wifi drops constantly", "Wifi keeps failing")
    single = _group("Lonely response")
    generator = FakeGenerator(fail_when="Wifi drops constantly")

    outputs = await consolidate_groups(generator, [ok, broken, single])

    assert [output.group_id for output in outputs] == [ok.group_id, broken.group_id]
    assert outputs[0].statement == "Participants agree on this point."
    assert outputs[0].used_fallback is False
    assert outputs[1].statement == "Wifi drops constantly"
    assert outputs[1].used_fallback is True
    assert outputs[1].combined_response_ids == [response.id for response in broken.responses]
    assert outputs[1].combined_responses == format_combined_responses(broken.responses)


@pytest.mark.asyncio
async def test_consolidate_groups_empty_input():
    assert await consolidate_groups(FakeGenerator(), []) == []
