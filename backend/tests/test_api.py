from uuid import uuid4

import pytest

from fakes import FakeEmbedder, FakeGenerator

from conversation_analysis.services.analysis import AnalysisService

TEXTS = [
    "Parking downtown is far too expensive",
    "Parking downtown is far too expensive",
    "Parking downtown is far too expensive",
    "Food trucks should be allowed in the park",
    "Library wifi drops every afternoon",
    "Night noise from the bars keeps us awake",
]


async def _create_conversation(client) -> str:
    response = await client.post("/conversations", json={"title": "Budget priorities"})
    assert response.status_code == 201
    body = response.json()
    assert body["analysis_status"] == "not_started"
    return body["id"]


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_analyze_is_idempotent_while_in_flight(client):
    conversation_id = await _create_conversation(client)
    imported = await client.post(f"/conversations/{conversation_id}/responses", json={"texts": TEXTS})
    assert imported.status_code == 201
    assert len(imported.json()["response_ids"]) == len(TEXTS)
    assert imported.json()["job_id"] is None

    first = await client.post(f"/conversations/{conversation_id}/analyze", json={"strategy": "full"})
    second = await client.post(f"/conversations/{conversation_id}/analyze")
    assert first.status_code == 202
    assert second.status_code == 202
    assert first.json()["job_id"] == second.json()["job_id"]
    assert first.json()["created"] is True
    assert second.json()["created"] is False

    status_response = await client.get(f"/conversations/{conversation_id}/analysis-status")
    assert status_response.status_code == 200
    status_body = status_response.json()
    assert status_body["status"] == "not_started"
    assert status_body["response_count"] == len(TEXTS)
    assert status_body["is_stale"] is False
    assert status_body["job"]["status"] == "queued"


@pytest.mark.asyncio
async def test_understand_view_after_analysis(client, session, settings):
    conversation_id = await _create_conversation(client)
    await client.post(
        f"/conversations/{conversation_id}/responses",
        json={"items": [{"text": text, "tag": "survey"} for text in TEXTS]},
    )
    await client.post(f"/conversations/{conversation_id}/analyze", json={})

    service = AnalysisService(embedder=FakeEmbedder(), generator=FakeGenerator(), settings=settings)
    job = await service.queue.claim_next(session, "api-test-worker")
    await service.run_job(session, job, "api-test-worker")

    status_body = (await client.get(f"/conversations/{conversation_id}/analysis-status")).json()
    assert status_body["status"] == "ready"
    assert status_body["analyzed_response_count"] == len(TEXTS)
    assert status_body["new_responses_since_analysis"] == 0

    view = (await client.get(f"/conversations/{conversation_id}/understand")).json()
    assert view["status"] == "ready"
    assert len(view["responses"]) == len(TEXTS)
    assert all(point["cluster_index"] is not None for point in view["responses"])
    assert all(point["tag"] == "survey" for point in view["responses"])
    assert sum(theme["size"] for theme in view["themes"]) == len(TEXTS)

    parking_group = next(group for group in view["groups"] if group["member_count"] >= 3)
    page = await client.get(
        f"/conversations/{conversation_id}/groups/{parking_group['id']}/responses",
        params={"limit": 2},
    )
    assert page.status_code == 200
    page_body = page.json()
    assert len(page_body["responses"]) == 2
    assert page_body["has_more"] is True
    assert page_body["total"] == parking_group["member_count"]

    rest = (
        await client.get(
            f"/conversations/{conversation_id}/groups/{parking_group['id']}/responses",
            params={"offset": 2, "limit": 100},
        )
    ).json()
    assert rest["has_more"] is False

    await client.post(f"/conversations/{conversation_id}/responses", json={"texts": ["One more idea"]})
    stale = (await client.get(f"/conversations/{conversation_id}/analysis-status")).json()
    assert stale["is_stale"] is True
    assert stale["new_responses_since_analysis"] == 1


@pytest.mark.asyncio
async def test_auto_analysis_queues_at_threshold(client):
    conversation_id = await _create_conversation(client)
    first = await client.post(
        f"/conversations/{conversation_id}/responses",
        json={"texts": [f"Idea number {idx}" for idx in range(19)]},
    )
    assert first.json()["job_id"] is None

    second = await client.post(f"/conversations/{conversation_id}/responses", json={"texts": ["Idea twenty"]})
    assert second.json()["response_count"] == 20
    assert second.json()["job_id"] is not None


@pytest.mark.asyncio
async def test_unknown_ids_return_404(client):
    missing = uuid4()
    assert (await client.get(f"/conversations/{missing}/analysis-status")).status_code == 404
    assert (await client.get(f"/conversations/{missing}/understand")).status_code == 404
    assert (await client.post(f"/conversations/{missing}/analyze", json={})).status_code == 404
    assert (
        await client.post(f"/conversations/{missing}/responses", json={"texts": ["hello"]})
    ).status_code == 404

    conversation_id = await _create_conversation(client)
    assert (await client.get(f"/conversations/{conversation_id}/groups/{uuid4()}/responses")).status_code == 404


@pytest.mark.asyncio
async def test_invalid_payloads_return_422(client):
    conversation_id = await _create_conversation(client)
    assert (await client.post(f"/conversations/{conversation_id}/responses", json={})).status_code == 422
    assert (
        await client.post(f"/conversations/{conversation_id}/responses", json={"texts": ["   "]})
    ).status_code == 422
    assert (
        await client.post(f"/conversations/{conversation_id}/analyze", json={"strategy": "partial"})
    ).status_code == 422
    assert (
        await client.get(f"/conversations/{conversation_id}/groups/{uuid4()}/responses", params={"limit": 500})
    ).status_code == 422
