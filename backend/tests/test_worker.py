import pytest
from sqlalchemy import select

from fakes import FakeEmbedder, FakeGenerator

from conversation_analysis.models import AnalysisJob, AnalysisStatus, Conversation, JobStatus, Response
from conversation_analysis.services.analysis import AnalysisService
from conversation_analysis.worker import AnalysisWorkerPool


async def _seed(session, texts) -> Conversation:
    conversation = Conversation(title="Worker test")
    session.add(conversation)
    await session.flush()
    session.add_all([Response(conversation_id=conversation.id, text=text) for text in texts])
    await session.commit()
    await session.refresh(conversation)
    return conversation


@pytest.mark.asyncio
async def test_run_once_processes_a_queued_job(session, session_factory, settings):
    service = AnalysisService(embedder=FakeEmbedder(), generator=FakeGenerator(), settings=settings)
    conversation = await _seed(session, ["Parking is scarce", "Parking is scarce", "Wifi is slow"])
    await service.queue.request_analysis(session, conversation.id)

    pool = AnalysisWorkerPool(session_factory, service=service, settings=settings, concurrency=1)
    assert await pool.run_once("pool-worker") is True
    assert await pool.run_once("pool-worker") is False

    await session.refresh(conversation)
    assert conversation.analysis_status == AnalysisStatus.READY
    job = (await session.execute(select(AnalysisJob))).scalars().one()
    await session.refresh(job)
    assert job.status == JobStatus.SUCCEEDED


@pytest.mark.asyncio
async def test_run_once_survives_failing_jobs(session, session_factory, settings):
    settings.job_max_attempts = 1
    service = AnalysisService(embedder=FakeEmbedder(fail_after=0), generator=FakeGenerator(), settings=settings)
    conversation = await _seed(session, ["Parking is scarce"])
    await service.queue.request_analysis(session, conversation.id)

    pool = AnalysisWorkerPool(session_factory, service=service, settings=settings, concurrency=1)
    assert await pool.run_once("pool-worker") is True

    await session.refresh(conversation)
    assert conversation.analysis_status == AnalysisStatus.ERROR
    job = (await session.execute(select(AnalysisJob))).scalars().one()
    await session.refresh(job)
    assert job.status == JobStatus.FAILED
