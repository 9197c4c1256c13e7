"""Durable analysis job queue backed by the `analysis_jobs` table.

Classes:
    JobQueue: Enqueue, claim, heartbeat, and settle analysis jobs with conditional updates.
              Reclaiming an expired lock counts as an attempt.

Functions:
    get_active_job(session, conversation_id): Return the queued or running job for a conversation.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import and_, case, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from conversation_analysis.core.config import Settings, get_settings
from conversation_analysis.core.errors import ConcurrencyError, PersistenceError, ValidationError
from conversation_analysis.models import AnalysisJob, AnalysisStatus, Conversation, JobStatus
from conversation_analysis.services.staleness import choose_strategy, load_snapshot

_LOGGER = logging.getLogger(__name__)


async def get_active_job(session, conversation_id: UUID) -> Optional[AnalysisJob]:
    result = await session.execute(
        select(AnalysisJob)
        .where(AnalysisJob.conversation_id == conversation_id)
        .where(AnalysisJob.status.in_(JobStatus.ACTIVE))
        .order_by(AnalysisJob.created_at.desc())
        .limit(1)
    )
    return result.scalars().first()


async def get_latest_job(session, conversation_id: UUID) -> Optional[AnalysisJob]:
    result = await session.execute(
        select(AnalysisJob)
        .where(AnalysisJob.conversation_id == conversation_id)
        .order_by(AnalysisJob.created_at.desc())
        .limit(1)
    )
    return result.scalars().first()


class JobQueue:
    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    @property
    def lock_timeout(self) -> timedelta:
        return timedelta(seconds=self._settings.job_lock_timeout_seconds)

    @property
    def max_attempts(self) -> int:
        return max(1, self._settings.job_max_attempts)

    def _lock_expired(self, now: datetime):
        cutoff = now - self.lock_timeout
        return or_(AnalysisJob.locked_at.is_(None), AnalysisJob.locked_at < cutoff)

    def _claimable(self, now: datetime):
        lock_expired = self._lock_expired(now)
        return or_(
            and_(AnalysisJob.status == JobStatus.QUEUED, lock_expired),
            and_(
                AnalysisJob.status == JobStatus.RUNNING,
                lock_expired,
                AnalysisJob.attempts + 1 < self.max_attempts,
            ),
        )

    def _exhausted(self, now: datetime):
        return and_(
            AnalysisJob.status == JobStatus.RUNNING,
            self._lock_expired(now),
            AnalysisJob.attempts + 1 >= self.max_attempts,
        )

    async def request_analysis(
        self,
        session,
        conversation_id: UUID,
        strategy: Optional[str] = None,
    ) -> tuple[AnalysisJob, bool]:
        """Queue an analysis job unless one is already in flight.

        Returns the job and whether it was newly created. Concurrent callers racing past the
        in-flight check are resolved by the partial unique index: the loser re-reads and
        returns the winner's job.
        """

        conversation = await session.get(Conversation, conversation_id)
        if conversation is None:
            raise ValidationError(f"Conversation {conversation_id} not found")

        existing = await get_active_job(session, conversation_id)
        if existing is not None:
            return existing, False

        snapshot = await load_snapshot(session, conversation)
        resolved = choose_strategy(
            snapshot,
            strategy,
            max_new_ratio=self._settings.incremental_max_new_ratio,
            max_new_responses=self._settings.incremental_max_new_responses,
        )

        job = AnalysisJob(conversation_id=conversation_id, strategy=resolved, status=JobStatus.QUEUED)
        session.add(job)
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            existing = await get_active_job(session, conversation_id)
            if existing is None:
                raise PersistenceError(f"Could not enqueue analysis for {conversation_id}")
            return existing, False
        except SQLAlchemyError as exc:
            await session.rollback()
            raise PersistenceError(f"Could not enqueue analysis for {conversation_id}: {exc}") from exc

        await session.refresh(job)
        _LOGGER.info("Queued %s analysis job %s for conversation %s", resolved, job.id, conversation_id)
        return job, True

    async def fail_abandoned(self, session, job_id: Optional[UUID] = None) -> list[UUID]:
        """Fail running jobs whose lock expired on their last allowed attempt.

        The owning conversation moves to ``error``. Returns the ids of the failed jobs.
        """

        now = datetime.utcnow()
        stmt = select(AnalysisJob.id, AnalysisJob.conversation_id).where(self._exhausted(now))
        if job_id is not None:
            stmt = stmt.where(AnalysisJob.id == job_id)
        rows = (await session.execute(stmt)).all()
        if not rows:
            return []

        failed: list[UUID] = []
        message = f"Lock expired; giving up after {self.max_attempts} attempts"
        for row_id, conversation_id in rows:
            result = await session.execute(
                update(AnalysisJob)
                .where(AnalysisJob.id == row_id)
                .where(self._exhausted(now))
                .values(
                    status=JobStatus.FAILED,
                    attempts=AnalysisJob.attempts + 1,
                    lock_owner=None,
                    locked_at=None,
                    last_error=message,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                continue
            await session.execute(
                update(Conversation)
                .where(Conversation.id == conversation_id)
                .values(analysis_status=AnalysisStatus.ERROR, analysis_error=message, analysis_updated_at=now)
                .execution_options(synchronize_session=False)
            )
            failed.append(row_id)
            _LOGGER.error("Job %s abandoned by its worker too many times: %s", row_id, message)
        await session.commit()
        return failed

    async def claim(self, session, job_id: UUID, owner: str) -> bool:
        await self.fail_abandoned(session, job_id)
        now = datetime.utcnow()
        stmt = (
            update(AnalysisJob)
            .where(AnalysisJob.id == job_id)
            .where(self._claimable(now))
            .values(
                status=JobStatus.RUNNING,
                attempts=case(
                    (AnalysisJob.status == JobStatus.RUNNING, AnalysisJob.attempts + 1),
                    else_=AnalysisJob.attempts,
                ),
                lock_owner=owner,
                locked_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        await session.commit()
        claimed = result.rowcount == 1
        if claimed:
            _LOGGER.info("Worker %s claimed job %s", owner, job_id)
        return claimed

    async def claim_next(self, session, owner: str) -> Optional[AnalysisJob]:
        await self.fail_abandoned(session)
        now = datetime.utcnow()
        result = await session.execute(
            select(AnalysisJob.id)
            .where(self._claimable(now))
            .order_by(AnalysisJob.created_at)
            .limit(5)
        )
        for job_id in result.scalars().all():
            if await self.claim(session, job_id, owner):
                job = await session.get(AnalysisJob, job_id)
                await session.refresh(job)
                return job
        return None

    async def heartbeat(self, session, job: AnalysisJob, owner: str, stage: str) -> None:
        now = datetime.utcnow()
        result = await session.execute(
            update(AnalysisJob)
            .where(AnalysisJob.id == job.id)
            .where(AnalysisJob.status == JobStatus.RUNNING)
            .where(AnalysisJob.lock_owner == owner)
            .values(locked_at=now, stage=stage, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        if result.rowcount != 1:
            raise ConcurrencyError(f"Worker {owner} lost the lock on job {job.id}")
        await session.refresh(job)

    async def mark_succeeded(
        self,
        session,
        job: AnalysisJob,
        owner: str,
        timings: dict[str, Any] | None = None,
    ) -> None:
        now = datetime.utcnow()
        result = await session.execute(
            update(AnalysisJob)
            .where(AnalysisJob.id == job.id)
            .where(AnalysisJob.lock_owner == owner)
            .values(
                status=JobStatus.SUCCEEDED,
                stage="completed",
                lock_owner=None,
                locked_at=None,
                last_error=None,
                timings_json=json.dumps(timings) if timings else None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        if result.rowcount != 1:
            raise ConcurrencyError(f"Worker {owner} no longer owns job {job.id}")
        await session.refresh(job)
        _LOGGER.info("Job %s succeeded", job.id)

    async def mark_failed(
        self,
        session,
        job: AnalysisJob,
        owner: str,
        error: str,
        timings: dict[str, Any] | None = None,
    ) -> str:
        """Record a failed attempt; re-queue until attempts are exhausted.

        Returns the resulting job status.
        """

        await session.refresh(job)
        attempts = (job.attempts or 0) + 1
        status = JobStatus.QUEUED if attempts < self.max_attempts else JobStatus.FAILED
        now = datetime.utcnow()
        result = await session.execute(
            update(AnalysisJob)
            .where(AnalysisJob.id == job.id)
            .where(AnalysisJob.lock_owner == owner)
            .values(
                status=status,
                attempts=attempts,
                lock_owner=None,
                locked_at=None,
                last_error=error,
                timings_json=json.dumps(timings) if timings else job.timings_json,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        if result.rowcount != 1:
            raise ConcurrencyError(f"Worker {owner} no longer owns job {job.id}")
        await session.refresh(job)
        if status == JobStatus.FAILED:
            _LOGGER.error("Job %s failed after %d attempts: %s", job.id, attempts, error)
        else:
            _LOGGER.warning("Job %s attempt %d failed, re-queued: %s", job.id, attempts, error)
        return status
