"""Analysis job ORM model.

Classes:
    JobStatus: Lifecycle states of a queued analysis job.
    AnalysisStrategy: Whether a job embeds every response or only the missing ones.
    AnalysisJob: Durable queue row claimed by workers through conditional updates.

Functions:
    set_updated_at(_, __, target): SQLAlchemy event hook that maintains the `updated_at` timestamp.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, Index, Integer, Text, event, text
from sqlmodel import Field, SQLModel


class JobStatus(str):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    ACTIVE = (QUEUED, RUNNING)


class AnalysisStrategy(str):
    FULL = "full"
    INCREMENTAL = "incremental"
    AUTO = "auto"


_ACTIVE_PREDICATE = "status IN ('queued', 'running')"


class AnalysisJob(SQLModel, table=True):
    __tablename__ = "analysis_jobs"
    __table_args__ = (
        Index(
            "uq_analysis_jobs_active_conversation",
            "conversation_id",
            unique=True,
            sqlite_where=text(_ACTIVE_PREDICATE),
            postgresql_where=text(_ACTIVE_PREDICATE),
        ),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    conversation_id: UUID = Field(foreign_key="conversations.id", index=True)
    status: str = Field(default=JobStatus.QUEUED, index=True)
    strategy: str = Field(default=AnalysisStrategy.FULL)
    attempts: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    lock_owner: Optional[str] = None
    locked_at: Optional[datetime] = None
    stage: Optional[str] = Field(default=None, sa_column=Column(Text))
    last_error: Optional[str] = Field(default=None, sa_column=Column(Text))
    timings_json: Optional[str] = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


@event.listens_for(AnalysisJob, "before_update", propagate=True)
def set_updated_at(_, __, target):
    target.updated_at = datetime.utcnow()
