"""Conversation ORM model.

Classes:
    AnalysisStatus: Valid states of the conversation-level analysis machine.
    Conversation: A shared prompt that participants answer, plus the state of its latest analysis.

Functions:
    set_updated_at(_, __, target): SQLAlchemy event hook that maintains `analysis_updated_at`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, Integer, Text, event
from sqlmodel import Field, SQLModel


class AnalysisStatus(str):
    NOT_STARTED = "not_started"
    EMBEDDING = "embedding"
    ANALYZING = "analyzing"
    READY = "ready"
    ERROR = "error"


class Conversation(SQLModel, table=True):
    __tablename__ = "conversations"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    title: Optional[str] = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(default_factory=datetime.utcnow)
    analysis_status: str = Field(default=AnalysisStatus.NOT_STARTED)
    analysis_error: Optional[str] = Field(default=None, sa_column=Column(Text))
    analysis_response_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    analysis_updated_at: Optional[datetime] = None
    analyzed_at: Optional[datetime] = None


@event.listens_for(Conversation, "before_update", propagate=True)
def set_updated_at(_, __, target):
    target.analysis_updated_at = datetime.utcnow()
