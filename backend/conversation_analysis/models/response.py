"""Response ORM model.

Classes:
    Response: A participant's immutable text plus the map position and cluster assigned by the latest analysis.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, Float, Integer, Text
from sqlmodel import Field, SQLModel


class Response(SQLModel, table=True):
    __tablename__ = "responses"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    conversation_id: UUID = Field(foreign_key="conversations.id", index=True)
    text: str = Field(sa_column=Column(Text, nullable=False))
    tag: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    x: Optional[float] = Field(default=None, sa_column=Column(Float))
    y: Optional[float] = Field(default=None, sa_column=Column(Float))
    cluster_index: Optional[int] = Field(default=None, sa_column=Column(Integer))
    distance_to_centroid: Optional[float] = Field(default=None, sa_column=Column(Float))
    outlier_score: Optional[float] = Field(default=None, sa_column=Column(Float))
    is_outlier: bool = Field(default=False)
