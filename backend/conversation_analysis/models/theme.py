"""Theme ORM model.

Classes:
    Theme: Label, description, and cohesion for one cluster of the latest successful analysis.
"""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from sqlalchemy import Column, Float, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


class Theme(SQLModel, table=True):
    __tablename__ = "themes"
    __table_args__ = (
        UniqueConstraint("conversation_id", "cluster_index", name="uq_theme_conversation_cluster"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    conversation_id: UUID = Field(foreign_key="conversations.id", index=True)
    cluster_index: int
    name: str
    description: str = Field(sa_column=Column(Text, nullable=False))
    size: int
    cohesion: Optional[float] = Field(default=None, sa_column=Column(Float))
