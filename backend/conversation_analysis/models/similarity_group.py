"""Similarity group ORM models.

Classes:
    SimilarityGroup: A set of near-duplicate responses inside one cluster and their consolidated statement.
    SimilarityGroupMember: Link table between groups and the responses they contain.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, Text
from sqlmodel import Field, SQLModel


class SimilarityGroup(SQLModel, table=True):
    __tablename__ = "similarity_groups"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    conversation_id: UUID = Field(foreign_key="conversations.id", index=True)
    cluster_index: int
    representative_response_id: UUID = Field(foreign_key="responses.id")
    size: int
    consolidated_statement: Optional[str] = Field(default=None, sa_column=Column(Text))
    combined_responses: Optional[str] = Field(default=None, sa_column=Column(Text))
    params_json: Optional[str] = Field(default=None, sa_column=Column(Text))
    model_used: Optional[str] = None
    prompt_version: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class SimilarityGroupMember(SQLModel, table=True):
    __tablename__ = "similarity_group_members"

    group_id: UUID = Field(foreign_key="similarity_groups.id", primary_key=True)
    response_id: UUID = Field(foreign_key="responses.id", primary_key=True)
