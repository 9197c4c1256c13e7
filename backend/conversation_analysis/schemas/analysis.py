"""Pydantic schemas for conversation import, analysis requests, and the understand view.

Classes:
    ConversationCreateRequest, ConversationCreatedResponse: Conversation creation payloads.
    ResponseItem, ResponsesImportRequest, ResponsesImportResponse: Bulk response import payloads.
    AnalyzeRequest, AnalyzeResponse, JobSummary, AnalysisStatusResponse: Job queue and status payloads.
    ResponsePoint, ThemeSummary, SimilarityGroupSummary, UnderstandViewResponse: Map and theme output.
    GroupMember, GroupMembersPage: Paginated member texts of one similarity group.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class ConversationCreateRequest(BaseModel):
    title: Optional[str] = Field(default=None, max_length=500)


class ConversationCreatedResponse(BaseModel):
    id: UUID
    title: Optional[str] = None
    analysis_status: str


class ResponseItem(BaseModel):
    text: str = Field(min_length=1)
    tag: Optional[str] = None


class ResponsesImportRequest(BaseModel):
    texts: list[str] = Field(default_factory=list)
    items: list[ResponseItem] = Field(default_factory=list)

    @model_validator(mode="after")
    def _require_content(self) -> "ResponsesImportRequest":
        if not self.texts and not self.items:
            raise ValueError("Provide at least one response in 'texts' or 'items'")
        return self


class ResponsesImportResponse(BaseModel):
    response_ids: list[UUID]
    response_count: int
    job_id: Optional[UUID] = None


class AnalyzeRequest(BaseModel):
    strategy: Optional[Literal["full", "incremental", "auto"]] = None


class AnalyzeResponse(BaseModel):
    job_id: UUID
    strategy: str
    status: str
    created: bool


class JobSummary(BaseModel):
    id: UUID
    status: str
    strategy: str
    attempts: int
    stage: Optional[str] = None
    last_error: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class AnalysisStatusResponse(BaseModel):
    conversation_id: UUID
    status: str
    error: Optional[str] = None
    response_count: int
    analyzed_response_count: int
    new_responses_since_analysis: int
    is_stale: bool
    analysis_updated_at: Optional[datetime] = None
    analyzed_at: Optional[datetime] = None
    job: Optional[JobSummary] = None


class ResponsePoint(BaseModel):
    id: UUID
    text: str
    tag: Optional[str] = None
    cluster_index: Optional[int] = None
    x: Optional[float] = None
    y: Optional[float] = None
    is_outlier: bool = False


class ThemeSummary(BaseModel):
    cluster_index: int
    name: str
    description: str
    size: int
    cohesion: Optional[float] = None


class SimilarityGroupSummary(BaseModel):
    id: UUID
    cluster_index: int
    consolidated_statement: Optional[str] = None
    member_count: int
    representative_response_id: UUID


class UnderstandViewResponse(BaseModel):
    conversation_id: UUID
    status: str
    responses: list[ResponsePoint]
    themes: list[ThemeSummary]
    groups: list[SimilarityGroupSummary]


class GroupMember(BaseModel):
    id: UUID
    text: str
    tag: Optional[str] = None
    created_at: datetime


class GroupMembersPage(BaseModel):
    group_id: UUID
    responses: list[GroupMember]
    total: int
    offset: int
    limit: int
    has_more: bool
