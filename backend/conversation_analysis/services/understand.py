"""Read models over the latest analysis of a conversation.

Functions:
    load_analysis_status(session, conversation_id): Status, counts, staleness, and the latest job.
    load_understand_view(session, conversation_id): Map points, themes, and similarity groups.
    load_group_members(session, conversation_id, group_id, offset, limit): One page of a group's responses.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select

from conversation_analysis.core.errors import ValidationError
from conversation_analysis.models import Conversation, Response, SimilarityGroup, SimilarityGroupMember, Theme
from conversation_analysis.schemas import (
    AnalysisStatusResponse,
    GroupMember,
    GroupMembersPage,
    JobSummary,
    ResponsePoint,
    SimilarityGroupSummary,
    ThemeSummary,
    UnderstandViewResponse,
)
from conversation_analysis.services.jobs import get_latest_job
from conversation_analysis.services.staleness import load_snapshot

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


async def _require_conversation(session, conversation_id: UUID) -> Conversation:
    conversation = await session.get(Conversation, conversation_id)
    if conversation is None:
        raise ValidationError(f"Conversation {conversation_id} not found")
    return conversation


async def load_analysis_status(session, conversation_id: UUID) -> AnalysisStatusResponse:
    conversation = await _require_conversation(session, conversation_id)
    snapshot = await load_snapshot(session, conversation)
    job = await get_latest_job(session, conversation_id)
    return AnalysisStatusResponse(
        conversation_id=conversation.id,
        status=conversation.analysis_status,
        error=conversation.analysis_error,
        response_count=snapshot.current_count,
        analyzed_response_count=snapshot.analyzed_count,
        new_responses_since_analysis=snapshot.new_responses,
        is_stale=snapshot.is_stale,
        analysis_updated_at=conversation.analysis_updated_at,
        analyzed_at=conversation.analyzed_at,
        job=(
            JobSummary(
                id=job.id,
                status=job.status,
                strategy=job.strategy,
                attempts=job.attempts,
                stage=job.stage,
                last_error=job.last_error,
                created_at=job.created_at,
                updated_at=job.updated_at,
            )
            if job is not None
            else None
        ),
    )


async def load_understand_view(session, conversation_id: UUID) -> UnderstandViewResponse:
    conversation = await _require_conversation(session, conversation_id)

    responses = (
        await session.execute(
            select(Response)
            .where(Response.conversation_id == conversation_id)
            .order_by(Response.created_at, Response.id)
        )
    ).scalars().all()
    themes = (
        await session.execute(
            select(Theme)
            .where(Theme.conversation_id == conversation_id)
            .order_by(Theme.size.desc(), Theme.cluster_index)
        )
    ).scalars().all()
    groups = (
        await session.execute(
            select(SimilarityGroup)
            .where(SimilarityGroup.conversation_id == conversation_id)
            .order_by(SimilarityGroup.cluster_index, SimilarityGroup.size.desc())
        )
    ).scalars().all()

    return UnderstandViewResponse(
        conversation_id=conversation.id,
        status=conversation.analysis_status,
        responses=[
            ResponsePoint(
                id=response.id,
                text=response.text,
                tag=response.tag,
                cluster_index=response.cluster_index,
                x=response.x,
                y=response.y,
                is_outlier=bool(response.is_outlier),
            )
            for response in responses
        ],
        themes=[
            ThemeSummary(
                cluster_index=theme.cluster_index,
                name=theme.name,
                description=theme.description,
                size=theme.size,
                cohesion=theme.cohesion,
            )
            for theme in themes
        ],
        groups=[
            SimilarityGroupSummary(
                id=group.id,
                cluster_index=group.cluster_index,
                consolidated_statement=group.consolidated_statement,
                member_count=group.size,
                representative_response_id=group.representative_response_id,
            )
            for group in groups
        ],
    )


async def load_group_members(
    session,
    conversation_id: UUID,
    group_id: UUID,
    *,
    offset: int = 0,
    limit: int = DEFAULT_PAGE_SIZE,
) -> GroupMembersPage:
    group = await session.get(SimilarityGroup, group_id)
    if group is None or group.conversation_id != conversation_id:
        raise ValidationError(f"Similarity group {group_id} not found")

    offset = max(0, int(offset))
    limit = min(max(1, int(limit)), MAX_PAGE_SIZE)

    total = (
        await session.execute(
            select(func.count())
            .select_from(SimilarityGroupMember)
            .where(SimilarityGroupMember.group_id == group_id)
        )
    ).scalar_one()
    rows = (
        await session.execute(
            select(Response)
            .join(SimilarityGroupMember, SimilarityGroupMember.response_id == Response.id)
            .where(SimilarityGroupMember.group_id == group_id)
            .order_by(Response.created_at, Response.id)
            .offset(offset)
            .limit(limit)
        )
    ).scalars().all()

    return GroupMembersPage(
        group_id=group_id,
        responses=[
            GroupMember(id=row.id, text=row.text, tag=row.tag, created_at=row.created_at)
            for row in rows
        ],
        total=int(total),
        offset=offset,
        limit=limit,
        has_more=offset + len(rows) < int(total),
    )
