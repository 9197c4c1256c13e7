"""Conversation endpoints for importing responses and driving analysis.

Endpoints:
    create_conversation(payload, session): Create an empty conversation.
    import_responses(conversation_id, payload, session): Store responses and maybe auto-queue analysis.
    request_analysis(conversation_id, payload, session): Queue an analysis job, idempotent while one is in flight.
    get_analysis_status(conversation_id, session): Status machine state, counts, and staleness.
    get_understand_view(conversation_id, session): Map points, themes, and consolidated groups.
    list_group_responses(conversation_id, group_id, offset, limit, session): Paginated group members.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlmodel.ext.asyncio.session import AsyncSession

from conversation_analysis.core.errors import PersistenceError, ValidationError
from conversation_analysis.db.session import get_session
from conversation_analysis.models import Conversation
from conversation_analysis.schemas import (
    AnalysisStatusResponse,
    AnalyzeRequest,
    AnalyzeResponse,
    ConversationCreatedResponse,
    ConversationCreateRequest,
    GroupMembersPage,
    ResponsesImportRequest,
    ResponsesImportResponse,
    UnderstandViewResponse,
)
from conversation_analysis.services.conversations import ConversationService, ResponseDraft
from conversation_analysis.services.jobs import JobQueue
from conversation_analysis.services.understand import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    load_analysis_status,
    load_group_members,
    load_understand_view,
)

router = APIRouter(prefix="/conversations", tags=["conversations"])


def _not_found(exc: ValidationError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@router.post("", response_model=ConversationCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_conversation(
    payload: ConversationCreateRequest,
    session: AsyncSession = Depends(get_session),
) -> ConversationCreatedResponse:
    conversation = await ConversationService().create_conversation(session, payload.title)
    return ConversationCreatedResponse(
        id=conversation.id,
        title=conversation.title,
        analysis_status=conversation.analysis_status,
    )


@router.post(
    "/{conversation_id}/responses",
    response_model=ResponsesImportResponse,
    status_code=status.HTTP_201_CREATED,
)
async def import_responses(
    conversation_id: UUID,
    payload: ResponsesImportRequest,
    session: AsyncSession = Depends(get_session),
) -> ResponsesImportResponse:
    drafts = [ResponseDraft(text=text) for text in payload.texts]
    drafts.extend(ResponseDraft(text=item.text, tag=item.tag) for item in payload.items)
    if await session.get(Conversation, conversation_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    service = ConversationService()
    try:
        result = await service.add_responses(session, conversation_id, drafts)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except PersistenceError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return ResponsesImportResponse(
        response_ids=result.response_ids,
        response_count=result.response_count,
        job_id=result.job.id if result.job else None,
    )


@router.post(
    "/{conversation_id}/analyze",
    response_model=AnalyzeResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def request_analysis(
    conversation_id: UUID,
    payload: AnalyzeRequest | None = None,
    session: AsyncSession = Depends(get_session),
) -> AnalyzeResponse:
    strategy = payload.strategy if payload else None
    try:
        job, created = await JobQueue().request_analysis(session, conversation_id, strategy)
    except ValidationError as exc:
        raise _not_found(exc) from exc
    except PersistenceError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return AnalyzeResponse(job_id=job.id, strategy=job.strategy, status=job.status, created=created)


@router.get("/{conversation_id}/analysis-status", response_model=AnalysisStatusResponse)
async def get_analysis_status(
    conversation_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> AnalysisStatusResponse:
    try:
        return await load_analysis_status(session, conversation_id)
    except ValidationError as exc:
        raise _not_found(exc) from exc


@router.get("/{conversation_id}/understand", response_model=UnderstandViewResponse)
async def get_understand_view(
    conversation_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> UnderstandViewResponse:
    try:
        return await load_understand_view(session, conversation_id)
    except ValidationError as exc:
        raise _not_found(exc) from exc


@router.get("/{conversation_id}/groups/{group_id}/responses", response_model=GroupMembersPage)
async def list_group_responses(
    conversation_id: UUID,
    group_id: UUID,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    session: AsyncSession = Depends(get_session),
) -> GroupMembersPage:
    try:
        return await load_group_members(session, conversation_id, group_id, offset=offset, limit=limit)
    except ValidationError as exc:
        raise _not_found(exc) from exc
