"""Conversation and response import helpers.

Classes:
    ResponseDraft: Text and optional tag for a response about to be stored.
    ImportResult: Ids of stored responses and the auto-analysis job, if one was queued.
    ConversationService: Create conversations, import responses, and trigger auto-analysis.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from conversation_analysis.core.config import Settings, get_settings
from conversation_analysis.core.errors import PersistenceError, ValidationError
from conversation_analysis.models import AnalysisJob, AnalysisStatus, Conversation, Response
from conversation_analysis.services.jobs import JobQueue, get_active_job
from conversation_analysis.services.staleness import count_responses
from conversation_analysis.utils.text import clean_response_text

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ResponseDraft:
    text: str
    tag: Optional[str] = None


@dataclass(slots=True)
class ImportResult:
    response_ids: list[UUID] = field(default_factory=list)
    response_count: int = 0
    job: Optional[AnalysisJob] = None


class ConversationService:
    def __init__(self, settings: Settings | None = None, queue: JobQueue | None = None) -> None:
        self._settings = settings or get_settings()
        self._queue = queue or JobQueue(self._settings)

    async def create_conversation(self, session, title: Optional[str] = None) -> Conversation:
        conversation = Conversation(title=title.strip() if title else None)
        session.add(conversation)
        await session.commit()
        await session.refresh(conversation)
        return conversation

    async def add_responses(
        self,
        session,
        conversation_id: UUID,
        drafts: Sequence[ResponseDraft],
    ) -> ImportResult:
        conversation = await session.get(Conversation, conversation_id)
        if conversation is None:
            raise ValidationError(f"Conversation {conversation_id} not found")

        cleaned = [
            ResponseDraft(text=clean_response_text(draft.text), tag=(draft.tag.strip() or None) if draft.tag else None)
            for draft in drafts
        ]
        if not cleaned:
            raise ValidationError("At least one response is required")
        if any(not draft.text for draft in cleaned):
            raise ValidationError("Response text must not be empty")

        rows = [Response(conversation_id=conversation_id, text=draft.text, tag=draft.tag) for draft in cleaned]
        response_ids = [row.id for row in rows]
        session.add_all(rows)
        try:
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            raise PersistenceError(f"Failed to store responses: {exc}") from exc

        result = ImportResult(response_ids=response_ids)
        result.response_count = await count_responses(session, conversation_id)
        result.job = await self.maybe_enqueue_auto_analysis(session, conversation, result.response_count)
        return result

    async def maybe_enqueue_auto_analysis(
        self,
        session,
        conversation: Conversation,
        response_count: int,
    ) -> Optional[AnalysisJob]:
        threshold = self._settings.auto_analysis_threshold
        if threshold is None or response_count < threshold:
            return None

        await session.refresh(conversation)
        if (
            conversation.analysis_status == AnalysisStatus.READY
            and conversation.analysis_response_count >= response_count
        ):
            return None

        active = await get_active_job(session, conversation.id)
        if active is not None:
            return active

        job, created = await self._queue.request_analysis(session, conversation.id)
        if created:
            _LOGGER.info(
                "Auto-queued analysis job %s for conversation %s at %d responses",
                job.id,
                conversation.id,
                response_count,
            )
        return job
