"""Freshness of a conversation's analysis relative to its current responses.

Classes:
    StalenessSnapshot: Counts and status needed to judge freshness.

Functions:
    is_analysis_stale(status, analyzed_count, current_count): Whether a ready analysis misses responses.
    new_responses_since_analysis(analyzed_count, current_count): Responses not covered by the last run.
    choose_strategy(snapshot, requested, ...): Resolve the strategy a new job should use.
    load_snapshot(session, conversation): Read the counts for one conversation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, select

from conversation_analysis.core.errors import ValidationError
from conversation_analysis.models import AnalysisStatus, AnalysisStrategy, Conversation, Response


@dataclass(slots=True)
class StalenessSnapshot:
    status: str
    analyzed_count: int
    current_count: int
    has_prior_run: bool

    @property
    def is_stale(self) -> bool:
        return is_analysis_stale(self.status, self.analyzed_count, self.current_count)

    @property
    def new_responses(self) -> int:
        return new_responses_since_analysis(self.analyzed_count, self.current_count)


def is_analysis_stale(status: str, analyzed_count: int, current_count: int) -> bool:
    return status == AnalysisStatus.READY and analyzed_count < current_count


def new_responses_since_analysis(analyzed_count: int, current_count: int) -> int:
    return max(0, current_count - analyzed_count)


def choose_strategy(
    snapshot: StalenessSnapshot,
    requested: Optional[str] = None,
    *,
    max_new_ratio: float = 0.5,
    max_new_responses: Optional[int] = None,
) -> str:
    """Return ``full`` or ``incremental`` for a job about to be queued.

    An explicit ``full`` is honoured. ``incremental`` and ``auto`` both fall back to
    ``full`` when there is no prior successful run. ``auto`` also picks ``full`` when the
    unanalyzed share exceeds ``max_new_ratio`` or the unanalyzed count exceeds
    ``max_new_responses``.
    """

    choice = (requested or AnalysisStrategy.AUTO).strip().lower()
    if choice not in {AnalysisStrategy.FULL, AnalysisStrategy.INCREMENTAL, AnalysisStrategy.AUTO}:
        raise ValidationError(f"Unknown analysis strategy: {requested}")

    if choice == AnalysisStrategy.FULL or not snapshot.has_prior_run:
        return AnalysisStrategy.FULL
    if choice == AnalysisStrategy.INCREMENTAL:
        return AnalysisStrategy.INCREMENTAL

    new_count = snapshot.new_responses
    if snapshot.current_count > 0 and new_count / snapshot.current_count > max_new_ratio:
        return AnalysisStrategy.FULL
    if max_new_responses is not None and new_count > max_new_responses:
        return AnalysisStrategy.FULL
    return AnalysisStrategy.INCREMENTAL


async def count_responses(session, conversation_id) -> int:
    result = await session.execute(
        select(func.count()).select_from(Response).where(Response.conversation_id == conversation_id)
    )
    return int(result.scalar_one())


async def load_snapshot(session, conversation: Conversation) -> StalenessSnapshot:
    current = await count_responses(session, conversation.id)
    return StalenessSnapshot(
        status=conversation.analysis_status,
        analyzed_count=conversation.analysis_response_count or 0,
        current_count=current,
        has_prior_run=conversation.analyzed_at is not None,
    )
