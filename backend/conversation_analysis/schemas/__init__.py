"""Convenience exports for API schemas.

Re-exports the pydantic models used across the backend so consumers can import from one module.
"""

from .analysis import (
    AnalysisStatusResponse,
    AnalyzeRequest,
    AnalyzeResponse,
    ConversationCreatedResponse,
    ConversationCreateRequest,
    GroupMember,
    GroupMembersPage,
    JobSummary,
    ResponseItem,
    ResponsePoint,
    ResponsesImportRequest,
    ResponsesImportResponse,
    SimilarityGroupSummary,
    ThemeSummary,
    UnderstandViewResponse,
)

__all__ = [
    "AnalysisStatusResponse",
    "AnalyzeRequest",
    "AnalyzeResponse",
    "ConversationCreatedResponse",
    "ConversationCreateRequest",
    "GroupMember",
    "GroupMembersPage",
    "JobSummary",
    "ResponseItem",
    "ResponsePoint",
    "ResponsesImportRequest",
    "ResponsesImportResponse",
    "SimilarityGroupSummary",
    "ThemeSummary",
    "UnderstandViewResponse",
]
