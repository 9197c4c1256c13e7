"""Convenience exports for ORM models.

Surface frequently used SQLModel classes so calling code can import them from a single module.
"""

from .conversation import AnalysisStatus, Conversation
from .response import Response
from .embedding import Embedding
from .analysis_job import AnalysisJob, AnalysisStrategy, JobStatus
from .theme import Theme
from .similarity_group import SimilarityGroup, SimilarityGroupMember

__all__ = [
    "AnalysisStatus",
    "Conversation",
    "Response",
    "Embedding",
    "AnalysisJob",
    "AnalysisStrategy",
    "JobStatus",
    "Theme",
    "SimilarityGroup",
    "SimilarityGroupMember",
]
