"""Service layer exports.

Expose the OpenAIService, JobQueue, and AnalysisService implementations for easy importing.
"""

from .openai_client import OpenAIService
from .jobs import JobQueue
from .analysis import AnalysisService

__all__ = ["OpenAIService", "JobQueue", "AnalysisService"]
