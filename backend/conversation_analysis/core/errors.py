"""Exception hierarchy shared by the analysis pipeline.

Classes:
    AnalysisError: Root of every pipeline failure.
    ProviderError: Embedding or text generation call failed or returned unusable output.
    PersistenceError: A database write or commit failed.
    ValidationError: Unknown identifiers or malformed records at a stage boundary.
    ConcurrencyError: The worker no longer holds the job it is processing.
"""

from __future__ import annotations


class AnalysisError(Exception):
    """Base class for analysis failures."""


class ProviderError(AnalysisError):
    pass


class PersistenceError(AnalysisError):
    pass


class ValidationError(AnalysisError, ValueError):
    pass


class ConcurrencyError(AnalysisError, RuntimeError):
    pass
