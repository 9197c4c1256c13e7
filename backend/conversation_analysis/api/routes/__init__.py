"""Route exports for the API layer.

Re-exports the conversation router so callers can include every endpoint with a single import.
"""

from .conversations import router as conversations_router

__all__ = ["conversations_router"]
