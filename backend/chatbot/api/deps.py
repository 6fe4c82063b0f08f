"""Shared API dependencies."""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from chatbot.core.database import get_db
from chatbot.core.middleware import client_key
from chatbot.core.rate_limit import RateLimiter, get_rate_limiter
from chatbot.core.security import get_current_user
from chatbot.schemas.user import UserIdentity
from chatbot.services.completion_client import CompletionBackend, get_completion_backend
from chatbot.services.conversation_pipeline import ConversationPipeline

__all__ = ["get_db", "get_current_user", "get_backend", "get_pipeline"]


def get_backend() -> CompletionBackend:
    """Completion backend selected by settings."""
    return get_completion_backend()


async def get_pipeline(
    request: Request,
    current_user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
    backend: CompletionBackend = Depends(get_backend),
) -> ConversationPipeline:
    """Conversation pipeline bound to the authenticated caller and their network identity."""
    return ConversationPipeline(
        db,
        current_user,
        client_key=client_key(request),
        limiter=limiter,
        backend=backend,
    )
