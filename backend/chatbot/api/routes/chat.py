"""AI chat API routes."""

import structlog
from fastapi import APIRouter, Depends

from chatbot.api.deps import get_backend, get_current_user, get_pipeline
from chatbot.schemas.message import ChatRequest, ChatResponse, CompletionStatusResponse
from chatbot.schemas.user import UserIdentity
from chatbot.services.completion_client import CompletionBackend
from chatbot.services.conversation_pipeline import ConversationPipeline

logger = structlog.get_logger()
router = APIRouter()


@router.post("", response_model=ChatResponse)
async def chat(
    data: ChatRequest,
    pipeline: ConversationPipeline = Depends(get_pipeline),
):
    """Forward a message with its conversation context to the completion service."""
    return await pipeline.complete(data.conversation_id, data.message)


@router.get("/status", response_model=CompletionStatusResponse)
async def completion_status(
    current_user: UserIdentity = Depends(get_current_user),
    backend: CompletionBackend = Depends(get_backend),
):
    """Check whether the completion service is reachable."""
    available = await backend.is_available()
    logger.info("completion_status", provider=backend.name, available=available)
    return CompletionStatusResponse(
        provider=backend.name,
        available=available,
        model_name=backend.get_model_name(),
    )
