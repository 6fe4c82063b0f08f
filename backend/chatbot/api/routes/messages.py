"""Message API routes."""

from typing import Literal

from fastapi import APIRouter, Depends, Query

from chatbot.api.deps import get_pipeline
from chatbot.config import settings
from chatbot.core.exceptions import ValidationError
from chatbot.schemas.message import MessageCreate, MessageCreatedResponse, MessagePage
from chatbot.services.conversation_pipeline import ConversationPipeline

router = APIRouter()


@router.get("", response_model=MessagePage)
async def list_messages(
    conversation_id: int | None = Query(None, alias="conversationId"),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.messages_page_size, ge=1, le=settings.messages_max_page_size),
    anchor: Literal["oldest", "newest"] = Query("oldest"),
    pipeline: ConversationPipeline = Depends(get_pipeline),
):
    """Paginated, decoded messages of one conversation.

    ``anchor=newest`` counts pages back from the latest message, which is
    what a chat view needs to load older history upwards.
    """
    if conversation_id is None:
        raise ValidationError("Conversation ID required")
    return await pipeline.load_messages(conversation_id, page=page, limit=limit, anchor=anchor)


@router.post("", response_model=MessageCreatedResponse, status_code=201)
async def add_message(
    data: MessageCreate,
    pipeline: ConversationPipeline = Depends(get_pipeline),
):
    """Sanitize, encode and store one message."""
    message, topic = await pipeline.append_message(data.conversation_id, data.content, data.sender)
    return MessageCreatedResponse(message=message, topic=topic)
