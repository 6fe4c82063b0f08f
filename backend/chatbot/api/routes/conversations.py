"""Conversation API routes."""

from fastapi import APIRouter, Depends

from chatbot.api.deps import get_pipeline
from chatbot.schemas.conversation import (
    ConversationCreate,
    ConversationEnvelope,
    ConversationListResponse,
    ConversationUpdate,
    DeleteResponse,
)
from chatbot.schemas.message import ExchangeRequest, ExchangeResponse
from chatbot.services.conversation_pipeline import ConversationPipeline

router = APIRouter()


@router.get("", response_model=ConversationListResponse)
async def list_conversations(pipeline: ConversationPipeline = Depends(get_pipeline)):
    """List the caller's conversations, newest first."""
    return ConversationListResponse(conversations=await pipeline.list_conversations())


@router.post("", response_model=ConversationEnvelope, status_code=201)
async def create_conversation(
    data: ConversationCreate,
    pipeline: ConversationPipeline = Depends(get_pipeline),
):
    """Create a new conversation."""
    return ConversationEnvelope(conversation=await pipeline.create_conversation(data.topic))


@router.patch("/{conversation_id}", response_model=ConversationEnvelope)
async def rename_conversation(
    conversation_id: int,
    data: ConversationUpdate,
    pipeline: ConversationPipeline = Depends(get_pipeline),
):
    """Change a conversation's topic."""
    return ConversationEnvelope(
        conversation=await pipeline.rename_conversation(conversation_id, data.topic)
    )


@router.delete("/{conversation_id}", response_model=DeleteResponse)
async def delete_conversation(
    conversation_id: int,
    pipeline: ConversationPipeline = Depends(get_pipeline),
):
    """Delete a conversation and all of its messages."""
    await pipeline.delete_conversation(conversation_id)
    return DeleteResponse()


@router.post("/{conversation_id}/exchange", response_model=ExchangeResponse)
async def exchange(
    conversation_id: int,
    data: ExchangeRequest,
    pipeline: ConversationPipeline = Depends(get_pipeline),
):
    """Store a user message, get the AI reply and store it too.

    If the completion service fails, the user's message stays stored and
    the error body carries it (``message``) along with the original
    ``input`` for a retry.
    """
    result = await pipeline.exchange(conversation_id, data.message)
    return ExchangeResponse(messages=result.messages, topic=result.topic)
