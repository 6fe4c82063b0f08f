"""Conversation schemas for request/response validation."""

from datetime import datetime

from pydantic import BaseModel


class ConversationCreate(BaseModel):
    topic: str | None = None


class ConversationUpdate(BaseModel):
    topic: str | None = None


class ConversationResponse(BaseModel):
    id: int
    user_id: str
    conversation_topic: str
    created_at: datetime

    @classmethod
    def from_model(cls, conversation) -> "ConversationResponse":
        return cls(
            id=conversation.id,
            user_id=conversation.user_id,
            conversation_topic=conversation.topic,
            created_at=conversation.created_at,
        )


class ConversationEnvelope(BaseModel):
    conversation: ConversationResponse


class ConversationListResponse(BaseModel):
    conversations: list[ConversationResponse]


class DeleteResponse(BaseModel):
    success: bool = True
