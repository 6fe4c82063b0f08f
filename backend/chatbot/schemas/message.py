"""Message and chat schemas.

Request bodies use the camelCase field names the web client sends
(``conversationId``); Python code uses snake_case.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Sender = Literal["user", "ai"]


class MessageCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: int = Field(alias="conversationId")
    content: str
    sender: Sender


class MessageResponse(BaseModel):
    """A message with its content in plain (decoded) form."""

    id: int
    conversation_id: int
    sender: Sender
    content: str
    timestamp: datetime


class MessageCreatedResponse(BaseModel):
    message: MessageResponse
    topic: str | None = None  # set when this message renamed the conversation


class MessagePage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    messages: list[MessageResponse]
    total: int
    has_more: bool = Field(serialization_alias="hasMore")
    page: int
    limit: int


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: int = Field(alias="conversationId")
    message: str


class ChatResponse(BaseModel):
    response: str
    conversation_id: int
    metadata: dict = {}


class ExchangeRequest(BaseModel):
    message: str


class ExchangeResponse(BaseModel):
    messages: list[MessageResponse]
    topic: str | None = None


class CompletionStatusResponse(BaseModel):
    provider: str
    available: bool
    model_name: str = ""
