"""SQLAlchemy models."""

from chatbot.models.base import Base
from chatbot.models.conversation import Conversation, Message

__all__ = [
    "Base",
    "Conversation",
    "Message",
]
