"""Conversation and Message models for AI chat."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chatbot.models.base import Base, TimestampMixin, utcnow

SENDER_USER = "user"
SENDER_AI = "ai"
SENDERS = (SENDER_USER, SENDER_AI)


class Conversation(Base, TimestampMixin):
    __tablename__ = "conversations"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    # Opaque id issued by the auth provider; users are not stored locally
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    topic: Mapped[str] = mapped_column(String(255), default="New Conversation", nullable=False)

    # Relationships
    messages = relationship(
        "Message",
        back_populates="conversation",
        order_by="Message.timestamp",
        passive_deletes=True,
        lazy="select",
    )


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    conversation_id: Mapped[int] = mapped_column(
        ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sender: Mapped[str] = mapped_column(String(10), nullable=False)  # user, ai
    content: Mapped[str] = mapped_column(Text, nullable=False)  # encoded, see ContentCodec
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )

    # Relationships
    conversation = relationship("Conversation", back_populates="messages")
