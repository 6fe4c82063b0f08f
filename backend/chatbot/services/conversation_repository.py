"""Persistence access for conversations and messages.

Every query is scoped by an equality filter on ``user_id`` or
``conversation_id``. Message content is stored and returned exactly as
given: encoding/decoding is the caller's job. Database failures surface as
``PersistenceError``.
"""

from datetime import datetime, timezone
from typing import Literal

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from chatbot.core.exceptions import PersistenceError
from chatbot.models.base import utcnow
from chatbot.models.conversation import Conversation, Message

logger = structlog.get_logger()

PageAnchor = Literal["oldest", "newest"]


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


class ConversationRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _fail(self, operation: str, error: SQLAlchemyError, **context) -> PersistenceError:
        logger.error("persistence_error", operation=operation, error=str(error), **context)
        await self.db.rollback()
        return PersistenceError()

    # ---- conversations ----

    async def list_conversations(self, user_id: str) -> list[Conversation]:
        try:
            result = await self.db.execute(
                select(Conversation)
                .where(Conversation.user_id == user_id)
                .order_by(Conversation.created_at.desc(), Conversation.id.desc())
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise await self._fail("list_conversations", e, user_id=user_id) from e

    async def get_conversation(self, conversation_id: int) -> Conversation | None:
        try:
            result = await self.db.execute(
                select(Conversation).where(Conversation.id == conversation_id)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise await self._fail("get_conversation", e, conversation_id=conversation_id) from e

    async def create_conversation(self, user_id: str, topic: str) -> Conversation:
        conversation = Conversation(user_id=user_id, topic=topic, created_at=utcnow())
        try:
            self.db.add(conversation)
            await self.db.commit()
            await self.db.refresh(conversation)
            return conversation
        except SQLAlchemyError as e:
            raise await self._fail("create_conversation", e, user_id=user_id) from e

    async def update_topic(self, conversation: Conversation, topic: str) -> Conversation:
        try:
            conversation.topic = topic
            await self.db.commit()
            await self.db.refresh(conversation)
            return conversation
        except SQLAlchemyError as e:
            raise await self._fail("update_topic", e, conversation_id=conversation.id) from e

    async def delete_conversation(self, conversation: Conversation) -> None:
        """Delete the conversation's messages, then the conversation.

        Both deletes share one transaction: if the message delete fails the
        conversation row is left untouched.
        """
        conversation_id = conversation.id
        try:
            await self.db.execute(delete(Message).where(Message.conversation_id == conversation_id))
            await self.db.execute(delete(Conversation).where(Conversation.id == conversation_id))
            await self.db.commit()
        except SQLAlchemyError as e:
            raise await self._fail("delete_conversation", e, conversation_id=conversation_id) from e
        logger.info("conversation_deleted", conversation_id=conversation_id)

    # ---- messages ----

    async def add_message(self, conversation_id: int, sender: str, content: str) -> Message:
        """Insert and commit one message; the row is durable on return.

        The timestamp never goes backwards within a conversation, so reads
        ordered by ``(timestamp, id)`` keep insertion order.
        """
        try:
            latest = await self.db.scalar(
                select(func.max(Message.timestamp)).where(Message.conversation_id == conversation_id)
            )
            timestamp = utcnow()
            if latest is not None and _as_utc(latest) > timestamp:
                timestamp = _as_utc(latest)

            message = Message(
                conversation_id=conversation_id,
                sender=sender,
                content=content,
                timestamp=timestamp,
            )
            self.db.add(message)
            await self.db.commit()
            await self.db.refresh(message)
            return message
        except SQLAlchemyError as e:
            raise await self._fail("add_message", e, conversation_id=conversation_id) from e

    async def count_messages(self, conversation_id: int, sender: str | None = None) -> int:
        query = select(func.count()).select_from(Message).where(Message.conversation_id == conversation_id)
        if sender is not None:
            query = query.where(Message.sender == sender)
        try:
            return (await self.db.scalar(query)) or 0
        except SQLAlchemyError as e:
            raise await self._fail("count_messages", e, conversation_id=conversation_id) from e

    async def page_messages(
        self,
        conversation_id: int,
        page: int,
        limit: int,
        anchor: PageAnchor = "oldest",
    ) -> tuple[list[Message], int]:
        """Return one page of messages (ascending) and the total count.

        ``anchor="oldest"``: page ``k`` holds rows ``[(k-1)*limit, k*limit)``
        counted from the first message. ``anchor="newest"``: pages are counted
        back from the most recent message, so page 1 is the latest
        ``limit`` messages and page 2 the ones just before them.
        """
        total = await self.count_messages(conversation_id)
        skip = (page - 1) * limit

        if anchor == "newest":
            end = total - skip
            start = max(end - limit, 0)
            offset, size = start, max(end - start, 0)
        else:
            offset, size = skip, limit

        if size == 0 or offset >= total:
            return [], total

        try:
            result = await self.db.execute(
                select(Message)
                .where(Message.conversation_id == conversation_id)
                .order_by(Message.timestamp.asc(), Message.id.asc())
                .offset(offset)
                .limit(size)
            )
            return list(result.scalars().all()), total
        except SQLAlchemyError as e:
            raise await self._fail("page_messages", e, conversation_id=conversation_id) from e

    async def recent_messages(self, conversation_id: int, limit: int) -> list[Message]:
        """The last ``limit`` messages, oldest first."""
        try:
            result = await self.db.execute(
                select(Message)
                .where(Message.conversation_id == conversation_id)
                .order_by(Message.timestamp.desc(), Message.id.desc())
                .limit(limit)
            )
            messages = list(result.scalars().all())
            messages.reverse()
            return messages
        except SQLAlchemyError as e:
            raise await self._fail("recent_messages", e, conversation_id=conversation_id) from e
