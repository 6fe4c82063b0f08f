"""Ownership checks for conversation-scoped operations."""

import structlog

from chatbot.core.exceptions import ForbiddenError
from chatbot.models.conversation import Conversation
from chatbot.schemas.user import UserIdentity
from chatbot.services.conversation_repository import ConversationRepository

logger = structlog.get_logger()


class ConversationGate:
    """Confirms the caller owns a conversation before anything touches it."""

    def __init__(self, repository: ConversationRepository):
        self.repository = repository

    async def authorize(self, user: UserIdentity, conversation_id: int) -> Conversation:
        """Return the conversation, or raise ``ForbiddenError``.

        A conversation owned by someone else and one that does not exist
        produce the same error, so callers cannot probe for ids.
        """
        conversation = await self.repository.get_conversation(conversation_id)
        if conversation is None or conversation.user_id != user.id:
            logger.info(
                "conversation_access_denied",
                conversation_id=conversation_id,
                user_id=user.id,
                exists=conversation is not None,
            )
            raise ForbiddenError()
        return conversation
