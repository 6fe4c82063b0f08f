"""Conversation pipeline: runs every conversation and message operation.

Each conversation-scoped operation runs the same chain:

  1. ConversationGate checks ownership (403, same for "missing" and "not yours")
  2. RateLimiter counts the call against the client's window (429)
  3. Sanitizer validates and cleans the text (400 on failure)
  4. ContentCodec encodes text on the way in, decodes it on the way out
  5. ConversationRepository reads/writes the rows

A message exchange (``exchange``) walks an explicit state machine:

  IDLE → VALIDATING → PERSISTING_USER_TURN → AWAITING_COMPLETION
       → PERSISTING_AI_TURN → IDLE            (ERROR reachable from any step)

The user turn is committed before the completion call, so a failed AI
reply leaves the user's message stored with no answer; nothing is rolled
back.
"""

import asyncio
import inspect
import weakref
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from chatbot.config import settings
from chatbot.core.exceptions import AppError, ValidationError
from chatbot.core.rate_limit import RateLimiter, get_rate_limiter
from chatbot.models.conversation import SENDER_AI, SENDER_USER, SENDERS, Conversation, Message
from chatbot.schemas.conversation import ConversationResponse
from chatbot.schemas.message import ChatResponse, MessagePage, MessageResponse
from chatbot.schemas.user import UserIdentity
from chatbot.services.authorization import ConversationGate
from chatbot.services.completion_client import CompletionBackend, CompletionClient, get_completion_backend
from chatbot.services.content_codec import ContentCodec
from chatbot.services.conversation_repository import ConversationRepository, PageAnchor
from chatbot.services.sanitizer import sanitize_and_validate

logger = structlog.get_logger()

TOPIC_MAX_LENGTH = 50
TOPIC_COLUMN_LENGTH = 255
UNSAFE_REPLY = "Sorry, I can't share that response. Please try rephrasing your question."

# Rate-limit labels, one per logical endpoint
CONVERSATIONS_READ = "CONVERSATIONS_API"
CONVERSATIONS_CREATE = "CREATE_CONVERSATION_API"
CONVERSATIONS_UPDATE = "UPDATE_CONVERSATION_API"
CONVERSATIONS_DELETE = "DELETE_CONVERSATION_API"
MESSAGES_READ = "MESSAGES_API"
MESSAGES_WRITE = "ADD_MESSAGE_API"
CHAT = "LLM_API"

MessageListener = Callable[[MessageResponse], Awaitable[None] | None]


class ExchangeState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    PERSISTING_USER_TURN = "persisting_user_turn"
    AWAITING_COMPLETION = "awaiting_completion"
    PERSISTING_AI_TURN = "persisting_ai_turn"
    ERROR = "error"


@dataclass
class ExchangeResult:
    user_message: MessageResponse
    ai_message: MessageResponse
    topic: str | None = None
    states: list[ExchangeState] = field(default_factory=list)

    @property
    def messages(self) -> list[MessageResponse]:
        return [self.user_message, self.ai_message]


def derive_topic(text: str) -> str:
    """First 50 characters of the message, with an ellipsis when cut."""
    if len(text) <= TOPIC_MAX_LENGTH:
        return text
    return text[:TOPIC_MAX_LENGTH] + "..."


# In-process serialization of exchanges per conversation
_exchange_locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()


def _exchange_lock(conversation_id: int) -> asyncio.Lock:
    lock = _exchange_locks.get(conversation_id)
    if lock is None:
        lock = asyncio.Lock()
        _exchange_locks[conversation_id] = lock
    return lock


async def _notify(listener: MessageListener | None, message: MessageResponse) -> None:
    if listener is None:
        return
    result = listener(message)
    if inspect.isawaitable(result):
        await result


class ConversationPipeline:
    """All conversation and message operations for one authenticated caller."""

    def __init__(
        self,
        db: AsyncSession,
        user: UserIdentity,
        client_key: str = "unknown",
        limiter: RateLimiter | None = None,
        codec: ContentCodec | None = None,
        backend: CompletionBackend | None = None,
    ):
        self.user = user
        self.client_key = client_key
        self.repository = ConversationRepository(db)
        self.gate = ConversationGate(self.repository)
        self.limiter = limiter or get_rate_limiter()
        self.codec = codec or ContentCodec()
        self.completion = CompletionClient(
            self.repository, self.codec, backend or get_completion_backend()
        )
        self.state = ExchangeState.IDLE
        self.transitions: list[ExchangeState] = []

    # ---- shared steps ----

    def _transition(self, state: ExchangeState) -> None:
        self.state = state
        self.transitions.append(state)

    def _throttle(self, label: str, limit: int) -> None:
        self.limiter.check(self.client_key, label, limit)

    async def _authorize(self, conversation_id: int, label: str, limit: int) -> Conversation:
        conversation = await self.gate.authorize(self.user, conversation_id)
        self._throttle(label, limit)
        return conversation

    @staticmethod
    def _clean(text: str | None, prefix: str) -> str:
        result = sanitize_and_validate(text)
        if not result.is_valid:
            raise ValidationError(f"{prefix}: {result.error}")
        return result.sanitized

    def _clean_topic(self, topic: str | None) -> str:
        if not isinstance(topic, str) or not topic.strip():
            raise ValidationError("Invalid topic")
        cleaned = self._clean(topic, "Invalid topic")
        if len(cleaned) > TOPIC_COLUMN_LENGTH:
            raise ValidationError(f"Invalid topic: Topic too long (max {TOPIC_COLUMN_LENGTH} characters)")
        return cleaned

    def _clean_reply(self, reply: str) -> str:
        result = sanitize_and_validate(reply)
        if not result.is_valid:
            logger.warning("completion_reply_rejected", reason=result.error)
            return UNSAFE_REPLY
        return result.sanitized

    def _to_response(self, message: Message, plaintext: str | None = None) -> MessageResponse:
        return MessageResponse(
            id=message.id,
            conversation_id=message.conversation_id,
            sender=message.sender,
            content=plaintext if plaintext is not None else self.codec.decode(message.content),
            timestamp=message.timestamp,
        )

    async def _persist_turn(
        self, conversation: Conversation, sender: str, text: str
    ) -> tuple[MessageResponse, str | None]:
        """Encode and store one turn; rename the conversation on its first user message."""
        first_user_turn = (
            sender == SENDER_USER
            and await self.repository.count_messages(conversation.id, sender=SENDER_USER) == 0
        )

        message = await self.repository.add_message(conversation.id, sender, self.codec.encode(text))

        topic = None
        if first_user_turn:
            topic = derive_topic(text)
            await self.repository.update_topic(conversation, topic)
            logger.info("conversation_topic_derived", conversation_id=conversation.id)

        # Respond with the text we were given, not a round-trip through the codec
        return self._to_response(message, plaintext=text), topic

    # ---- conversations ----

    async def list_conversations(self) -> list[ConversationResponse]:
        self._throttle(CONVERSATIONS_READ, settings.rate_limit_conversations_read)
        conversations = await self.repository.list_conversations(self.user.id)
        return [ConversationResponse.from_model(c) for c in conversations]

    async def create_conversation(self, topic: str) -> ConversationResponse:
        self._throttle(CONVERSATIONS_CREATE, settings.rate_limit_conversations_create)
        cleaned = self._clean_topic(topic)
        conversation = await self.repository.create_conversation(self.user.id, cleaned)
        logger.info("conversation_created", conversation_id=conversation.id, user_id=self.user.id)
        return ConversationResponse.from_model(conversation)

    async def rename_conversation(self, conversation_id: int, topic: str) -> ConversationResponse:
        conversation = await self._authorize(
            conversation_id, CONVERSATIONS_UPDATE, settings.rate_limit_conversations_update
        )
        cleaned = self._clean_topic(topic)
        conversation = await self.repository.update_topic(conversation, cleaned)
        return ConversationResponse.from_model(conversation)

    async def delete_conversation(self, conversation_id: int) -> None:
        conversation = await self._authorize(
            conversation_id, CONVERSATIONS_DELETE, settings.rate_limit_conversations_delete
        )
        await self.repository.delete_conversation(conversation)

    # ---- messages ----

    async def load_messages(
        self,
        conversation_id: int,
        page: int = 1,
        limit: int | None = None,
        anchor: PageAnchor = "oldest",
    ) -> MessagePage:
        """One page of decoded messages plus ``hasMore``."""
        limit = limit or settings.messages_page_size
        if page < 1 or limit < 1:
            raise ValidationError("Invalid pagination parameters")
        limit = min(limit, settings.messages_max_page_size)

        await self._authorize(conversation_id, MESSAGES_READ, settings.rate_limit_messages_read)
        rows, total = await self.repository.page_messages(conversation_id, page, limit, anchor)

        offset = (page - 1) * limit
        return MessagePage(
            messages=[self._to_response(m) for m in rows],
            total=total,
            has_more=offset + len(rows) < total,
            page=page,
            limit=limit,
        )

    async def append_message(
        self, conversation_id: int, content: str, sender: str
    ) -> tuple[MessageResponse, str | None]:
        """Store one message. Returns it decoded, plus the derived topic if any."""
        if sender not in SENDERS:
            raise ValidationError("Invalid sender")
        conversation = await self._authorize(
            conversation_id, MESSAGES_WRITE, settings.rate_limit_messages_write
        )
        cleaned = self._clean(content, "Invalid content")
        return await self._persist_turn(conversation, sender, cleaned)

    async def complete(self, conversation_id: int, text: str) -> ChatResponse:
        """Ask the completion service for a reply without storing anything."""
        await self._authorize(conversation_id, CHAT, settings.rate_limit_chat)
        cleaned = self._clean(text, "Invalid message")
        result = await self.completion.complete(conversation_id, cleaned, user_id=self.user.id)
        metadata = dict(result.metadata)
        if result.model:
            metadata.setdefault("model", result.model)
        return ChatResponse(
            response=self._clean_reply(result.content),
            conversation_id=conversation_id,
            metadata=metadata,
        )

    async def exchange(
        self,
        conversation_id: int,
        text: str,
        notify: MessageListener | None = None,
    ) -> ExchangeResult:
        """Send one user message and store the AI reply.

        ``notify`` is called with each decoded message as soon as it is
        stored, so a caller can show the user's turn before the reply exists.
        Any failure after validation carries the original ``input`` (and the
        stored user ``message``, if there is one) so the caller can restore it.
        """
        self.transitions = []
        self._transition(ExchangeState.VALIDATING)
        result = sanitize_and_validate(text)
        if not result.is_valid:
            self._transition(ExchangeState.ERROR)
            raise ValidationError(f"Invalid message: {result.error}")

        user_message: MessageResponse | None = None
        topic = None
        async with _exchange_lock(conversation_id):
            try:
                self._transition(ExchangeState.PERSISTING_USER_TURN)
                conversation = await self._authorize(conversation_id, CHAT, settings.rate_limit_chat)
                user_message, topic = await self._persist_turn(conversation, SENDER_USER, result.sanitized)
                await _notify(notify, user_message)

                self._transition(ExchangeState.AWAITING_COMPLETION)
                completion = await self.completion.complete(
                    conversation_id, result.sanitized, user_id=self.user.id
                )

                self._transition(ExchangeState.PERSISTING_AI_TURN)
                ai_message, _ = await self._persist_turn(
                    conversation, SENDER_AI, self._clean_reply(completion.content)
                )
                await _notify(notify, ai_message)
            except AppError as e:
                self._transition(ExchangeState.ERROR)
                e.extra.setdefault("input", text)
                if user_message is not None:
                    e.extra["message"] = user_message.model_dump(mode="json")
                logger.warning(
                    "exchange_failed",
                    conversation_id=conversation_id,
                    user_turn_stored=user_message is not None,
                    status=e.status_code,
                )
                raise

        self._transition(ExchangeState.IDLE)
        return ExchangeResult(
            user_message=user_message,
            ai_message=ai_message,
            topic=topic,
            states=list(self.transitions),
        )
