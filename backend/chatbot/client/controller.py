"""Chat controller: drives the API and keeps ``ChatState`` in sync.

The controller owns the only mutable reference to the state and changes
it exclusively through ``dispatch`` (i.e. through ``reduce``). Sending a
message is optimistic: the user's turn is shown as soon as the server has
stored it, before the AI reply exists.
"""

import asyncio
from collections.abc import Callable

import structlog

from chatbot.client.api_client import ApiError, ChatApiClient
from chatbot.client.state import (
    ChatState,
    ConversationAdded,
    ConversationRemoved,
    ConversationSelected,
    ConversationsLoaded,
    DraftChanged,
    ErrorRaised,
    MessageAppended,
    PageLoaded,
    PageLoadStarted,
    ScrollHandled,
    TopicUpdated,
    TypingToggled,
    reduce,
)
from chatbot.schemas.conversation import ConversationResponse
from chatbot.schemas.message import MessageResponse
from chatbot.services.sanitizer import sanitize_and_validate

logger = structlog.get_logger()

MESSAGES_PER_PAGE = 50
SCROLL_DELAY = 0.1  # seconds, lets the view render the new message first


class ChatController:
    def __init__(
        self,
        api: ChatApiClient,
        page_size: int = MESSAGES_PER_PAGE,
        on_scroll_to_bottom: Callable[[], None] | None = None,
    ):
        self.api = api
        self.page_size = page_size
        self.on_scroll_to_bottom = on_scroll_to_bottom
        self.state = ChatState()
        self._sending = False

    def dispatch(self, event) -> ChatState:
        self.state = reduce(self.state, event)
        return self.state

    # ---- conversations ----

    async def load_conversations(self) -> None:
        try:
            conversations = await self.api.get_conversations()
        except ApiError as e:
            logger.warning("load_conversations_failed", status=e.status_code, error=e.message)
            self.dispatch(ErrorRaised("Failed to load conversations"))
            return
        self.dispatch(ConversationsLoaded(conversations))

    async def create_conversation(self, topic: str = "New Conversation") -> ConversationResponse | None:
        try:
            conversation = await self.api.create_conversation(topic)
        except ApiError as e:
            logger.warning("create_conversation_failed", status=e.status_code, error=e.message)
            self.dispatch(ErrorRaised("Failed to create conversation"))
            return None
        self.dispatch(ConversationAdded(conversation))
        await self.select_conversation(conversation.id)
        return conversation

    async def rename_conversation(self, conversation_id: int, topic: str) -> None:
        try:
            conversation = await self.api.update_conversation_topic(conversation_id, topic)
        except ApiError as e:
            self.dispatch(ErrorRaised(e.message))
            return
        self.dispatch(TopicUpdated(conversation.id, conversation.conversation_topic))

    async def delete_conversation(self, conversation_id: int) -> None:
        try:
            await self.api.delete_conversation(conversation_id)
        except ApiError as e:
            logger.warning("delete_conversation_failed", status=e.status_code, error=e.message)
            self.dispatch(ErrorRaised("Failed to delete conversation"))
            return
        self.dispatch(ConversationRemoved(conversation_id))

    # ---- messages ----

    async def select_conversation(self, conversation_id: int) -> None:
        """Switch conversation: reset pagination, then load the latest page."""
        self.dispatch(ConversationSelected(conversation_id))
        await self._load_page(conversation_id, 1, reset=True)

    async def load_older(self) -> bool:
        """Prepend the next page of older messages, if any and not already loading."""
        state = self.state
        if state.active_conversation_id is None or state.loading_more or not state.has_more:
            return False
        return await self._load_page(state.active_conversation_id, state.page + 1, reset=False)

    async def _load_page(self, conversation_id: int, page: int, reset: bool) -> bool:
        self.dispatch(PageLoadStarted())
        try:
            result = await self.api.get_messages(
                conversation_id, page=page, limit=self.page_size, anchor="newest"
            )
        except ApiError as e:
            logger.warning("load_messages_failed", conversation_id=conversation_id, status=e.status_code)
            self.dispatch(ErrorRaised("Failed to load messages"))
            return False
        self.dispatch(
            PageLoaded(
                conversation_id=conversation_id,
                messages=result.messages,
                page=page,
                has_more=result.has_more,
                total=result.total,
                reset=reset,
            )
        )
        if reset:
            self._schedule_scroll()
        return True

    def set_draft(self, text: str) -> None:
        self.dispatch(DraftChanged(text))

    async def send_message(self, text: str | None = None) -> bool:
        """Send the draft (or ``text``) and append both turns as they are stored.

        On any failure the typed text goes back into the draft so the user
        can resend it. A user turn that was stored before the failure stays
        in the list.
        """
        text = self.state.draft if text is None else text
        conversation_id = self.state.active_conversation_id
        if self._sending or conversation_id is None:
            return False

        check = sanitize_and_validate(text)
        if not check.is_valid:
            self.dispatch(DraftChanged(text))
            self.dispatch(ErrorRaised(check.error))
            return False

        self._sending = True
        self.dispatch(DraftChanged(""))
        try:
            created = await self.api.add_message(conversation_id, text, "user")
            self._append(created.message)
            if created.topic:
                self.dispatch(TopicUpdated(conversation_id, created.topic))

            self.dispatch(TypingToggled(True))
            reply = await self.api.send_chat_message(conversation_id, created.message.content)
            stored_reply = await self.api.add_message(conversation_id, reply.response, "ai")
            self._append(stored_reply.message)
            self.dispatch(ErrorRaised(None))
            return True
        except ApiError as e:
            logger.warning(
                "send_message_failed",
                conversation_id=conversation_id,
                status=e.status_code,
                error=e.message,
            )
            self.dispatch(DraftChanged(text))
            self.dispatch(ErrorRaised(e.message, retryable=e.service_unavailable))
            return False
        finally:
            self.dispatch(TypingToggled(False))
            self._sending = False

    def _append(self, message: MessageResponse) -> None:
        self.dispatch(MessageAppended(message))
        self._schedule_scroll()

    def _schedule_scroll(self) -> None:
        if self.on_scroll_to_bottom is None:
            return
        asyncio.get_running_loop().call_later(SCROLL_DELAY, self._scroll_to_bottom)

    def _scroll_to_bottom(self) -> None:
        self.on_scroll_to_bottom()
        self.dispatch(ScrollHandled())
