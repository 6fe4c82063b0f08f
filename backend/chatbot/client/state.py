"""Chat view state as an explicit reducer.

``reduce(state, event)`` is pure: it never touches the network, so the
reconciliation rules (prepend older pages, append sent messages, reset on
conversation switch) can be checked without a server.
"""

from dataclasses import dataclass, replace

from chatbot.schemas.conversation import ConversationResponse
from chatbot.schemas.message import MessageResponse


@dataclass(frozen=True)
class ChatState:
    conversations: tuple[ConversationResponse, ...] = ()
    active_conversation_id: int | None = None
    messages: tuple[MessageResponse, ...] = ()
    page: int = 1
    has_more: bool = True
    total: int = 0
    loading_more: bool = False
    ai_typing: bool = False
    draft: str = ""
    error: str | None = None
    retryable: bool = False
    scroll_pending: bool = False

    @property
    def active_conversation(self) -> ConversationResponse | None:
        return next((c for c in self.conversations if c.id == self.active_conversation_id), None)


# ---- events ----

@dataclass(frozen=True)
class ConversationsLoaded:
    conversations: list[ConversationResponse]


@dataclass(frozen=True)
class ConversationAdded:
    conversation: ConversationResponse


@dataclass(frozen=True)
class ConversationRemoved:
    conversation_id: int


@dataclass(frozen=True)
class TopicUpdated:
    conversation_id: int
    topic: str


@dataclass(frozen=True)
class ConversationSelected:
    conversation_id: int


@dataclass(frozen=True)
class PageLoadStarted:
    pass


@dataclass(frozen=True)
class PageLoaded:
    conversation_id: int
    messages: list[MessageResponse]
    page: int
    has_more: bool
    total: int
    reset: bool = False


@dataclass(frozen=True)
class MessageAppended:
    message: MessageResponse


@dataclass(frozen=True)
class TypingToggled:
    typing: bool


@dataclass(frozen=True)
class DraftChanged:
    text: str


@dataclass(frozen=True)
class ErrorRaised:
    message: str | None
    retryable: bool = False


@dataclass(frozen=True)
class ScrollHandled:
    pass


def _rename(conversation: ConversationResponse, topic: str) -> ConversationResponse:
    return conversation.model_copy(update={"conversation_topic": topic})


def reduce(state: ChatState, event) -> ChatState:
    """Return the state that results from applying ``event``."""
    if isinstance(event, ConversationsLoaded):
        return replace(state, conversations=tuple(event.conversations))

    if isinstance(event, ConversationAdded):
        return replace(state, conversations=(event.conversation, *state.conversations))

    if isinstance(event, ConversationRemoved):
        remaining = tuple(c for c in state.conversations if c.id != event.conversation_id)
        if state.active_conversation_id == event.conversation_id:
            return replace(
                state,
                conversations=remaining,
                active_conversation_id=None,
                messages=(),
                page=1,
                has_more=True,
                total=0,
            )
        return replace(state, conversations=remaining)

    if isinstance(event, TopicUpdated):
        return replace(
            state,
            conversations=tuple(
                _rename(c, event.topic) if c.id == event.conversation_id else c
                for c in state.conversations
            ),
        )

    if isinstance(event, ConversationSelected):
        return replace(
            state,
            active_conversation_id=event.conversation_id,
            messages=(),
            page=1,
            has_more=True,
            total=0,
            loading_more=False,
            error=None,
            retryable=False,
        )

    if isinstance(event, PageLoadStarted):
        return replace(state, loading_more=True, error=None)

    if isinstance(event, PageLoaded):
        if event.conversation_id != state.active_conversation_id:
            # Response for a conversation the user already left
            return state
        if event.reset:
            messages = tuple(event.messages)
        else:
            # Older page goes in front; skip rows already shown
            known = {m.id for m in state.messages}
            older = tuple(m for m in event.messages if m.id not in known)
            messages = older + state.messages
        return replace(
            state,
            messages=messages,
            page=event.page,
            has_more=event.has_more,
            total=event.total,
            loading_more=False,
        )

    if isinstance(event, MessageAppended):
        if event.message.conversation_id != state.active_conversation_id:
            return state
        return replace(
            state,
            messages=(*state.messages, event.message),
            total=state.total + 1,
            scroll_pending=True,
        )

    if isinstance(event, TypingToggled):
        return replace(state, ai_typing=event.typing)

    if isinstance(event, DraftChanged):
        return replace(state, draft=event.text)

    if isinstance(event, ErrorRaised):
        return replace(state, error=event.message, retryable=event.retryable, loading_more=False)

    if isinstance(event, ScrollHandled):
        return replace(state, scroll_pending=False)

    raise TypeError(f"Unknown chat event: {type(event).__name__}")
