"""Chat state reducer tests."""

from datetime import datetime, timezone

import pytest

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

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def conversation(id: int, topic: str = "New Conversation") -> ConversationResponse:
    return ConversationResponse(id=id, user_id="u", conversation_topic=topic, created_at=NOW)


def message(id: int, conversation_id: int = 1, sender: str = "user") -> MessageResponse:
    return MessageResponse(
        id=id, conversation_id=conversation_id, sender=sender, content=f"m{id}", timestamp=NOW
    )


@pytest.fixture
def selected() -> ChatState:
    state = reduce(ChatState(), ConversationsLoaded([conversation(1), conversation(2)]))
    return reduce(state, ConversationSelected(1))


def test_select_resets_pagination(selected):
    state = reduce(selected, PageLoaded(1, [message(5), message(6)], page=2, has_more=False, total=6))
    state = reduce(state, ConversationSelected(2))
    assert state.active_conversation_id == 2
    assert state.messages == ()
    assert state.page == 1
    assert state.has_more is True
    assert state.active_conversation.id == 2


def test_first_page_replaces_messages(selected):
    state = reduce(selected, PageLoaded(1, [message(1)], page=1, has_more=True, total=3, reset=True))
    state = reduce(state, PageLoaded(1, [message(2), message(3)], page=1, has_more=False, total=3, reset=True))
    assert [m.id for m in state.messages] == [2, 3]


def test_older_page_is_prepended(selected):
    state = reduce(selected, PageLoadStarted())
    assert state.loading_more is True
    state = reduce(state, PageLoaded(1, [message(3), message(4)], page=1, has_more=True, total=4, reset=True))
    state = reduce(state, PageLoaded(1, [message(1), message(2), message(3)], page=2, has_more=False, total=4))
    assert [m.id for m in state.messages] == [1, 2, 3, 4]
    assert state.page == 2
    assert state.has_more is False
    assert state.loading_more is False


def test_page_for_other_conversation_ignored(selected):
    state = reduce(selected, PageLoaded(2, [message(9, conversation_id=2)], page=1, has_more=False, total=1))
    assert state is selected


def test_append_message(selected):
    state = reduce(selected, MessageAppended(message(1)))
    state = reduce(state, MessageAppended(message(2, sender="ai")))
    assert [m.sender for m in state.messages] == ["user", "ai"]
    assert state.total == 2
    assert state.scroll_pending is True
    assert reduce(state, ScrollHandled()).scroll_pending is False


def test_append_for_other_conversation_ignored(selected):
    assert reduce(selected, MessageAppended(message(1, conversation_id=2))) is selected


def test_conversation_added_goes_first(selected):
    state = reduce(selected, ConversationAdded(conversation(3)))
    assert [c.id for c in state.conversations] == [3, 1, 2]


def test_removing_active_conversation_clears_view(selected):
    state = reduce(selected, MessageAppended(message(1)))
    state = reduce(state, ConversationRemoved(1))
    assert [c.id for c in state.conversations] == [2]
    assert state.active_conversation_id is None
    assert state.messages == ()


def test_removing_other_conversation_keeps_view(selected):
    state = reduce(selected, ConversationRemoved(2))
    assert state.active_conversation_id == 1


def test_topic_updated(selected):
    state = reduce(selected, TopicUpdated(1, "Trip planning"))
    assert state.active_conversation.conversation_topic == "Trip planning"
    assert state.conversations[1].conversation_topic == "New Conversation"


def test_typing_draft_and_error(selected):
    state = reduce(selected, TypingToggled(True))
    state = reduce(state, DraftChanged("hello"))
    state = reduce(state, ErrorRaised("LLM service unavailable", retryable=True))
    assert state.ai_typing is True
    assert state.draft == "hello"
    assert state.error == "LLM service unavailable"
    assert state.retryable is True
    cleared = reduce(state, ErrorRaised(None))
    assert cleared.error is None
    assert cleared.retryable is False


def test_unknown_event_rejected():
    with pytest.raises(TypeError):
        reduce(ChatState(), object())
