"""Chat and exchange API tests."""

import httpx
import pytest

from chatbot.services.conversation_pipeline import UNSAFE_REPLY
from conftest import create_conversation


async def messages_of(ac, conversation_id: int) -> list[dict]:
    response = await ac.get("/api/messages", params={"conversationId": conversation_id})
    return response.json()["messages"]


@pytest.mark.asyncio
async def test_chat_returns_reply_without_storing(alice, completion):
    conversation = await create_conversation(alice)

    response = await alice.post(
        "/api/chat",
        json={"conversationId": conversation["id"], "message": "Where should I go in Japan?"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["response"] == "Kyoto is lovely in autumn."
    assert data["conversation_id"] == conversation["id"]
    assert completion.requests[0]["prompt"] == "Where should I go in Japan?"
    assert await messages_of(alice, conversation["id"]) == []


@pytest.mark.asyncio
async def test_split_flow_trip_planning(alice, completion):
    """Client-driven flow: store user turn, ask for a reply, store the reply."""
    conversation = await create_conversation(alice)
    text = "Help me plan a trip to Kyoto"

    stored = await alice.post(
        "/api/messages", json={"conversationId": conversation["id"], "content": text, "sender": "user"}
    )
    assert stored.json()["topic"] == "Help me plan a trip to Kyoto"

    reply = await alice.post("/api/chat", json={"conversationId": conversation["id"], "message": text})
    assert reply.status_code == 200
    await alice.post(
        "/api/messages",
        json={"conversationId": conversation["id"], "content": reply.json()["response"], "sender": "ai"},
    )

    # Stored user turn is not sent twice
    contents = [m["content"] for m in completion.last_messages if m["role"] != "system"]
    assert contents == [text]

    messages = await messages_of(alice, conversation["id"])
    assert [(m["sender"], m["content"]) for m in messages] == [
        ("user", text),
        ("ai", "Kyoto is lovely in autumn."),
    ]
    listed = (await alice.get("/api/conversations")).json()["conversations"]
    assert listed[0]["conversation_topic"] == "Help me plan a trip to Kyoto"


@pytest.mark.asyncio
async def test_chat_context_includes_history(alice, completion):
    conversation = await create_conversation(alice)
    exchange_url = f"/api/conversations/{conversation['id']}/exchange"
    await alice.post(exchange_url, json={"message": "I want to visit Japan"})

    completion.reply({"content": "Try the ryokan."})
    await alice.post(exchange_url, json={"message": "Where should I stay?"})

    turns = [(m["role"], m["content"]) for m in completion.last_messages]
    assert turns[0][0] == "system"
    assert turns[1:] == [
        ("user", "I want to visit Japan"),
        ("assistant", "Kyoto is lovely in autumn."),
        ("user", "Where should I stay?"),
    ]


@pytest.mark.asyncio
async def test_chat_service_unavailable(alice, completion):
    conversation = await create_conversation(alice)
    completion.reply({"error": "model overloaded"}, status_code=503)

    response = await alice.post(
        "/api/chat", json={"conversationId": conversation["id"], "message": "Hello?"}
    )

    assert response.status_code == 503
    assert response.json() == {
        "error": "LLM service unavailable",
        "details": "model overloaded",
        "service_unavailable": True,
    }


@pytest.mark.asyncio
async def test_chat_unreachable_service_is_500(alice, completion):
    conversation = await create_conversation(alice)
    completion.raise_error = httpx.ConnectError("connection refused")

    response = await alice.post(
        "/api/chat", json={"conversationId": conversation["id"], "message": "Hello?"}
    )

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "LLM service unavailable"
    assert body["service_unavailable"] is True


@pytest.mark.asyncio
async def test_chat_rejects_harmful_message(alice, completion):
    conversation = await create_conversation(alice)
    response = await alice.post(
        "/api/chat", json={"conversationId": conversation["id"], "message": "eval(atob('x'))"}
    )
    assert response.status_code == 400
    assert completion.requests == []


@pytest.mark.asyncio
async def test_chat_forbidden_for_foreign_conversation(alice, bob, completion):
    conversation = await create_conversation(alice)
    response = await bob.post("/api/chat", json={"conversationId": conversation["id"], "message": "hi"})
    assert response.status_code == 403
    assert completion.requests == []


@pytest.mark.asyncio
async def test_chat_rate_limited(alice):
    conversation = await create_conversation(alice)
    for _ in range(10):
        response = await alice.post("/api/chat", json={"conversationId": conversation["id"], "message": "hi"})
        assert response.status_code == 200
    response = await alice.post("/api/chat", json={"conversationId": conversation["id"], "message": "hi"})
    assert response.status_code == 429


@pytest.mark.asyncio
async def test_unsafe_reply_is_replaced(alice, completion):
    conversation = await create_conversation(alice)
    completion.reply({"content": "Run document.cookie in the console"})
    response = await alice.post("/api/chat", json={"conversationId": conversation["id"], "message": "hi"})
    assert response.json()["response"] == UNSAFE_REPLY


@pytest.mark.asyncio
async def test_completion_status(alice):
    response = await alice.get("/api/chat/status")
    assert response.status_code == 200
    assert response.json() == {"provider": "query", "available": True, "model_name": "query"}


@pytest.mark.asyncio
async def test_exchange_stores_both_turns(alice):
    conversation = await create_conversation(alice)

    response = await alice.post(
        f"/api/conversations/{conversation['id']}/exchange",
        json={"message": "Help me plan a trip to Kyoto"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["topic"] == "Help me plan a trip to Kyoto"
    assert [(m["sender"], m["content"]) for m in data["messages"]] == [
        ("user", "Help me plan a trip to Kyoto"),
        ("ai", "Kyoto is lovely in autumn."),
    ]
    assert [m["id"] for m in await messages_of(alice, conversation["id"])] == [
        m["id"] for m in data["messages"]
    ]


@pytest.mark.asyncio
async def test_exchange_failure_keeps_user_turn(alice, completion):
    conversation = await create_conversation(alice)
    completion.reply({"error": "model overloaded"}, status_code=503)

    response = await alice.post(
        f"/api/conversations/{conversation['id']}/exchange",
        json={"message": "Are you there?"},
    )

    assert response.status_code == 503
    body = response.json()
    assert body["service_unavailable"] is True
    assert body["input"] == "Are you there?"
    assert body["message"]["content"] == "Are you there?"

    messages = await messages_of(alice, conversation["id"])
    assert [(m["sender"], m["content"]) for m in messages] == [("user", "Are you there?")]


@pytest.mark.asyncio
async def test_exchange_validation_failure_stores_nothing(alice, completion):
    conversation = await create_conversation(alice)
    response = await alice.post(
        f"/api/conversations/{conversation['id']}/exchange",
        json={"message": "   "},
    )
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid message: Message cannot be empty"}
    assert await messages_of(alice, conversation["id"]) == []
    assert completion.requests == []
