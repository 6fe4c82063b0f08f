"""Async HTTP client for the chat API."""

import httpx

from chatbot.schemas.conversation import ConversationResponse
from chatbot.schemas.message import ChatResponse, MessageCreatedResponse, MessagePage


class ApiError(Exception):
    """A non-2xx response from the chat API."""

    def __init__(self, status_code: int, message: str, payload: dict | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.payload = payload or {}

    @property
    def details(self) -> str | None:
        return self.payload.get("details")

    @property
    def service_unavailable(self) -> bool:
        return bool(self.payload.get("service_unavailable"))


class ChatApiClient:
    """Thin wrapper over the HTTP API; the caller owns the ``httpx.AsyncClient``
    (base URL, auth header or session cookie)."""

    def __init__(self, http: httpx.AsyncClient):
        self.http = http

    async def _request(self, method: str, url: str, fallback: str, **kwargs) -> dict:
        try:
            response = await self.http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise ApiError(0, f"{fallback}: {e}") from e

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if not response.is_success:
            message = payload.get("error") if isinstance(payload, dict) else None
            raise ApiError(response.status_code, message or fallback, payload if isinstance(payload, dict) else None)
        return payload

    async def get_conversations(self) -> list[ConversationResponse]:
        data = await self._request("GET", "/api/conversations", "Failed to fetch conversations")
        return [ConversationResponse.model_validate(c) for c in data.get("conversations", [])]

    async def create_conversation(self, topic: str) -> ConversationResponse:
        data = await self._request(
            "POST", "/api/conversations", "Failed to create conversation", json={"topic": topic}
        )
        return ConversationResponse.model_validate(data["conversation"])

    async def update_conversation_topic(self, conversation_id: int, topic: str) -> ConversationResponse:
        data = await self._request(
            "PATCH",
            f"/api/conversations/{conversation_id}",
            "Failed to update conversation topic",
            json={"topic": topic},
        )
        return ConversationResponse.model_validate(data["conversation"])

    async def delete_conversation(self, conversation_id: int) -> None:
        await self._request("DELETE", f"/api/conversations/{conversation_id}", "Failed to delete conversation")

    async def get_messages(
        self,
        conversation_id: int,
        page: int = 1,
        limit: int = 50,
        anchor: str = "oldest",
    ) -> MessagePage:
        data = await self._request(
            "GET",
            "/api/messages",
            "Failed to fetch messages",
            params={"conversationId": conversation_id, "page": page, "limit": limit, "anchor": anchor},
        )
        return MessagePage(
            messages=data.get("messages", []),
            total=data.get("total", 0),
            has_more=data.get("hasMore", False),
            page=data.get("page", page),
            limit=data.get("limit", limit),
        )

    async def add_message(self, conversation_id: int, content: str, sender: str) -> MessageCreatedResponse:
        data = await self._request(
            "POST",
            "/api/messages",
            "Failed to add message",
            json={"conversationId": conversation_id, "content": content, "sender": sender},
        )
        return MessageCreatedResponse.model_validate(data)

    async def send_chat_message(self, conversation_id: int, message: str) -> ChatResponse:
        data = await self._request(
            "POST",
            "/api/chat",
            "Failed to get LLM response",
            json={"conversationId": conversation_id, "message": message},
        )
        return ChatResponse.model_validate(data)
