"""Headless chat client: API wrapper, reducer state and controller."""

from chatbot.client.api_client import ApiError, ChatApiClient
from chatbot.client.controller import ChatController
from chatbot.client.state import ChatState, reduce

__all__ = ["ApiError", "ChatApiClient", "ChatController", "ChatState", "reduce"]
