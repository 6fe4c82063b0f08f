"""Completion client: conversation context in, assistant reply out.

The client assembles a bounded context window from the stored
conversation and hands it to a completion backend. Backends share one
interface and differ only in endpoint and payload shape:

  - ``query``: the LLM gateway service (``POST /query``)
  - ``openrouter``: OpenAI-compatible ``/chat/completions``
  - ``ollama``: local models via ``/api/chat``

Every backend talks HTTP through httpx and reports failures as
``CompletionServiceError`` so callers can tell "the AI is down" apart
from any other error.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import httpx
import structlog

from chatbot.config import settings
from chatbot.core.exceptions import CompletionServiceError
from chatbot.models.conversation import SENDER_AI, SENDER_USER
from chatbot.services.content_codec import ContentCodec
from chatbot.services.conversation_repository import ConversationRepository

logger = structlog.get_logger()

APOLOGY_REPLY = "Sorry, I couldn't generate a response. Please try again."

_ROLE_BY_SENDER = {SENDER_USER: "user", SENDER_AI: "assistant"}
_RESULT_TEXT_FIELDS = ("content", "response", "text", "output")


@dataclass
class CompletionResult:
    content: str
    model: str | None = None
    metadata: dict = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Response envelope helpers
# ---------------------------------------------------------------------------

def extract_reply(data) -> str | None:
    """Find the reply text in a completion response, whatever its envelope."""
    if not isinstance(data, dict):
        return None

    for key in ("content", "response"):
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value

    result = data.get("result")
    if isinstance(result, str) and result.strip():
        return result
    if isinstance(result, dict):
        nested = extract_reply(result)
        if nested:
            return nested
        for key in _RESULT_TEXT_FIELDS[2:]:
            value = result.get(key)
            if isinstance(value, str) and value.strip():
                return value

    choices = data.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        message = choices[0].get("message") or {}
        if isinstance(message, dict) and isinstance(message.get("content"), str) and message["content"].strip():
            return message["content"]
        if isinstance(choices[0].get("text"), str) and choices[0]["text"].strip():
            return choices[0]["text"]

    message = data.get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), str) and message["content"].strip():
        return message["content"]

    return None


def extract_error(data) -> str | None:
    """Diagnostic text from an error payload (``error``, ``detail`` or ``message``)."""
    if not isinstance(data, dict):
        return None
    error = data.get("error")
    if isinstance(error, dict):
        return error.get("message") or error.get("detail") or str(error)
    if error:
        return str(error)
    detail = data.get("detail")
    if detail:
        return str(detail)
    return None


def _safe_json(response: httpx.Response):
    try:
        return response.json()
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

class CompletionBackend(ABC):
    """Abstract base for completion services."""

    name = "base"

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.transport = transport

    @abstractmethod
    async def complete(self, messages: list[dict], user_id: str | None = None) -> CompletionResult:
        """Send the context and return the reply.

        Args:
            messages: List of {"role": "system"|"user"|"assistant", "content": "..."}.
            user_id: Caller id, forwarded where the backend accepts it.
        """

    @abstractmethod
    async def is_available(self) -> bool:
        """Check if the service is reachable."""

    def get_model_name(self) -> str:
        return getattr(self, "model", "") or ""

    def _client(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=5.0,
                read=timeout or settings.completion_timeout,
                write=5.0,
                pool=5.0,
            ),
            transport=self.transport,
        )

    def _describe_failure(self, status_code: int, message: str) -> str:
        return message

    async def _post(self, url: str, payload: dict, headers: dict | None = None):
        try:
            async with self._client() as client:
                resp = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning("completion_timeout", backend=self.name, url=url)
            raise CompletionServiceError(details="Completion service timed out") from e
        except httpx.HTTPError as e:
            logger.warning("completion_unreachable", backend=self.name, url=url, error=str(e))
            raise CompletionServiceError(details=f"Completion service unreachable: {e}") from e

        data = _safe_json(resp)
        if not resp.is_success:
            message = extract_error(data) or resp.text[:200] or "Backend service error"
            logger.warning("completion_error", backend=self.name, status=resp.status_code, error=message)
            raise CompletionServiceError(
                status_code=resp.status_code,
                details=self._describe_failure(resp.status_code, message),
            )

        upstream_error = extract_error(data) if isinstance(data, dict) and data.get("error") else None
        if upstream_error:
            logger.warning("completion_service_error", backend=self.name, error=upstream_error)
            raise CompletionServiceError(status_code=503, details=upstream_error)

        return data

    async def _probe(self, url: str, headers: dict | None = None) -> httpx.Response | None:
        try:
            async with self._client(timeout=5.0) as client:
                return await client.get(url, headers=headers)
        except httpx.HTTPError:
            return None


class QueryCompletionBackend(CompletionBackend):
    """LLM gateway exposing ``POST /query`` with ``{prompt, user_id}``."""

    name = "query"

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        super().__init__(transport)
        self.base_url = settings.completion_base_url.rstrip("/")
        self.model = "query"

    async def is_available(self) -> bool:
        resp = await self._probe(f"{self.base_url}/health")
        return resp is not None and resp.is_success

    async def complete(self, messages: list[dict], user_id: str | None = None) -> CompletionResult:
        prompt = messages[-1]["content"] if messages else ""
        data = await self._post(
            f"{self.base_url}/query",
            {"prompt": prompt, "user_id": user_id, "messages": messages},
        )
        reply = extract_reply(data)
        if reply is None:
            logger.warning("completion_reply_missing", backend=self.name)
        metadata = data.get("metadata") if isinstance(data, dict) else None
        return CompletionResult(
            content=reply or APOLOGY_REPLY,
            model=data.get("model") if isinstance(data, dict) else None,
            metadata=metadata if isinstance(metadata, dict) else {},
        )


class OpenRouterCompletionBackend(CompletionBackend):
    """OpenRouter (OpenAI-compatible) chat completions.

    Key difference: needs an API key; errors come back as
    ``{"error": {"message": ...}}``.
    """

    name = "openrouter"

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        super().__init__(transport)
        self.api_key = settings.openrouter_api_key
        self.base_url = settings.openrouter_base_url.rstrip("/")
        self.model = settings.openrouter_model

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "HTTP-Referer": settings.openrouter_referer,
            "X-Title": settings.openrouter_title,
        }

    def _describe_failure(self, status_code: int, message: str) -> str:
        if status_code == 401:
            return f"Authentication failed: {message}. Please check your API key."
        if status_code == 403:
            return f"Access denied: {message}. Please check your API key permissions."
        if status_code == 429:
            return f"Rate limit exceeded: {message}. Please try again later."
        return f"OpenRouter API error: {status_code} - {message}"

    async def is_available(self) -> bool:
        if not self.api_key:
            return False
        resp = await self._probe(f"{self.base_url}/models", headers=self._headers())
        return resp is not None and resp.is_success

    async def complete(self, messages: list[dict], user_id: str | None = None) -> CompletionResult:
        if not self.api_key:
            raise CompletionServiceError(details="OpenRouter API key is not configured")

        data = await self._post(
            f"{self.base_url}/chat/completions",
            {
                "model": self.model,
                "messages": messages,
                "max_tokens": settings.openrouter_max_tokens,
                "temperature": settings.openrouter_temperature,
                "stream": False,
            },
            headers=self._headers(),
        )
        reply = extract_reply(data)
        if reply is None:
            logger.warning("completion_reply_missing", backend=self.name)
        usage = data.get("usage") if isinstance(data, dict) else None
        return CompletionResult(
            content=reply or APOLOGY_REPLY,
            model=data.get("model", self.model) if isinstance(data, dict) else self.model,
            metadata={"usage": usage} if isinstance(usage, dict) else {},
        )


class OllamaCompletionBackend(CompletionBackend):
    """Ollama-based backend using the /api/chat endpoint."""

    name = "ollama"

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        super().__init__(transport)
        self.base_url = settings.ollama_base_url.rstrip("/")
        self.model = settings.ollama_model

    async def is_available(self) -> bool:
        resp = await self._probe(f"{self.base_url}/api/tags")
        if resp is None or resp.status_code != 200:
            return False
        data = _safe_json(resp) or {}
        model_names = [m.get("name", "") for m in data.get("models", [])]
        return any(n == self.model or n.startswith(f"{self.model}:") for n in model_names)

    async def complete(self, messages: list[dict], user_id: str | None = None) -> CompletionResult:
        data = await self._post(
            f"{self.base_url}/api/chat",
            {"model": self.model, "messages": messages, "stream": False},
        )
        reply = extract_reply(data)
        if reply is None:
            logger.warning("completion_reply_missing", backend=self.name)
        return CompletionResult(content=reply or APOLOGY_REPLY, model=self.model)


_BACKENDS: dict[str, type[CompletionBackend]] = {
    "query": QueryCompletionBackend,
    "openrouter": OpenRouterCompletionBackend,
    "ollama": OllamaCompletionBackend,
}


def get_completion_backend(
    provider: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> CompletionBackend:
    """Factory: return the configured completion backend."""
    name = (provider or settings.completion_provider).lower()
    backend_cls = _BACKENDS.get(name)
    if backend_cls is None:
        logger.warning("unknown_completion_provider", provider=name)
        backend_cls = QueryCompletionBackend
    return backend_cls(transport=transport)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class CompletionClient:
    """Builds the context window for a conversation and asks the backend for a reply."""

    def __init__(
        self,
        repository: ConversationRepository,
        codec: ContentCodec,
        backend: CompletionBackend,
        context_messages: int | None = None,
    ):
        self.repository = repository
        self.codec = codec
        self.backend = backend
        self.context_messages = context_messages or settings.completion_context_messages

    async def build_context(self, conversation_id: int, latest_user_text: str) -> list[dict]:
        history = await self.repository.recent_messages(conversation_id, limit=self.context_messages)
        turns = [
            {"role": _ROLE_BY_SENDER[msg.sender], "content": self.codec.decode(msg.content)}
            for msg in history
            if msg.sender in _ROLE_BY_SENDER
        ]

        # The user turn is usually stored just before completion; don't send it twice
        if turns and turns[-1]["role"] == "user" and turns[-1]["content"] == latest_user_text:
            turns.pop()

        context = []
        if settings.completion_include_persona and settings.completion_persona:
            context.append({"role": "system", "content": settings.completion_persona})
        context.extend(turns)
        context.append({"role": "user", "content": latest_user_text})
        return context

    async def complete(
        self,
        conversation_id: int,
        latest_user_text: str,
        user_id: str | None = None,
    ) -> CompletionResult:
        context = await self.build_context(conversation_id, latest_user_text)
        logger.info(
            "completion_request",
            backend=self.backend.name,
            conversation_id=conversation_id,
            context_turns=len(context),
        )
        return await self.backend.complete(context, user_id=user_id)
