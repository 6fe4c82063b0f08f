"""Input sanitization and validation for free text.

Used on every inbound user message, every conversation topic and every AI
reply before it is stored or shown.
"""

import re
from dataclasses import dataclass

MAX_MESSAGE_LENGTH = 10_000

_DANGEROUS_ELEMENTS = ("script", "iframe", "object", "embed", "form")

# <tag ...> ... </tag>, including everything between the tags
_ELEMENT_PATTERNS = [
    re.compile(rf"<{tag}\b[^<]*(?:(?!</{tag}>)<[^<]*)*</{tag}>", re.IGNORECASE)
    for tag in _DANGEROUS_ELEMENTS
]
# Leftover open, close or self-closing tags (void <embed>, unclosed <iframe ...>)
_TAG_PATTERNS = [
    re.compile(rf"</?{tag}\b[^>]*(?:>|$)", re.IGNORECASE)
    for tag in _DANGEROUS_ELEMENTS
]
_EVENT_HANDLER_QUOTED = re.compile(r"\s*\bon\w+\s*=\s*([\"'])[^\"']*\1", re.IGNORECASE)
_EVENT_HANDLER_BARE = re.compile(r"\s*\bon\w+\s*=\s*[^\s>\"']+", re.IGNORECASE)
_JAVASCRIPT_SCHEME = re.compile(r"\s*\bjavascript\s*:", re.IGNORECASE)
_DATA_SCHEME = re.compile(r"\s*\bdata\s*:", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")

_HARMFUL_PATTERNS = [
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"data:text/html", re.IGNORECASE),
    re.compile(r"vbscript:", re.IGNORECASE),
    re.compile(r"\bon\w+\s*=", re.IGNORECASE),
    re.compile(r"eval\s*\(", re.IGNORECASE),
    re.compile(r"document\.", re.IGNORECASE),
    re.compile(r"window\.", re.IGNORECASE),
    re.compile(r"localStorage\.", re.IGNORECASE),
    re.compile(r"sessionStorage\.", re.IGNORECASE),
]

EMPTY_MESSAGE = "Message cannot be empty"
MESSAGE_TOO_LONG = "Message too long (max 10,000 characters)"
HARMFUL_CONTENT = "Message contains potentially harmful content"


@dataclass(frozen=True)
class SanitizeResult:
    sanitized: str
    is_valid: bool
    error: str | None = None


def sanitize_html(text: str) -> str:
    """Remove dangerous markup, handler attributes and URI schemes; normalize whitespace."""
    if not text:
        return text

    sanitized = text
    for pattern in _ELEMENT_PATTERNS:
        sanitized = pattern.sub("", sanitized)
    for pattern in _TAG_PATTERNS:
        sanitized = pattern.sub("", sanitized)

    sanitized = _EVENT_HANDLER_QUOTED.sub("", sanitized)
    sanitized = _EVENT_HANDLER_BARE.sub("", sanitized)
    sanitized = _JAVASCRIPT_SCHEME.sub("", sanitized)
    sanitized = _DATA_SCHEME.sub("", sanitized)

    return _WHITESPACE.sub(" ", sanitized).strip()


def validate_message_length(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> bool:
    return len(text) <= max_length


def detect_harmful_content(text: str) -> bool:
    return any(pattern.search(text) for pattern in _HARMFUL_PATTERNS)


def validate_message(text: str) -> tuple[bool, str | None]:
    """Return ``(is_valid, error)`` for already-sanitized text."""
    if not text or not text.strip():
        return False, EMPTY_MESSAGE
    if not validate_message_length(text):
        return False, MESSAGE_TOO_LONG
    if detect_harmful_content(text):
        return False, HARMFUL_CONTENT
    return True, None


def sanitize_and_validate(text: str | None) -> SanitizeResult:
    """Sanitize ``text`` then validate the sanitized result."""
    sanitized = sanitize_html(text or "")
    is_valid, error = validate_message(sanitized)
    return SanitizeResult(sanitized=sanitized, is_valid=is_valid, error=error)
