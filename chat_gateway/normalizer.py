"""
Inbound request validation and context-window trimming.
"""

from __future__ import annotations

import math
from typing import Any, Dict, List, Optional

from .schemas import ChatMessage, ChatRequest

ALLOWED_ROLES = frozenset({"system", "assistant", "user"})
DEFAULT_CONTEXT_WINDOW = 12
MAX_TEMPERATURE = 2.0


class InvalidChatRequest(ValueError):
    """Raised when the inbound body cannot produce a usable message list."""


def _coerce_role(value: Any) -> str:
    # Unknown roles are downgraded to "user" rather than rejected.
    if isinstance(value, str) and value in ALLOWED_ROLES:
        return value
    return "user"


def normalize_messages(
    raw_messages: Any, *, limit: int = DEFAULT_CONTEXT_WINDOW
) -> List[ChatMessage]:
    """
    Trim, filter and bound the inbound message list.

    Roles outside system/assistant/user become "user", string content is
    stripped, messages left empty are dropped, and only the newest
    `limit` messages are kept in their original order.
    """
    if not isinstance(raw_messages, list) or not raw_messages:
        raise InvalidChatRequest("messages must be a non-empty array")

    cleaned: List[ChatMessage] = []
    for item in raw_messages:
        if not isinstance(item, dict):
            continue
        content = item.get("content")
        if not isinstance(content, str):
            continue
        content = content.strip()
        if not content:
            continue
        cleaned.append(ChatMessage(role=_coerce_role(item.get("role")), content=content))

    if not cleaned:
        raise InvalidChatRequest("messages must contain at least one non-empty message")

    return cleaned[-limit:]


def _optional_str(body: Dict[str, Any], key: str) -> Optional[str]:
    value = body.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _parse_temperature(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidChatRequest("temperature must be a number")
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidChatRequest("temperature must be a finite number")
    if not 0 <= value <= MAX_TEMPERATURE:
        raise InvalidChatRequest(f"temperature must be between 0 and {MAX_TEMPERATURE:g}")
    return float(value)


def _parse_max_tokens(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidChatRequest("maxTokens must be a positive integer")
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidChatRequest("maxTokens must be a positive integer")
    if int(value) != value or value <= 0:
        raise InvalidChatRequest("maxTokens must be a positive integer")
    return int(value)


def normalize_request(
    body: Any,
    *,
    correlation_id: str,
    context_limit: int = DEFAULT_CONTEXT_WINDOW,
) -> ChatRequest:
    if not isinstance(body, dict):
        raise InvalidChatRequest("messages must be a non-empty array")

    messages = normalize_messages(body.get("messages"), limit=context_limit)
    stream = body.get("stream")

    return ChatRequest(
        messages=messages,
        model=_optional_str(body, "model"),
        temperature=_parse_temperature(body.get("temperature")),
        max_tokens=_parse_max_tokens(body.get("maxTokens")),
        agent=_optional_str(body, "agent"),
        stream=stream if isinstance(stream, bool) else True,
        user_id=_optional_str(body, "userId"),
        chat_id=_optional_str(body, "chatId"),
        correlation_id=correlation_id,
    )


__all__ = [
    "ALLOWED_ROLES",
    "DEFAULT_CONTEXT_WINDOW",
    "InvalidChatRequest",
    "normalize_messages",
    "normalize_request",
]
