from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["system", "assistant", "user"]


class ChatMessage(BaseModel):
    role: Role
    content: str


class ChatRequest(BaseModel):
    """
    Inbound chat request after normalisation.

    `messages` is already trimmed and bounded to the context window.
    """

    model_config = ConfigDict(populate_by_name=True)

    messages: list[ChatMessage]
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = Field(default=None, alias="maxTokens")
    agent: Optional[str] = None
    stream: bool = True
    user_id: Optional[str] = Field(default=None, alias="userId")
    chat_id: Optional[str] = Field(default=None, alias="chatId")
    correlation_id: str = Field(..., alias="correlationId")


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorEnvelope(BaseModel):
    """
    Error payload returned to clients for every failed chat request.

    `message` is the upstream wording verbatim; clients match on it.
    """

    ok: bool = False
    error_type: str = Field(..., alias="errorType")
    status: int
    code: str
    message: str
    request_id: str = Field(..., alias="requestId")
    retry_after: Optional[int] = Field(default=None, alias="retryAfter")
    meta: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)


__all__ = ["ChatMessage", "ChatRequest", "ErrorEnvelope", "HealthResponse", "Role"]
