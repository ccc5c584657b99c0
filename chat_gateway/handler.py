"""
Per-request orchestration of the chat gateway.

normalize -> select model -> invoke -> classify -> maybe fallback ->
stream or respond with an error envelope.
"""

from __future__ import annotations

import json
import uuid
from typing import Any, Dict, Optional

import httpx
from fastapi.responses import JSONResponse, Response

from .errors import ClassifiedError, classify_transport_error, invalid_request_error
from .fallback import AttemptResult, FallbackDecision, run_with_fallback
from .model_selector import select_models
from .normalizer import InvalidChatRequest, normalize_request
from .personas import system_prompt_for
from .request_logger import RequestLogger
from .responder import error_response, error_status_code
from .schemas import ChatRequest
from .settings import Settings
from .stream_relay import StreamSession, build_model_headers, stream_response
from .upstream import (
    UpstreamOutcome,
    UpstreamSuccess,
    UpstreamTarget,
    UpstreamTransportError,
    invoke_upstream,
)

MAX_REQUEST_ID_LENGTH = 128


def resolve_correlation_id(header_value: Optional[str]) -> str:
    """Use the caller's X-Request-Id when usable, else mint one."""
    if header_value and header_value.strip():
        return header_value.strip()[:MAX_REQUEST_ID_LENGTH]
    return f"req_{uuid.uuid4().hex}"


def _peek(raw_body: Any) -> Dict[str, Any]:
    if not isinstance(raw_body, dict):
        return {}
    messages = raw_body.get("messages")
    return {
        "model": raw_body.get("model"),
        "agent": raw_body.get("agent"),
        "stream": raw_body.get("stream"),
        "userId": raw_body.get("userId"),
        "chatId": raw_body.get("chatId"),
        "messageCount": len(messages) if isinstance(messages, list) else None,
    }


def _fail(
    error: ClassifiedError,
    *,
    session: StreamSession,
    request_log: RequestLogger,
    decision: Optional[FallbackDecision] = None,
    attempts: int = 0,
) -> JSONResponse:
    session.fail_before_headers(error_status_code(error))
    request_log.failure(
        category=error.category.value,
        code=error.code,
        status=session.status_code,
        upstreamStatus=error.status_code,
        attempts=attempts,
        fallbackAttempted=decision.attempted if decision else False,
        model=decision.final_model if decision else None,
    )
    return error_response(error, request_id=request_log.correlation_id, decision=decision)


async def _complete_non_stream(
    success: UpstreamSuccess,
    *,
    result: AttemptResult,
    session: StreamSession,
    request_log: RequestLogger,
) -> Response:
    try:
        body = await success.response.aread()
    except httpx.HTTPError as exc:
        error = classify_transport_error(
            UpstreamTransportError(
                timed_out=isinstance(exc, httpx.TimeoutException),
                message=f"Upstream response could not be read: {exc}",
            )
        )
        return _fail(
            error,
            session=session,
            request_log=request_log,
            decision=result.decision,
            attempts=result.attempts,
        )
    finally:
        await success.response.aclose()

    text = body.decode("utf-8", errors="ignore")
    try:
        content: Any = json.loads(text)
    except json.JSONDecodeError:
        content = {"raw": text}

    session.commit_headers(200)
    session.finish()
    request_log.response(
        model=result.decision.final_model,
        status=session.status_code,
        stream=False,
        upstreamLatencyMs=success.latency_ms,
    )
    return JSONResponse(
        content=content,
        status_code=200,
        headers=build_model_headers(request_log.correlation_id, result.decision),
    )


async def handle_chat_request(
    raw_body: Any,
    *,
    correlation_id: str,
    client: httpx.AsyncClient,
    cfg: Settings,
) -> Response:
    request_log = RequestLogger(correlation_id)
    session = StreamSession()
    request_log.start(**_peek(raw_body))

    try:
        chat_request: ChatRequest = normalize_request(
            raw_body,
            correlation_id=correlation_id,
            context_limit=cfg.context_max_messages,
        )
    except InvalidChatRequest as exc:
        return _fail(invalid_request_error(str(exc)), session=session, request_log=request_log)

    selection = select_models(chat_request.model, cfg)
    target = UpstreamTarget(
        url=cfg.chat_completions_url(),
        api_key=cfg.api_key,
        organization=cfg.organization,
    )
    system_prompt = system_prompt_for(chat_request.agent)
    temperature = (
        chat_request.temperature
        if chat_request.temperature is not None
        else cfg.default_temperature
    )
    max_tokens = min(chat_request.max_tokens or cfg.max_output_tokens, cfg.max_output_tokens)

    async def invoke(model: str) -> UpstreamOutcome:
        return await invoke_upstream(
            client,
            target,
            model=model,
            messages=chat_request.messages,
            system_prompt=system_prompt,
            stream=chat_request.stream,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout_ms=cfg.timeout_ms,
        )

    result = await run_with_fallback(invoke, selection, request_log=request_log)
    if result.error is not None:
        return _fail(
            result.error,
            session=session,
            request_log=request_log,
            decision=result.decision,
            attempts=result.attempts,
        )

    success = result.outcome
    if not isinstance(success, UpstreamSuccess):
        raise RuntimeError(f"unclassified upstream outcome: {type(success).__name__}")
    if not chat_request.stream:
        return await _complete_non_stream(
            success, result=result, session=session, request_log=request_log
        )

    return stream_response(
        success.response,
        session,
        request_log,
        decision=result.decision,
        model=result.decision.final_model,
    )


__all__ = ["handle_chat_request", "resolve_correlation_id"]
