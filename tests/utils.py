from __future__ import annotations

import asyncio
import inspect
import json
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import httpx

from chat_gateway.logging_config import EVENT_ATTR

Responder = Callable[[httpx.Request], Any]


def sse_frame(payload: Dict[str, Any]) -> bytes:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


def delta_frame(text: str, *, model: str = "primary-model") -> bytes:
    return sse_frame(
        {
            "id": "chatcmpl-test",
            "object": "chat.completion.chunk",
            "model": model,
            "choices": [{"index": 0, "delta": {"content": text}, "finish_reason": None}],
        }
    )


async def iter_chunks(chunks: List[bytes]) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk


async def broken_after(chunks: List[bytes]) -> AsyncIterator[bytes]:
    """Yield `chunks`, then fail the way a reset upstream connection does."""
    for chunk in chunks:
        yield chunk
    raise httpx.ReadError("upstream connection reset")


def stream_ok(chunks: List[bytes]) -> Responder:
    def _respond(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            content=iter_chunks(chunks),
        )

    return _respond


def stream_broken(chunks: List[bytes]) -> Responder:
    def _respond(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            content=broken_after(chunks),
        )

    return _respond


def json_ok(payload: Dict[str, Any]) -> Responder:
    def _respond(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=payload)

    return _respond


def json_error(
    status_code: int,
    payload: Dict[str, Any],
    *,
    headers: Optional[Dict[str, str]] = None,
) -> Responder:
    def _respond(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json=payload, headers=headers)

    return _respond


def text_error(status_code: int, text: str) -> Responder:
    def _respond(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, text=text)

    return _respond


def redirect(location: str, status_code: int = 302) -> Responder:
    def _respond(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, headers={"location": location}, text="moved")

    return _respond


def slow(seconds: float) -> Responder:
    async def _respond(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(seconds)
        return httpx.Response(200, json={})

    return _respond


def raises(exc: Exception) -> Responder:
    def _respond(request: httpx.Request) -> httpx.Response:
        raise exc

    return _respond


def rate_limit_body(message: str = "Rate limit reached for requests.") -> Dict[str, Any]:
    return {
        "error": {
            "message": message,
            "type": "requests",
            "param": None,
            "code": "rate_limit_exceeded",
        }
    }


def quota_body() -> Dict[str, Any]:
    return {
        "error": {
            "message": (
                "You exceeded your current quota, please check your plan and billing details."
            ),
            "type": "insufficient_quota",
            "param": None,
            "code": "insufficient_quota",
        }
    }


def logged_events(caplog, name: Optional[str] = None) -> List[Dict[str, Any]]:
    """Structured gateway events captured by caplog, optionally filtered by name."""
    events = [getattr(r, EVENT_ATTR) for r in caplog.records if hasattr(r, EVENT_ATTR)]
    if name is not None:
        events = [e for e in events if e["event"] == name]
    return events


class MockProvider:
    """
    Scripted upstream chat-completions API.

    Each call consumes the next responder (the last one repeats) and the
    request is recorded so tests can assert on what the gateway sent.
    """

    def __init__(self, *responders: Responder) -> None:
        if not responders:
            raise ValueError("at least one responder is required")
        self._responders = list(responders)
        self.requests: List[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        idx = min(len(self.requests), len(self._responders)) - 1
        result = self._responders[idx](request)
        if inspect.isawaitable(result):
            result = await result
        return result

    @property
    def payloads(self) -> List[Dict[str, Any]]:
        return [json.loads(r.content.decode("utf-8")) for r in self.requests]

    @property
    def models(self) -> List[str]:
        return [p["model"] for p in self.payloads]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))
