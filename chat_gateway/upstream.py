import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

import httpx

from .schemas import ChatMessage


@dataclass
class UpstreamTarget:
    url: str
    api_key: str
    organization: Optional[str] = None


@dataclass
class UpstreamSuccess:
    """
    2xx response whose body has not been read yet.

    Whoever consumes `response` must close it.
    """

    response: httpx.Response
    latency_ms: float


@dataclass
class UpstreamFailure:
    status_code: int
    parsed_body: Optional[Any]
    raw_text: str
    latency_ms: float
    retry_after: Optional[str] = None


@dataclass
class UpstreamTransportError:
    timed_out: bool
    message: str
    latency_ms: float = 0.0


UpstreamOutcome = Union[UpstreamSuccess, UpstreamFailure, UpstreamTransportError]


def build_upstream_headers(target: UpstreamTarget, *, stream: bool) -> Dict[str, str]:
    headers: Dict[str, str] = {
        "Authorization": f"Bearer {target.api_key}",
        "Content-Type": "application/json",
        "Accept": "text/event-stream" if stream else "application/json",
    }
    if target.organization:
        headers["OpenAI-Organization"] = target.organization
    return headers


def build_chat_payload(
    *,
    model: str,
    messages: Sequence[ChatMessage],
    system_prompt: Optional[str],
    stream: bool,
    temperature: float,
    max_tokens: int,
) -> Dict[str, Any]:
    outbound: List[Dict[str, str]] = []
    if system_prompt:
        outbound.append({"role": "system", "content": system_prompt})
    outbound.extend({"role": m.role, "content": m.content} for m in messages)
    return {
        "model": model,
        "messages": outbound,
        "temperature": temperature,
        "max_tokens": max_tokens,
        "stream": stream,
    }


def parse_error_body(text: str) -> Optional[Any]:
    """Best-effort JSON decode of an upstream error body."""
    if not text.strip():
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


async def _send(
    client: httpx.AsyncClient, request: httpx.Request
) -> Union[UpstreamSuccess, UpstreamFailure]:
    started = time.perf_counter()
    resp = await client.send(request, stream=True)
    if 200 <= resp.status_code < 300:
        return UpstreamSuccess(response=resp, latency_ms=_elapsed_ms(started))

    # Non-2xx bodies are small; read them fully and release the connection.
    try:
        text_bytes = await resp.aread()
    finally:
        await resp.aclose()
    text = text_bytes.decode("utf-8", errors="ignore")
    return UpstreamFailure(
        status_code=resp.status_code,
        parsed_body=parse_error_body(text),
        raw_text=text,
        latency_ms=_elapsed_ms(started),
        retry_after=resp.headers.get("retry-after"),
    )


async def invoke_upstream(
    client: httpx.AsyncClient,
    target: UpstreamTarget,
    *,
    model: str,
    messages: Sequence[ChatMessage],
    system_prompt: Optional[str],
    stream: bool,
    temperature: float,
    max_tokens: int,
    timeout_ms: int,
) -> UpstreamOutcome:
    """
    Perform exactly one POST to the provider's chat-completions endpoint.

    Behaviour:
    - The whole exchange up to response headers (plus the error body on
      non-2xx) is bounded by `timeout_ms`; when the timer fires the call
      is cancelled and reported as a timed-out transport error.
    - 2xx returns the still-open streaming response.
    - Non-2xx returns the status, the raw body text and, when the body is
      JSON, its parsed form.
    - Any other transport failure is returned, not raised.
    """
    payload = build_chat_payload(
        model=model,
        messages=messages,
        system_prompt=system_prompt,
        stream=stream,
        temperature=temperature,
        max_tokens=max_tokens,
    )
    request = client.build_request(
        "POST",
        target.url,
        headers=build_upstream_headers(target, stream=stream),
        json=payload,
    )

    started = time.perf_counter()
    try:
        return await asyncio.wait_for(_send(client, request), timeout=timeout_ms / 1000)
    except (asyncio.TimeoutError, httpx.TimeoutException):
        return UpstreamTransportError(
            timed_out=True,
            message=f"Upstream request timed out after {timeout_ms} ms",
            latency_ms=_elapsed_ms(started),
        )
    except httpx.HTTPError as exc:
        return UpstreamTransportError(
            timed_out=False,
            message=f"Upstream request failed: {exc}" if str(exc) else "Upstream request failed",
            latency_ms=_elapsed_ms(started),
        )


__all__ = [
    "UpstreamFailure",
    "UpstreamOutcome",
    "UpstreamSuccess",
    "UpstreamTarget",
    "UpstreamTransportError",
    "build_chat_payload",
    "build_upstream_headers",
    "invoke_upstream",
    "parse_error_body",
]
