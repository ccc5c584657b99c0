"""
Relay of a successful upstream SSE stream to the client.
"""

from __future__ import annotations

from enum import Enum
from typing import AsyncIterator, Dict, List, Optional, Tuple

import httpx
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from .fallback import FallbackDecision
from .request_logger import RequestLogger

DONE_SENTINEL = b"data: [DONE]\n\n"

REQUEST_ID_HEADER = "X-Request-Id"
ORIGINAL_MODEL_HEADER = "X-Model-Requested"
SERVED_MODEL_HEADER = "X-Model-Served"
FALLBACK_HEADER = "X-Model-Fallback"

SSE_HEADERS: Dict[str, str] = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class StreamState(str, Enum):
    OPEN = "open"
    RELAYING = "relaying"
    CLOSED_NORMAL = "closed_normal"
    CLOSED_ERROR_PRE_HEADERS = "closed_error_pre_headers"
    CLOSED_ERROR_MID_STREAM = "closed_error_mid_stream"


class InvalidStreamTransition(RuntimeError):
    def __init__(self, current: StreamState, action: str) -> None:
        super().__init__(f"cannot {action} a stream in state {current.value}")
        self.current = current
        self.action = action


class StreamSession:
    """
    Lifecycle of one client response.

    Open -> Relaying -> Closed(Normal) | Closed(ErrorMidStream)
    Open -> Closed(ErrorPreHeaders)

    The status code is fixed by the first transition out of Open.
    """

    def __init__(self) -> None:
        self.state = StreamState.OPEN
        self._status_code: Optional[int] = None
        self.chunks_relayed = 0
        self.bytes_relayed = 0
        self.client_disconnected = False

    @property
    def status_code(self) -> Optional[int]:
        return self._status_code

    @property
    def headers_committed(self) -> bool:
        return self.state in (
            StreamState.RELAYING,
            StreamState.CLOSED_NORMAL,
            StreamState.CLOSED_ERROR_MID_STREAM,
        )

    @property
    def closed(self) -> bool:
        return self.state not in (StreamState.OPEN, StreamState.RELAYING)

    def _require(self, expected: StreamState, action: str) -> None:
        if self.state is not expected:
            raise InvalidStreamTransition(self.state, action)

    def commit_headers(self, status_code: int = 200) -> None:
        self._require(StreamState.OPEN, "commit headers on")
        self._status_code = status_code
        self.state = StreamState.RELAYING

    def fail_before_headers(self, status_code: int) -> None:
        self._require(StreamState.OPEN, "fail before headers")
        self._status_code = status_code
        self.state = StreamState.CLOSED_ERROR_PRE_HEADERS

    def record_chunk(self, size: int) -> None:
        self._require(StreamState.RELAYING, "relay a chunk on")
        self.chunks_relayed += 1
        self.bytes_relayed += size

    def finish(self, *, client_disconnected: bool = False) -> None:
        self._require(StreamState.RELAYING, "finish")
        self.client_disconnected = client_disconnected
        self.state = StreamState.CLOSED_NORMAL

    def fail_mid_stream(self) -> None:
        self._require(StreamState.RELAYING, "fail mid-stream")
        self.state = StreamState.CLOSED_ERROR_MID_STREAM


class SSEFrameSplitter:
    """
    Re-cut arbitrary byte chunks on SSE frame boundaries.

    Only the unfinished tail is held back; complete frames are released
    as soon as their blank-line terminator arrives.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    @staticmethod
    def _find_boundary(buffer: bytearray) -> Tuple[int, int]:
        found = [
            (idx, size)
            for idx, size in ((buffer.find(b"\r\n\r\n"), 4), (buffer.find(b"\n\n"), 2))
            if idx >= 0
        ]
        if not found:
            return -1, 0
        return min(found)

    def feed(self, chunk: bytes) -> List[bytes]:
        self._buffer.extend(chunk)
        frames: List[bytes] = []
        while True:
            idx, size = self._find_boundary(self._buffer)
            if idx < 0:
                break
            end = idx + size
            frames.append(bytes(self._buffer[:end]))
            del self._buffer[:end]
        return frames

    def flush(self) -> bytes:
        tail = bytes(self._buffer)
        self._buffer.clear()
        return tail


def is_done_frame(frame: bytes) -> bool:
    return frame.strip().replace(b" ", b"") == b"data:[DONE]"


def build_stream_headers(correlation_id: str, decision: Optional[FallbackDecision]) -> Dict[str, str]:
    """
    Response headers for the relay; a fallback is always disclosed.
    """
    headers = dict(SSE_HEADERS)
    headers.update(build_model_headers(correlation_id, decision))
    return headers


def build_model_headers(correlation_id: str, decision: Optional[FallbackDecision]) -> Dict[str, str]:
    headers = {REQUEST_ID_HEADER: correlation_id}
    if decision is not None and decision.attempted:
        headers[FALLBACK_HEADER] = "true"
        headers[ORIGINAL_MODEL_HEADER] = decision.original_model
        headers[SERVED_MODEL_HEADER] = decision.final_model
    return headers


async def relay_stream(
    response: httpx.Response,
    session: StreamSession,
    request_log: RequestLogger,
    *,
    model: Optional[str] = None,
) -> AsyncIterator[bytes]:
    """
    Forward upstream SSE frames to the client as they complete.

    Behaviour:
    - Upstream's own `data: [DONE]` frame is dropped and a single
      gateway sentinel is written after the upstream body ends.
    - A transport error while reading upstream cannot change the status
      already sent; the failure is logged and the body simply ends,
      without a sentinel.
    - If the client goes away, the generator is closed at a yield; that
      is recorded as a normal close.
    - The upstream response is closed in every case.
    """
    splitter = SSEFrameSplitter()
    session.commit_headers(200)
    try:
        async for chunk in response.aiter_bytes():
            if not chunk:
                continue
            for frame in splitter.feed(chunk):
                if is_done_frame(frame):
                    continue
                session.record_chunk(len(frame))
                yield frame
        tail = splitter.flush()
        if tail.strip() and not is_done_frame(tail):
            # Terminate the last frame so the sentinel stays a frame of its own.
            tail = tail.rstrip(b"\r\n") + b"\n\n"
            session.record_chunk(len(tail))
            yield tail
        yield DONE_SENTINEL
        session.finish()
        request_log.response(
            model=model,
            status=session.status_code,
            chunks=session.chunks_relayed,
            bytes=session.bytes_relayed,
        )
    except httpx.HTTPError as exc:
        session.fail_mid_stream()
        request_log.stream_error(
            model=model,
            message=str(exc) or exc.__class__.__name__,
            errorClass=exc.__class__.__name__,
            chunks=session.chunks_relayed,
        )
    finally:
        if session.state is StreamState.RELAYING:
            session.finish(client_disconnected=True)
            request_log.response(
                model=model,
                status=session.status_code,
                chunks=session.chunks_relayed,
                clientDisconnected=True,
            )
        await response.aclose()


def stream_response(
    response: httpx.Response,
    session: StreamSession,
    request_log: RequestLogger,
    *,
    decision: Optional[FallbackDecision],
    model: Optional[str] = None,
) -> StreamingResponse:
    return StreamingResponse(
        relay_stream(response, session, request_log, model=model),
        status_code=200,
        media_type="text/event-stream",
        headers=build_stream_headers(request_log.correlation_id, decision),
        # Closes upstream even if the body iterator never starts.
        background=BackgroundTask(response.aclose),
    )


__all__ = [
    "DONE_SENTINEL",
    "FALLBACK_HEADER",
    "InvalidStreamTransition",
    "ORIGINAL_MODEL_HEADER",
    "REQUEST_ID_HEADER",
    "SERVED_MODEL_HEADER",
    "SSEFrameSplitter",
    "StreamSession",
    "StreamState",
    "build_model_headers",
    "build_stream_headers",
    "is_done_frame",
    "relay_stream",
    "stream_response",
]
