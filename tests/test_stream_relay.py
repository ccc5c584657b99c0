import logging

import httpx
import pytest

from chat_gateway.fallback import FallbackDecision
from chat_gateway.request_logger import RequestLogger
from chat_gateway.stream_relay import (
    DONE_SENTINEL,
    InvalidStreamTransition,
    SSEFrameSplitter,
    StreamSession,
    StreamState,
    build_stream_headers,
    is_done_frame,
    relay_stream,
)

from tests.utils import MockProvider, delta_frame, logged_events, stream_broken, stream_ok


async def _open(provider: MockProvider) -> httpx.Response:
    client = provider.client()
    request = client.build_request("POST", "https://mock.local/v1/chat/completions", json={})
    return await client.send(request, stream=True)


async def _collect(gen) -> bytes:
    out = b""
    async for chunk in gen:
        out += chunk
    return out


def test_session_happy_path_transitions():
    session = StreamSession()
    assert session.state is StreamState.OPEN
    assert session.status_code is None

    session.commit_headers(200)
    session.record_chunk(10)
    session.record_chunk(5)
    session.finish()

    assert session.state is StreamState.CLOSED_NORMAL
    assert session.status_code == 200
    assert session.chunks_relayed == 2
    assert session.bytes_relayed == 15
    assert session.closed and session.headers_committed


def test_session_status_fixed_by_first_transition():
    session = StreamSession()
    session.fail_before_headers(429)

    assert session.state is StreamState.CLOSED_ERROR_PRE_HEADERS
    assert session.headers_committed is False
    with pytest.raises(InvalidStreamTransition):
        session.commit_headers(200)
    assert session.status_code == 429


def test_session_rejects_error_status_after_headers():
    session = StreamSession()
    session.commit_headers(200)

    with pytest.raises(InvalidStreamTransition):
        session.fail_before_headers(502)

    session.fail_mid_stream()
    assert session.state is StreamState.CLOSED_ERROR_MID_STREAM
    assert session.status_code == 200
    with pytest.raises(InvalidStreamTransition):
        session.record_chunk(1)


def test_splitter_recuts_frames_across_chunks():
    splitter = SSEFrameSplitter()

    assert splitter.feed(b"data: {\"a\"") == []
    assert splitter.feed(b": 1}\n\ndata: {\"b\": 2}\r\n\r\ndata: ") == [
        b'data: {"a": 1}\n\n',
        b'data: {"b": 2}\r\n\r\n',
    ]
    assert splitter.flush() == b"data: "
    assert splitter.flush() == b""


def test_is_done_frame():
    assert is_done_frame(b"data: [DONE]\n\n")
    assert is_done_frame(b"data:[DONE]\r\n\r\n")
    assert not is_done_frame(b'data: {"content": "[DONE]"}\n\n')


def test_stream_headers_disclose_fallback():
    decision = FallbackDecision(True, "primary-model", "fallback-model", "rate_limit")

    headers = build_stream_headers("req-1", decision)

    assert headers["Cache-Control"] == "no-cache"
    assert headers["X-Request-Id"] == "req-1"
    assert headers["X-Model-Fallback"] == "true"
    assert headers["X-Model-Requested"] == "primary-model"
    assert headers["X-Model-Served"] == "fallback-model"

    plain = build_stream_headers("req-2", FallbackDecision(False, "m", "m", "primary_succeeded"))
    assert "X-Model-Fallback" not in plain


@pytest.mark.asyncio
async def test_relay_forwards_frames_and_single_sentinel(caplog):
    caplog.set_level(logging.INFO, logger="chat_gateway")
    frames = [delta_frame("Hel"), delta_frame("lo"), b"data: [DONE]\n\n"]
    # Split one frame across chunk boundaries.
    raw = b"".join(frames)
    chunks = [raw[:7], raw[7:40], raw[40:]]
    response = await _open(MockProvider(stream_ok(chunks)))
    session = StreamSession()

    body = await _collect(relay_stream(response, session, RequestLogger("req-s"), model="m"))

    assert body == frames[0] + frames[1] + DONE_SENTINEL
    assert body.count(b"[DONE]") == 1
    assert session.state is StreamState.CLOSED_NORMAL
    assert session.chunks_relayed == 2
    assert response.is_closed
    assert len(logged_events(caplog, "request.response")) == 1


@pytest.mark.asyncio
async def test_relay_flushes_unterminated_tail():
    frame = delta_frame("x")
    response = await _open(MockProvider(stream_ok([frame, b'data: {"tail": true}'])))
    session = StreamSession()

    body = await _collect(relay_stream(response, session, RequestLogger("req-t")))

    assert body == frame + b'data: {"tail": true}\n\n' + DONE_SENTINEL


@pytest.mark.asyncio
async def test_relay_mid_stream_error_ends_body_without_sentinel(caplog):
    caplog.set_level(logging.INFO, logger="chat_gateway")
    first = delta_frame("partial")
    response = await _open(MockProvider(stream_broken([first])))
    session = StreamSession()

    body = await _collect(relay_stream(response, session, RequestLogger("req-m"), model="m"))

    assert body == first
    assert session.state is StreamState.CLOSED_ERROR_MID_STREAM
    assert session.status_code == 200
    assert response.is_closed
    stream_errors = [r for r in caplog.records if r.getMessage().startswith("request.stream_error")]
    assert len(stream_errors) == 1
    assert stream_errors[0].gateway_event["correlationId"] == "req-m"
    assert stream_errors[0].levelno == logging.WARNING


@pytest.mark.asyncio
async def test_relay_client_disconnect_closes_upstream():
    response = await _open(MockProvider(stream_ok([delta_frame("a"), delta_frame("b")])))
    session = StreamSession()
    gen = relay_stream(response, session, RequestLogger("req-d"))

    first = await gen.__anext__()
    await gen.aclose()

    assert first == delta_frame("a")
    assert session.state is StreamState.CLOSED_NORMAL
    assert session.client_disconnected is True
    assert response.is_closed
