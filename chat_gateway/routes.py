import json
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Optional

import httpx
from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import Response

from .deps import build_http_client, get_http_client, get_settings
from .handler import handle_chat_request, resolve_correlation_id
from .logging_config import EVENT_ATTR, logger, redact_headers
from .responder import internal_error_response
from .schemas import HealthResponse
from .settings import Settings, settings

ACCESS_EVENT = "http.access"


async def handle_unexpected_error(request: Request, exc: Exception):
    """
    Last-resort handler: structured 500 body, traceback only in the log.
    """
    error_id = uuid.uuid4().hex
    request_id = resolve_correlation_id(request.headers.get("X-Request-Id"))
    logger.exception(
        "Unhandled error %s %s (error_id=%s, request_id=%s)",
        request.method,
        request.url.path,
        error_id,
        request_id,
    )
    return internal_error_response(request_id, error_id)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Owns the shared upstream HTTP client for the process lifetime.
    """
    app.state.http_client = build_http_client(settings)
    try:
        yield
    finally:
        await app.state.http_client.aclose()


async def _read_json_body(request: Request) -> Any:
    raw = await request.body()
    if not raw.strip():
        return None
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


def create_app() -> FastAPI:
    app = FastAPI(title="Chat Gateway", version="0.1.0", lifespan=lifespan)
    app.add_exception_handler(Exception, handle_unexpected_error)

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        """
        One `http.access` event per request; credentials never reach the log.
        """
        started = time.perf_counter()
        access = {
            "event": ACCESS_EVENT,
            "method": request.method,
            "path": request.url.path,
            "client": request.client.host if request.client else None,
            "requestId": request.headers.get("X-Request-Id"),
            "headers": redact_headers(request.headers),
        }
        try:
            response = await call_next(request)
        except Exception:
            access["latencyMs"] = round((time.perf_counter() - started) * 1000, 2)
            logger.exception(
                "%s %s failed", request.method, request.url.path, extra={EVENT_ATTR: access}
            )
            raise
        access["status"] = response.status_code
        access["latencyMs"] = round((time.perf_counter() - started) * 1000, 2)
        access["requestId"] = response.headers.get("X-Request-Id", access["requestId"])
        logger.info(
            "%s %s -> %s",
            request.method,
            request.url.path,
            response.status_code,
            extra={EVENT_ATTR: access},
        )
        return response

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse()

    @app.post("/chat")
    async def chat(
        request: Request,
        client: httpx.AsyncClient = Depends(get_http_client),
        cfg: Settings = Depends(get_settings),
        x_request_id: Optional[str] = Header(default=None, alias="X-Request-Id"),
    ) -> Response:
        """
        Stream a chat completion from the upstream provider as SSE.

        On a rate limit the request is retried once on the configured
        fallback model; the substitution is disclosed in response headers.
        Failures before streaming starts return the JSON error envelope.
        """
        raw_body = await _read_json_body(request)
        return await handle_chat_request(
            raw_body,
            correlation_id=resolve_correlation_id(x_request_id),
            client=client,
            cfg=cfg,
        )

    return app
