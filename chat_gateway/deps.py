import httpx
from fastapi import Request

from .settings import Settings, settings


def build_http_client(cfg: Settings) -> httpx.AsyncClient:
    """
    Shared AsyncClient for upstream calls.

    The per-request bound up to response headers is enforced by the
    invoker; this timeout also caps each read while relaying a stream.
    """
    return httpx.AsyncClient(timeout=cfg.timeout_ms / 1000)


async def get_http_client(request: Request) -> httpx.AsyncClient:
    """
    FastAPI dependency returning the client opened in the app lifespan.

    Tests override this dependency with a MockTransport-backed client.
    """
    return request.app.state.http_client


def get_settings() -> Settings:
    return settings
