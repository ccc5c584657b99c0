from typing import Any, Dict, Optional

from fastapi import status
from fastapi.responses import JSONResponse

from .errors import ClassifiedError, ErrorCategory
from .fallback import FallbackDecision
from .schemas import ErrorEnvelope
from .stream_relay import build_model_headers

HINTS: Dict[ErrorCategory, str] = {
    ErrorCategory.QUOTA: (
        "The provider account has exhausted its quota. "
        "Check the plan and billing details before retrying."
    ),
    ErrorCategory.RATE_LIMIT: "The provider is rate limiting requests. Wait and retry.",
    ErrorCategory.AUTH: "The gateway's provider credentials were rejected. Check the configured API key.",
    ErrorCategory.INVALID_REQUEST: "The request payload was rejected. Fix the request before retrying.",
    ErrorCategory.NETWORK: "The provider could not be reached in time. Retry the request later.",
    ErrorCategory.UNKNOWN: "The provider returned an unexpected error.",
}


def error_status_code(error: ClassifiedError) -> int:
    if error.category in (ErrorCategory.QUOTA, ErrorCategory.RATE_LIMIT):
        return status.HTTP_429_TOO_MANY_REQUESTS
    if error.category is ErrorCategory.AUTH:
        return status.HTTP_401_UNAUTHORIZED
    if error.category is ErrorCategory.INVALID_REQUEST:
        return status.HTTP_400_BAD_REQUEST
    if error.category is ErrorCategory.NETWORK and error.timed_out:
        return status.HTTP_504_GATEWAY_TIMEOUT
    return status.HTTP_502_BAD_GATEWAY


def client_message(error: ClassifiedError) -> str:
    """
    Upstream wording, verbatim; a known rate-limit wait is appended.
    """
    if error.category is ErrorCategory.RATE_LIMIT and error.retry_after_seconds is not None:
        return (
            f"{error.message} Please wait {error.retry_after_seconds} seconds "
            "before trying again."
        )
    return error.message


def build_error_envelope(
    error: ClassifiedError,
    *,
    request_id: str,
    decision: Optional[FallbackDecision] = None,
) -> ErrorEnvelope:
    meta: Dict[str, Any] = {
        "hint": HINTS[error.category],
        "upstreamError": error.meta.get("upstreamError"),
        "upstreamStatus": error.status_code,
    }
    if decision is not None and decision.attempted:
        meta["fallback"] = decision.as_meta()

    return ErrorEnvelope(
        error_type=error.category.value,
        status=error_status_code(error),
        code=error.code,
        message=client_message(error),
        request_id=request_id,
        retry_after=error.retry_after_seconds,
        meta=meta,
    )


def error_response(
    error: ClassifiedError,
    *,
    request_id: str,
    decision: Optional[FallbackDecision] = None,
) -> JSONResponse:
    """
    JSONResponse carrying the standard envelope for a classified error.
    """
    envelope = build_error_envelope(error, request_id=request_id, decision=decision)
    headers = build_model_headers(request_id, decision)
    if envelope.retry_after is not None:
        headers["Retry-After"] = str(envelope.retry_after)
    return JSONResponse(
        status_code=envelope.status,
        content=envelope.model_dump(by_alias=True),
        headers=headers,
    )


def internal_error_response(request_id: str, error_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "ok": False,
            "errorType": "internal",
            "status": status.HTTP_500_INTERNAL_SERVER_ERROR,
            "code": "internal_error",
            "message": "Internal server error, please try again later",
            "requestId": request_id,
            "retryAfter": None,
            "meta": {"errorId": error_id},
        },
        headers={"X-Request-Id": request_id},
    )


__all__ = [
    "HINTS",
    "build_error_envelope",
    "client_message",
    "error_response",
    "error_status_code",
    "internal_error_response",
]
