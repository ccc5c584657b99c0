"""
Classification of upstream failures into a stable error taxonomy.

Upstream providers signal the same condition in several redundant and
sometimes inconsistent ways (HTTP status, `error.type`, `error.code`,
free-text message). Rules are evaluated in strict precedence order and
the first match wins. Structured fields are consulted before text
heuristics within each rule.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .upstream import UpstreamFailure, UpstreamOutcome, UpstreamTransportError


class ErrorCategory(str, Enum):
    QUOTA = "quota"
    RATE_LIMIT = "rate_limit"
    AUTH = "auth"
    INVALID_REQUEST = "invalid_request"
    NETWORK = "network"
    UNKNOWN = "unknown"


QUOTA_TOKENS = frozenset(
    {"insufficient_quota", "quota_exceeded", "billing_hard_limit_reached", "billing_not_active"}
)
RATE_LIMIT_TOKENS = frozenset({"rate_limit_exceeded", "rate_limit_error", "rate_limited"})
AUTH_TOKENS = frozenset(
    {"invalid_api_key", "authentication_error", "invalid_authentication", "unauthorized"}
)
INVALID_REQUEST_TOKENS = frozenset(
    {"invalid_request_error", "context_length_exceeded", "invalid_value"}
)

DEFAULT_CODES: Dict[ErrorCategory, str] = {
    ErrorCategory.QUOTA: "insufficient_quota",
    ErrorCategory.RATE_LIMIT: "rate_limit_exceeded",
    ErrorCategory.AUTH: "invalid_api_key",
    ErrorCategory.INVALID_REQUEST: "invalid_request_error",
    ErrorCategory.UNKNOWN: "upstream_error",
}
TIMEOUT_CODE = "upstream_timeout"
UNREACHABLE_CODE = "upstream_unreachable"

_RETRY_IN_PATTERN = re.compile(
    r"(?:retry|try again)[^0-9]{0,20}?"
    r"(\d+(?:\.\d+)?)\s*(milliseconds?|ms|minutes?|mins?|m|seconds?|secs?|s)"
    r"(?:(\d+(?:\.\d+)?)s)?(?![a-z])",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class ClassifiedError:
    category: ErrorCategory
    code: str
    message: str
    status_code: Optional[int] = None
    retry_after_seconds: Optional[int] = None
    timed_out: bool = False
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_fallback_eligible(self) -> bool:
        return self.category is ErrorCategory.RATE_LIMIT


def _as_token(value: Any) -> Optional[str]:
    if isinstance(value, (str, int)) and not isinstance(value, bool):
        text = str(value).strip()
        return text or None
    return None


def extract_error_fields(parsed_body: Any) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    """
    Pull (type, code, message) out of an upstream error body.

    Handles `{"error": {...}}`, `{"error": "text"}` and flat bodies.
    """
    if not isinstance(parsed_body, dict):
        return None, None, None

    err = parsed_body.get("error")
    err_type = err_code = message = None
    if isinstance(err, dict):
        err_type = _as_token(err.get("type"))
        err_code = _as_token(err.get("code"))
        raw_message = err.get("message")
        message = raw_message if isinstance(raw_message, str) else None
    elif isinstance(err, str):
        message = err

    if err_type is None:
        flat_type = _as_token(parsed_body.get("type"))
        err_type = flat_type if flat_type != "error" else None
    if err_code is None:
        err_code = _as_token(parsed_body.get("code"))
    if message is None and isinstance(parsed_body.get("message"), str):
        message = parsed_body["message"]
    return err_type, err_code, message


def _seconds_from_match(match: re.Match) -> float:
    value = float(match.group(1))
    unit = match.group(2).lower()
    if unit in ("ms", "millisecond", "milliseconds"):
        return value / 1000
    if unit.startswith("m"):
        extra = float(match.group(3)) if match.group(3) else 0.0
        return value * 60 + extra
    return value


def extract_retry_after(header_value: Optional[str], message: Optional[str]) -> Optional[int]:
    """
    Seconds to wait before retrying, from a Retry-After header (delta
    seconds) or else a "try again in N seconds/minutes" phrase.
    """
    if header_value:
        try:
            seconds = float(header_value.strip())
        except ValueError:
            seconds = -1.0
        if seconds >= 0:
            return int(math.ceil(seconds))

    if message:
        match = _RETRY_IN_PATTERN.search(message)
        if match:
            return int(math.ceil(_seconds_from_match(match)))
    return None


def _is_quota(tokens: frozenset, text: str) -> bool:
    if tokens & QUOTA_TOKENS:
        return True
    return "quota" in text and any(word in text for word in ("exceeded", "billing", "plan"))


def _is_rate_limit(tokens: frozenset, status: Optional[int], text: str) -> bool:
    if tokens & RATE_LIMIT_TOKENS:
        return True
    if status == 429:
        return True
    return "rate limit" in text and "quota" not in text and "billing" not in text


def _is_auth(tokens: frozenset, status: Optional[int], text: str) -> bool:
    if tokens & AUTH_TOKENS:
        return True
    if status == 401:
        return True
    return any(word in text for word in ("api key", "authentication", "unauthorized"))


def _is_invalid_request(tokens: frozenset, status: Optional[int]) -> bool:
    return bool(tokens & INVALID_REQUEST_TOKENS) or status == 400


def classify(
    status: Optional[int],
    parsed_body: Any,
    raw_message: Optional[str] = None,
    *,
    retry_after_header: Optional[str] = None,
) -> ClassifiedError:
    """
    Map an upstream failure onto an ErrorCategory.

    Quota is checked before rate limit: both arrive as HTTP 429, but only
    a rate limit may be retried on the fallback model.
    """
    err_type, err_code, body_message = extract_error_fields(parsed_body)
    message = body_message or (raw_message or "").strip()
    if not message:
        message = f"Upstream provider returned HTTP {status}" if status else "Upstream provider error"

    tokens = frozenset(t.lower() for t in (err_type, err_code) if t)
    text = message.lower()

    if _is_quota(tokens, text):
        category = ErrorCategory.QUOTA
    elif _is_rate_limit(tokens, status, text):
        category = ErrorCategory.RATE_LIMIT
    elif _is_auth(tokens, status, text):
        category = ErrorCategory.AUTH
    elif _is_invalid_request(tokens, status):
        category = ErrorCategory.INVALID_REQUEST
    else:
        category = ErrorCategory.UNKNOWN

    # Waiting does not clear an exhausted quota.
    retry_after = None
    if category is not ErrorCategory.QUOTA:
        retry_after = extract_retry_after(retry_after_header, message)

    return ClassifiedError(
        category=category,
        code=err_code or err_type or DEFAULT_CODES[category],
        message=message,
        status_code=status,
        retry_after_seconds=retry_after,
        meta={
            "upstreamType": err_type,
            "upstreamCode": err_code,
            "upstreamError": parsed_body if parsed_body is not None else (raw_message or None),
        },
    )


def classify_transport_error(error: UpstreamTransportError) -> ClassifiedError:
    return ClassifiedError(
        category=ErrorCategory.NETWORK,
        code=TIMEOUT_CODE if error.timed_out else UNREACHABLE_CODE,
        message=error.message,
        timed_out=error.timed_out,
        meta={"upstreamError": None},
    )


def classify_outcome(outcome: UpstreamOutcome) -> Optional[ClassifiedError]:
    """Classify a failed upstream outcome; successes yield None."""
    if isinstance(outcome, UpstreamFailure):
        return classify(
            outcome.status_code,
            outcome.parsed_body,
            outcome.raw_text,
            retry_after_header=outcome.retry_after,
        )
    if isinstance(outcome, UpstreamTransportError):
        return classify_transport_error(outcome)
    return None


def invalid_request_error(message: str) -> ClassifiedError:
    """Classification for payload defects caught before any upstream call."""
    return ClassifiedError(
        category=ErrorCategory.INVALID_REQUEST,
        code=DEFAULT_CODES[ErrorCategory.INVALID_REQUEST],
        message=message,
        meta={"upstreamError": None},
    )


__all__ = [
    "ClassifiedError",
    "ErrorCategory",
    "classify",
    "classify_outcome",
    "classify_transport_error",
    "extract_error_fields",
    "extract_retry_after",
    "invalid_request_error",
]
