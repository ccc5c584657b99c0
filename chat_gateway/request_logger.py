"""
Correlation-id keyed lifecycle logging for one chat request.

Each event is one log record carrying its fields as a dict (rendered by
the formatters in `logging_config`), so failures after the response
headers were sent can still be traced server-side.
"""

from __future__ import annotations

import datetime
import logging
import time
from typing import Any, Optional

from .logging_config import EVENT_ATTR
from .logging_config import logger as default_logger

REQUEST_START = "request.start"
REQUEST_QUOTA_ERROR = "request.quota_error"
REQUEST_RATE_LIMIT = "request.rate_limit"
REQUEST_ERROR = "request.error"
REQUEST_FALLBACK_ATTEMPT = "request.fallback_attempt"
REQUEST_RESPONSE = "request.response"
REQUEST_STREAM_ERROR = "request.stream_error"
REQUEST_FAILURE = "request.failure"


class RequestLogger:
    def __init__(
        self,
        correlation_id: str,
        *,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.correlation_id = correlation_id
        self._log = log or default_logger
        self._started = time.perf_counter()

    def elapsed_ms(self) -> float:
        return round((time.perf_counter() - self._started) * 1000, 2)

    def event(
        self,
        name: str,
        *,
        level: int = logging.INFO,
        latency_ms: Optional[float] = None,
        **fields: Any,
    ) -> None:
        record: dict[str, Any] = {
            "event": name,
            "correlationId": self.correlation_id,
            "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(
                timespec="milliseconds"
            ),
        }
        if latency_ms is not None:
            record["latencyMs"] = latency_ms
        record.update({k: v for k, v in fields.items() if v is not None})
        self._log.log(
            level, "%s correlationId=%s", name, self.correlation_id, extra={EVENT_ATTR: record}
        )

    def start(self, **fields: Any) -> None:
        self.event(REQUEST_START, **fields)

    def quota_error(self, **fields: Any) -> None:
        self.event(REQUEST_QUOTA_ERROR, level=logging.WARNING, **fields)

    def rate_limit(self, **fields: Any) -> None:
        self.event(REQUEST_RATE_LIMIT, level=logging.WARNING, **fields)

    def error(self, **fields: Any) -> None:
        self.event(REQUEST_ERROR, level=logging.WARNING, **fields)

    def fallback_attempt(self, **fields: Any) -> None:
        self.event(REQUEST_FALLBACK_ATTEMPT, **fields)

    def response(self, **fields: Any) -> None:
        self.event(REQUEST_RESPONSE, latency_ms=self.elapsed_ms(), **fields)

    def stream_error(self, **fields: Any) -> None:
        self.event(REQUEST_STREAM_ERROR, level=logging.WARNING, latency_ms=self.elapsed_ms(), **fields)

    def failure(self, **fields: Any) -> None:
        self.event(REQUEST_FAILURE, level=logging.ERROR, latency_ms=self.elapsed_ms(), **fields)


__all__ = [
    "REQUEST_ERROR",
    "REQUEST_FAILURE",
    "REQUEST_FALLBACK_ATTEMPT",
    "REQUEST_QUOTA_ERROR",
    "REQUEST_RATE_LIMIT",
    "REQUEST_RESPONSE",
    "REQUEST_START",
    "REQUEST_STREAM_ERROR",
    "RequestLogger",
]
