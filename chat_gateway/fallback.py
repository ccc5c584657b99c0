"""
Single-hop fallback to an alternate model after a rate limit.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Tuple

from .errors import ClassifiedError, ErrorCategory, classify_outcome
from .model_selector import ModelSelection
from .request_logger import RequestLogger
from .upstream import UpstreamOutcome


class AttemptPhase(str, Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class FallbackDecision:
    attempted: bool
    original_model: str
    final_model: str
    reason: str

    def as_meta(self) -> dict:
        return {
            "attempted": self.attempted,
            "originalModel": self.original_model,
            "finalModel": self.final_model,
            "reason": self.reason,
        }


@dataclass
class AttemptResult:
    outcome: UpstreamOutcome
    error: Optional[ClassifiedError]
    decision: FallbackDecision
    phase: AttemptPhase
    attempts: int

    @property
    def succeeded(self) -> bool:
        return self.error is None


Invoke = Callable[[str], Awaitable[UpstreamOutcome]]


def decide_fallback(error: ClassifiedError, selection: ModelSelection) -> Tuple[bool, str]:
    """
    Whether a failed primary attempt moves to the fallback phase.

    Only a rate limit qualifies; quota, auth and invalid-request errors
    would fail the same way on any model.
    """
    if error.category is not ErrorCategory.RATE_LIMIT:
        return False, f"not_eligible:{error.category.value}"
    if selection.fallback_model is None:
        return False, "fallback_unavailable"
    if not selection.can_fallback:
        return False, "fallback_same_model"
    return True, "rate_limit"


def _log_attempt_error(
    request_log: Optional[RequestLogger],
    error: ClassifiedError,
    *,
    model: str,
    phase: AttemptPhase,
    latency_ms: Optional[float],
) -> None:
    if request_log is None:
        return
    fields = dict(
        model=model,
        phase=phase.value,
        category=error.category.value,
        status=error.status_code,
        code=error.code,
        message=error.message,
        retryAfter=error.retry_after_seconds,
        latency_ms=latency_ms,
    )
    if error.category is ErrorCategory.QUOTA:
        request_log.quota_error(**fields)
    elif error.category is ErrorCategory.RATE_LIMIT:
        request_log.rate_limit(**fields)
    else:
        request_log.error(**fields)


async def run_with_fallback(
    invoke: Invoke,
    selection: ModelSelection,
    *,
    request_log: Optional[RequestLogger] = None,
) -> AttemptResult:
    """
    Run the primary attempt and, when eligible, exactly one fallback attempt.

    The two attempts are strictly sequential. Whatever the fallback
    returns is final.
    """
    phase = AttemptPhase.PRIMARY
    outcome = await invoke(selection.model)
    error = classify_outcome(outcome)
    if error is None:
        return AttemptResult(
            outcome=outcome,
            error=None,
            decision=FallbackDecision(False, selection.model, selection.model, "primary_succeeded"),
            phase=phase,
            attempts=1,
        )

    _log_attempt_error(
        request_log, error, model=selection.model, phase=phase, latency_ms=outcome.latency_ms
    )
    should_retry, reason = decide_fallback(error, selection)
    fallback_model = selection.fallback_model
    if not should_retry or fallback_model is None:
        return AttemptResult(
            outcome=outcome,
            error=error,
            decision=FallbackDecision(False, selection.model, selection.model, reason),
            phase=phase,
            attempts=1,
        )

    phase = AttemptPhase.FALLBACK
    if request_log is not None:
        request_log.fallback_attempt(
            fromModel=selection.model,
            toModel=fallback_model,
            reason=reason,
            retryAfter=error.retry_after_seconds,
        )

    outcome = await invoke(fallback_model)
    error = classify_outcome(outcome)
    if error is not None:
        _log_attempt_error(
            request_log, error, model=fallback_model, phase=phase, latency_ms=outcome.latency_ms
        )
    return AttemptResult(
        outcome=outcome,
        error=error,
        decision=FallbackDecision(True, selection.model, fallback_model, reason),
        phase=phase,
        attempts=2,
    )


__all__ = [
    "AttemptPhase",
    "AttemptResult",
    "FallbackDecision",
    "decide_fallback",
    "run_with_fallback",
]
