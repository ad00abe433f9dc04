"""Application error types for consistent API error handling.

This module defines a small exception hierarchy for admission, operator and
work errors. Request-facing errors are converted to consistent HTTP responses
by the global exception handlers installed in `crawlgate.error_handling`.
Work errors (`TransientWorkFailure`, `TerminalWorkFailure`) are raised by units
of work and captured on the job record; they never reach a caller.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from crawlgate.domain.enums import AdmissionDeniedReason, JobState


class CrawlgateError(Exception):
    """Base exception for predictable application errors.

    Note: Avoid frozen dataclasses for exceptions; some frameworks attempt to
    mutate ``__traceback__`` and other attributes during handling, which breaks
    with frozen/slots dataclass exceptions.
    """

    def __init__(
        self,
        message: str,
        *,
        code: str = "UNKNOWN",
        status_code: int = 500,
        details: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details
        self.headers = headers

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.message


# -----------------------------------------------------------------------------
# Admission
# -----------------------------------------------------------------------------

_ADMISSION_STATUS = {
    AdmissionDeniedReason.QUEUE_FULL: 429,
    AdmissionDeniedReason.QUEUE_INACTIVE: 503,
    AdmissionDeniedReason.TENANT_LIMIT_EXCEEDED: 429,
    AdmissionDeniedReason.RATE_LIMIT_EXCEEDED: 429,
}


class AdmissionDeniedError(CrawlgateError):
    """Work was refused at admission time.

    ``reason`` is machine-readable; ``message`` explains the denial to the
    submitter. Rate-limit denials also carry the reset time and a
    ``Retry-After`` header.
    """

    def __init__(
        self,
        reason: AdmissionDeniedReason,
        message: str,
        *,
        reset_time: datetime | None = None,
        retry_after_seconds: float | None = None,
        details: dict[str, Any] | None = None,
    ):
        merged: dict[str, Any] = {"reason": reason.value}
        headers: dict[str, str] | None = None
        if reset_time is not None:
            merged["reset_time"] = reset_time.isoformat()
        if retry_after_seconds is not None:
            merged["retry_after_seconds"] = retry_after_seconds
            headers = {"Retry-After": str(max(1, int(retry_after_seconds + 0.999)))}
        if details:
            merged.update(details)
        super().__init__(
            message=message,
            code="ADMISSION_DENIED",
            status_code=_ADMISSION_STATUS[reason],
            details=merged,
            headers=headers,
        )
        self.reason = reason
        self.reset_time = reset_time
        self.retry_after_seconds = retry_after_seconds


# -----------------------------------------------------------------------------
# Operator / request errors
# -----------------------------------------------------------------------------


class OperatorError(CrawlgateError):
    """Invalid control-plane input. No state is mutated."""


class NotFoundError(OperatorError):
    """Resource not found (404)."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "NOT_FOUND",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message=message, code=code, status_code=404, details=details)


class UnknownQueueError(NotFoundError):
    """Queue name is not configured."""

    def __init__(self, queue_name: str):
        super().__init__(
            f"Unknown queue: {queue_name}",
            code="UNKNOWN_QUEUE",
            details={"queue_name": queue_name},
        )
        self.queue_name = queue_name


class ValidationError(OperatorError):
    """Invalid user input / request (400)."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "VALIDATION_ERROR",
        details: dict[str, Any] | None = None,
        status_code: int = 400,
    ):
        super().__init__(message=message, code=code, status_code=status_code, details=details)


class ForbiddenError(CrawlgateError):
    """Forbidden / permission error (403)."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "FORBIDDEN",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message=message, code=code, status_code=403, details=details)


class IllegalTransitionError(CrawlgateError):
    """A job state change outside the lifecycle graph was attempted (409)."""

    def __init__(self, job_id: str, current: JobState, target: JobState):
        super().__init__(
            f"Job {job_id} cannot move from {current.value} to {target.value}",
            code="ILLEGAL_TRANSITION",
            status_code=409,
            details={"job_id": job_id, "from": current.value, "to": target.value},
        )


# -----------------------------------------------------------------------------
# Work failures (raised by units of work)
# -----------------------------------------------------------------------------


class TransientWorkFailure(Exception):
    """Retryable failure; the queue's retry policy applies."""


class TerminalWorkFailure(Exception):
    """Non-retryable failure; the job is marked failed immediately."""
