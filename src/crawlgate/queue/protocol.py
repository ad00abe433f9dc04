"""Unit-of-work protocol consumed by queue workers.

The crawler and analyzers live outside the scheduling core. Each queue is bound
to one callable that follows this protocol; the QueueManager invokes it once
per attempt from a worker slot.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from crawlgate.domain.enums import WorkOutcome
from crawlgate.queue.cancellation import CancellationToken


@runtime_checkable
class UnitOfWork(Protocol):
    """Protocol for crawl/analysis work executed by queue workers.

    Contract:
    - Poll ``token.cancelled`` (or call ``token.raise_if_cancelled()``) at safe
      points and return ``WorkOutcome.CANCELLED`` promptly once it is set. The
      scheduler cannot force compliance; work that ignores the token keeps
      running detached from its job after cancellation or preemption.
    - Wrap regions that must not be abandoned midway in
      ``token.non_interruptible()``; the scheduler will not preempt while one
      is open.
    - Raise ``TransientWorkFailure`` for retryable errors and
      ``TerminalWorkFailure`` for errors that retrying cannot fix. Any other
      exception is treated as transient.
    - Enforce its own maximum runtime; the scheduler does not time out work.

    Usage:
        ```python
        async def crawl(payload: dict[str, Any], token: CancellationToken) -> WorkOutcome:
            for url in payload["urls"]:
                if token.cancelled:
                    return WorkOutcome.CANCELLED
                await fetch(url)
            return WorkOutcome.COMPLETED
        ```
    """

    async def __call__(
        self,
        payload: dict[str, Any],
        token: CancellationToken,
    ) -> WorkOutcome | None:
        """Run the work described by ``payload``.

        Args:
            payload: Opaque work descriptor supplied at enqueue time.
            token: Cooperative cancellation token for this attempt.

        Returns:
            The outcome; ``None`` is read as ``WorkOutcome.COMPLETED``.
        """
        ...
