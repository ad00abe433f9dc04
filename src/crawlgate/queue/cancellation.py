"""Cooperative cancellation token handed to every unit of work."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum


class CancelReason(str, Enum):
    CANCELLED = "cancelled"  # Operator or owner cancelled the job
    PREEMPTED = "preempted"  # Scheduler paused the job for higher-priority work
    SHUTDOWN = "shutdown"  # Process is stopping


class WorkCancelledError(Exception):
    """Raised by ``CancellationToken.raise_if_cancelled`` inside a unit of work."""

    def __init__(self, reason: CancelReason):
        super().__init__(f"Work stopped: {reason.value}")
        self.reason = reason


class CancellationToken:
    """Request-and-observe stop signal.

    The scheduler never kills a running unit of work. It sets this token and
    the work is expected to poll ``cancelled`` (or call
    ``raise_if_cancelled``) at safe points and return early.

    Work that must not be interrupted wraps the critical region in
    ``non_interruptible()``; preemption requests fail while any such region is
    open. Plain cancellation is still recorded and observed once the region
    ends.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: CancelReason | None = None
        self._shield_depth = 0

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> CancelReason | None:
        return self._reason

    @property
    def interruptible(self) -> bool:
        return self._shield_depth == 0

    def cancel(self, reason: CancelReason = CancelReason.CANCELLED) -> None:
        if self._reason is None:
            self._reason = reason
            self._event.set()

    def request_preemption(self) -> bool:
        """Ask the work to yield its slot. Returns False if it cannot be interrupted."""
        if not self.interruptible or self._reason is not None:
            return False
        self.cancel(CancelReason.PREEMPTED)
        return True

    @contextmanager
    def non_interruptible(self) -> Iterator[None]:
        self._shield_depth += 1
        try:
            yield
        finally:
            self._shield_depth -= 1

    def raise_if_cancelled(self) -> None:
        if self._reason is not None and self.interruptible:
            raise WorkCancelledError(self._reason)

    async def wait(self, timeout: float | None = None) -> bool:
        """Wait until cancelled or ``timeout`` elapses. Returns ``cancelled``."""
        if self._reason is not None:
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        except TimeoutError:
            pass
        return self.cancelled
