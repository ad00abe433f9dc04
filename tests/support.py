"""Fakes shared by the crawlgate tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from crawlgate.domain.enums import WorkOutcome
from crawlgate.errors import TerminalWorkFailure, TransientWorkFailure
from crawlgate.queue.cancellation import CancellationToken


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ControlledUnit:
    """Unit of work that runs until the test releases it or its token fires.

    Jobs are identified by ``payload["name"]`` (``"unnamed"`` when absent). ``payload["outcome"]`` may be
    ``"transient"`` or ``"terminal"`` to fail instead of completing.
    """

    def __init__(self) -> None:
        self.started: list[str] = []
        self.running = 0
        self.max_running = 0
        self._release: dict[str, asyncio.Event] = {}

    def _event(self, name: str) -> asyncio.Event:
        return self._release.setdefault(name, asyncio.Event())

    def release(self, name: str) -> None:
        self._event(name).set()

    async def __call__(self, payload: dict[str, Any], token: CancellationToken) -> WorkOutcome:
        name = payload.get("name", "unnamed")
        self.started.append(name)
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            released = asyncio.ensure_future(self._event(name).wait())
            cancelled = asyncio.ensure_future(token.wait())
            _, pending = await asyncio.wait(
                {released, cancelled}, return_when=asyncio.FIRST_COMPLETED
            )
            for task in pending:
                task.cancel()
            if token.cancelled:
                return WorkOutcome.CANCELLED
        finally:
            self.running -= 1

        outcome = payload.get("outcome")
        if outcome == "transient":
            raise TransientWorkFailure(f"{name} failed")
        if outcome == "terminal":
            raise TerminalWorkFailure(f"{name} is broken")
        return WorkOutcome.COMPLETED


class ShieldedUnit(ControlledUnit):
    """Runs its whole body inside a non-interruptible section."""

    async def __call__(self, payload: dict[str, Any], token: CancellationToken) -> WorkOutcome:
        with token.non_interruptible():
            self.started.append(payload.get("name", "unnamed"))
            await self._event(payload.get("name", "unnamed")).wait()
        return WorkOutcome.COMPLETED


class FlakyUnit:
    """Fails with a transient error ``failures`` times, then completes."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    async def __call__(self, payload: dict[str, Any], token: CancellationToken) -> WorkOutcome:
        self.calls += 1
        if self.calls <= self.failures:
            raise TransientWorkFailure(f"attempt {self.calls} failed")
        return WorkOutcome.COMPLETED


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` on the event loop until it holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)
