"""Process memory monitoring and load shedding.

The monitor samples process memory (RSS via psutil by default), classifies it
against a configured budget and, under critical pressure, stops new admissions
on the queues with the largest backlog. Throttles it applied are lifted once a
later check finds memory back below the warning threshold. It only talks to
the QueueManager through its public API.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime

import psutil

from crawlgate.domain.enums import PressureLevel
from crawlgate.domain.models import MemoryAlert, MemoryStats, QueueMemoryUsage
from crawlgate.observability.metrics import MEMORY_ACTIONS, MEMORY_PRESSURE, MEMORY_USED_BYTES
from crawlgate.queue.manager import QueueManager

logger = logging.getLogger(__name__)

MB = 1024 * 1024

# Rough per-queue attribution, in MB
BASE_MEMORY_PER_WORKER_MB = 50
MEMORY_PER_ACTIVE_JOB_MB = 15
MEMORY_PER_WAITING_JOB_MB = 5
MEMORY_PER_RETAINED_JOB_MB = 2
RETAINED_JOBS_COUNTED = 100

_PRESSURE_GAUGE = {
    PressureLevel.NORMAL: 0,
    PressureLevel.WARNING: 1,
    PressureLevel.CRITICAL: 2,
}

MemorySampler = Callable[[], int]


def process_rss() -> int:
    """Resident set size of this process in bytes."""
    return int(psutil.Process().memory_info().rss)


class MemoryMonitor:
    """Samples memory, classifies pressure and throttles admissions."""

    def __init__(
        self,
        queue_manager: QueueManager,
        *,
        total_bytes: int,
        warning_ratio: float = 0.75,
        critical_ratio: float = 0.875,
        sampler: MemorySampler = process_rss,
        alert_history: int = 50,
    ) -> None:
        if not 0 < warning_ratio < critical_ratio <= 1:
            raise ValueError("expected 0 < warning_ratio < critical_ratio <= 1")
        self._queue_manager = queue_manager
        self.total_bytes = total_bytes
        self.warning_bytes = int(total_bytes * warning_ratio)
        self.critical_bytes = int(total_bytes * critical_ratio)
        self._sampler = sampler

        # Queues this monitor throttled; operator pauses are never touched
        self._throttled: set[str] = set()
        self._alerts: deque[MemoryAlert] = deque(maxlen=alert_history)
        self._task: asyncio.Task[None] | None = None
        self._interval_ms: int | None = None

    @property
    def is_monitoring(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def interval_ms(self) -> int | None:
        return self._interval_ms if self.is_monitoring else None

    @property
    def throttled_queues(self) -> list[str]:
        return sorted(self._throttled)

    def recent_alerts(self) -> list[MemoryAlert]:
        return list(reversed(self._alerts))

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def classify(self, used_bytes: int) -> PressureLevel:
        if used_bytes >= self.critical_bytes:
            return PressureLevel.CRITICAL
        if used_bytes >= self.warning_bytes:
            return PressureLevel.WARNING
        return PressureLevel.NORMAL

    def get_memory_stats(self) -> MemoryStats:
        used = self._sampler()
        pressure = self.classify(used)
        breakdown = self.get_queue_memory_breakdown()

        MEMORY_USED_BYTES.set(used)
        MEMORY_PRESSURE.set(_PRESSURE_GAUGE[pressure])

        return MemoryStats(
            timestamp=datetime.now(UTC),
            used_bytes=used,
            total_bytes=self.total_bytes,
            used_mb=round(used / MB, 2),
            total_mb=round(self.total_bytes / MB, 2),
            free_mb=round(max(0, self.total_bytes - used) / MB, 2),
            usage_percentage=round(used / self.total_bytes * 100, 2) if self.total_bytes else 0.0,
            pressure=pressure,
            queue_memory_usage={item.queue_name: item.estimated_memory_mb for item in breakdown},
            recommendations=self._recommendations(pressure, breakdown),
        )

    def get_queue_memory_breakdown(self) -> list[QueueMemoryUsage]:
        """Estimated memory per queue, largest first. Diagnostic only."""
        breakdown: list[QueueMemoryUsage] = []
        for stats in self._queue_manager.get_all_queue_stats():
            config = self._queue_manager.get_queue_config(stats.queue_name)
            queue = self._queue_manager.get_queue(stats.queue_name)
            waiting = stats.waiting + stats.delayed + stats.paused
            payload_bytes = sum(job.payload_size for job in queue.active.values())
            payload_bytes += sum(job.payload_size for job in queue.waiting_jobs())
            retained = min(len(queue.finished), RETAINED_JOBS_COUNTED)
            estimated = (
                config.max_workers * BASE_MEMORY_PER_WORKER_MB
                + stats.active * MEMORY_PER_ACTIVE_JOB_MB
                + waiting * MEMORY_PER_WAITING_JOB_MB
                + retained * MEMORY_PER_RETAINED_JOB_MB
                + payload_bytes / MB
            )
            breakdown.append(
                QueueMemoryUsage(
                    queue_name=stats.queue_name,
                    estimated_memory_mb=round(estimated, 2),
                    worker_count=config.max_workers,
                    queue_size=waiting + stats.active,
                    active_jobs=stats.active,
                    waiting_jobs=waiting,
                )
            )
        return sorted(breakdown, key=lambda item: item.estimated_memory_mb, reverse=True)

    def _recommendations(
        self, pressure: PressureLevel, breakdown: list[QueueMemoryUsage]
    ) -> list[str]:
        recommendations: list[str] = []
        if pressure is PressureLevel.CRITICAL:
            recommendations.append(
                "CRITICAL: memory above critical threshold; new admissions are throttled "
                "on the busiest queues"
            )
            recommendations.append("Reduce worker counts on the largest queues by 25%")
            recommendations.append("Clear waiting jobs that are no longer needed")
        elif pressure is PressureLevel.WARNING:
            recommendations.append("WARNING: memory above warning threshold; monitor closely")
            recommendations.append("Consider reducing queue sizes")
            recommendations.append("Consider a shorter job retention window")
        else:
            recommendations.append("Memory usage is within safe limits")

        if breakdown and breakdown[0].waiting_jobs > 0 and pressure is not PressureLevel.NORMAL:
            top = breakdown[0]
            recommendations.append(
                f"Queue '{top.queue_name}' holds the largest estimate "
                f"({top.estimated_memory_mb} MB, {top.waiting_jobs} waiting)"
            )
        return recommendations

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def check_memory_and_take_action(self) -> bool:
        """Sample memory and shed load if needed.

        Returns True when memory is critical and admissions are throttled;
        False for warning (diagnostic only) and normal (throttles lifted).
        """
        stats = self.get_memory_stats()

        if stats.pressure is PressureLevel.CRITICAL:
            throttled = self._throttle_busiest_queues()
            MEMORY_ACTIONS.labels(action="throttle").inc()
            self._alert(
                stats,
                f"Memory critical ({stats.usage_percentage}% of budget); "
                f"admissions throttled on {', '.join(throttled) or 'no additional queues'}",
                throttled,
            )
            logger.warning(
                "Memory critical: %.1f MB used, throttled queues: %s",
                stats.used_mb,
                self.throttled_queues,
            )
            return True

        if stats.pressure is PressureLevel.WARNING:
            MEMORY_ACTIONS.labels(action="warning").inc()
            self._alert(stats, f"Memory high ({stats.usage_percentage}% of budget)", [])
            logger.info("Memory warning: %.1f MB used", stats.used_mb)
            return False

        if self._throttled:
            released = self._release_throttles()
            MEMORY_ACTIONS.labels(action="release").inc()
            logger.info("Memory recovered; admissions released on %s", released)
        return False

    def _throttle_busiest_queues(self) -> list[str]:
        candidates = [
            stats
            for stats in self._queue_manager.get_all_queue_stats()
            if stats.is_active and not stats.admission_paused
        ]
        if not candidates:
            return []
        busiest = max(stats.waiting + stats.delayed for stats in candidates)
        throttled: list[str] = []
        for stats in candidates:
            if stats.waiting + stats.delayed != busiest:
                continue
            if self._queue_manager.throttle_admissions(stats.queue_name):
                self._throttled.add(stats.queue_name)
                throttled.append(stats.queue_name)
        return throttled

    def _release_throttles(self) -> list[str]:
        released = sorted(self._throttled)
        for name in released:
            self._queue_manager.release_admissions(name)
        self._throttled.clear()
        return released

    def _alert(self, stats: MemoryStats, message: str, throttled: list[str]) -> None:
        self._alerts.append(
            MemoryAlert(
                timestamp=stats.timestamp,
                pressure=stats.pressure,
                used_mb=stats.used_mb,
                message=message,
                throttled_queues=throttled,
            )
        )

    # ------------------------------------------------------------------
    # Monitoring loop
    # ------------------------------------------------------------------

    def start_memory_monitoring(self, interval_ms: int = 30000) -> bool:
        """Start the sampling loop. Returns False if it was already running."""
        if self.is_monitoring:
            return False
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        self._interval_ms = interval_ms
        self._task = asyncio.create_task(self._monitor_loop(interval_ms / 1000))
        logger.info("Memory monitoring started (every %.1fs)", interval_ms / 1000)
        return True

    async def stop_memory_monitoring(self) -> bool:
        """Stop the sampling loop. Returns False if it was not running."""
        task = self._task
        self._task = None
        if task is None or task.done():
            return False
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Memory monitoring stopped")
        return True

    async def _monitor_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                self.check_memory_and_take_action()
            except Exception:
                logger.exception("Memory monitoring check failed")
