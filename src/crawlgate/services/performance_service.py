"""Derived queue performance metrics for the admin dashboard.

Everything here is read-only and advisory: recommendations are text for an
operator, never applied automatically.
"""

from __future__ import annotations

from datetime import UTC, datetime

from crawlgate.domain.enums import PressureLevel
from crawlgate.domain.models import (
    CapacityAnalysis,
    OptimizationRecommendation,
    PerformanceMetrics,
    PerformanceReport,
    QueueCapacity,
    SystemHealth,
)
from crawlgate.queue.manager import QueueManager
from crawlgate.queue.models import QueueStats
from crawlgate.services.memory_monitor import MemoryMonitor

THROUGHPUT_WINDOW_SECONDS = 60.0
HIGH_UTILIZATION = 80.0
BACKLOG_WARNING_RATIO = 0.5
BACKLOG_CRITICAL_RATIO = 0.8
ERROR_RATE_WARNING = 5.0
ERROR_RATE_CRITICAL = 10.0


def _pct(part: float, whole: float) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


class PerformanceService:
    """Builds PerformanceReport snapshots from queue and memory state."""

    def __init__(self, queue_manager: QueueManager, memory_monitor: MemoryMonitor | None = None):
        self._queue_manager = queue_manager
        self._memory_monitor = memory_monitor

    def build_report(self) -> PerformanceReport:
        stats = self._queue_manager.get_all_queue_stats()
        metrics = self._performance_metrics(stats)
        capacity = self._capacity_analysis(stats)
        return PerformanceReport(
            timestamp=datetime.now(UTC),
            performance_metrics=metrics,
            system_health=self._system_health(stats, metrics),
            capacity_analysis=capacity,
            optimization_recommendations=self._recommendations(metrics, capacity),
        )

    def _performance_metrics(self, stats: list[QueueStats]) -> PerformanceMetrics:
        completed = sum(s.completed for s in stats)
        failed = sum(s.failed for s in stats)
        cancelled = sum(s.cancelled for s in stats)
        active = sum(s.active for s in stats)
        capacity = sum(s.capacity for s in stats)
        finished = completed + failed
        throughput = sum(
            self._queue_manager.count_completed_since(s.queue_name, THROUGHPUT_WINDOW_SECONDS)
            for s in stats
        ) * (60.0 / THROUGHPUT_WINDOW_SECONDS)
        return PerformanceMetrics(
            total_jobs=sum(s.total for s in stats),
            total_completed=completed,
            total_failed=failed,
            total_cancelled=cancelled,
            total_active=active,
            total_waiting=sum(s.waiting + s.delayed for s in stats),
            success_rate=_pct(completed, finished),
            error_rate=_pct(failed, finished),
            utilization_rate=_pct(active, capacity),
            throughput_per_minute=round(throughput, 2),
        )

    def _capacity_analysis(self, stats: list[QueueStats]) -> CapacityAnalysis:
        queues: list[QueueCapacity] = []
        for s in stats:
            config = self._queue_manager.get_queue_config(s.queue_name)
            backlog = s.waiting + s.delayed + s.paused
            queues.append(
                QueueCapacity(
                    queue_name=s.queue_name,
                    in_flight=s.active,
                    capacity=s.capacity,
                    utilization=_pct(s.active, s.capacity),
                    backlog=backlog,
                    max_queue_size=config.max_queue_size,
                    backlog_utilization=_pct(backlog, config.max_queue_size),
                )
            )
        overall = _pct(sum(s.active for s in stats), sum(s.capacity for s in stats))
        return CapacityAnalysis(
            queues=queues,
            overall_utilization=overall,
            can_accept_more_work=overall < HIGH_UTILIZATION
            or any(q.backlog_utilization < HIGH_UTILIZATION for q in queues),
        )

    def _system_health(self, stats: list[QueueStats], metrics: PerformanceMetrics) -> SystemHealth:
        status = "healthy"
        score = 100

        if metrics.error_rate > ERROR_RATE_CRITICAL:
            status, score = "critical", score - 50
        elif metrics.error_rate > ERROR_RATE_WARNING:
            status, score = "warning", score - 25

        stalled = [s for s in stats if s.is_active and s.active == 0 and s.waiting > 0]
        if stalled:
            status, score = "critical", score - 40

        if self._memory_monitor is not None:
            pressure = self._memory_monitor.get_memory_stats().pressure
            if pressure is PressureLevel.CRITICAL:
                status, score = "critical", score - 30
            elif pressure is PressureLevel.WARNING and status == "healthy":
                status, score = "warning", score - 15

        return SystemHealth(
            status=status,
            score=max(0, score),
            error_rate=metrics.error_rate,
            total_waiting=metrics.total_waiting,
            total_active=metrics.total_active,
            is_processing=metrics.total_active > 0,
        )

    def _recommendations(
        self, metrics: PerformanceMetrics, capacity: CapacityAnalysis
    ) -> list[OptimizationRecommendation]:
        recommendations: list[OptimizationRecommendation] = []
        for queue in capacity.queues:
            ratio = queue.backlog / queue.max_queue_size if queue.max_queue_size else 0.0
            if ratio >= BACKLOG_CRITICAL_RATIO:
                recommendations.append(
                    OptimizationRecommendation(
                        type="capacity",
                        priority="critical",
                        queue=queue.queue_name,
                        message=(
                            f"Queue '{queue.queue_name}' backlog is at "
                            f"{queue.backlog_utilization}% of its maximum size."
                        ),
                        action="Increase maxWorkers or maxQueueSize, or throttle submissions",
                    )
                )
            elif ratio >= BACKLOG_WARNING_RATIO and queue.utilization >= HIGH_UTILIZATION:
                recommendations.append(
                    OptimizationRecommendation(
                        type="scale",
                        priority="high",
                        queue=queue.queue_name,
                        message=(
                            f"Queue '{queue.queue_name}' has {queue.backlog} waiting jobs "
                            f"with all {queue.capacity} slots busy."
                        ),
                        action="Increase maxWorkers or concurrency",
                    )
                )

        if metrics.error_rate > ERROR_RATE_WARNING:
            recommendations.append(
                OptimizationRecommendation(
                    type="error",
                    priority="high",
                    message=f"High error rate: {metrics.error_rate:.2f}%.",
                    action="Investigate failing jobs and downstream availability",
                )
            )

        if self._memory_monitor is not None and self._memory_monitor.throttled_queues:
            recommendations.append(
                OptimizationRecommendation(
                    type="memory",
                    priority="critical",
                    message=(
                        "Admissions are throttled on "
                        f"{', '.join(self._memory_monitor.throttled_queues)} due to memory pressure."
                    ),
                    action="Reduce worker counts or queue sizes until memory recovers",
                )
            )
        return recommendations
