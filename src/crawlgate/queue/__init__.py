"""Job queue core for crawlgate.

This package provides the in-process queue manager, the plan-tier priority
scheduler, the cooperative cancellation token and the unit-of-work protocol
that crawl and analysis work implements.
"""

from crawlgate.queue.cancellation import CancellationToken, CancelReason, WorkCancelledError
from crawlgate.queue.manager import QueueManager
from crawlgate.queue.models import (
    Job,
    JobSnapshot,
    QueueConfig,
    QueueConfigPatch,
    QueueConfigUpdate,
    QueueStats,
)
from crawlgate.queue.protocol import UnitOfWork
from crawlgate.queue.scheduler import PriorityScheduler

__all__ = [
    "CancelReason",
    "CancellationToken",
    "Job",
    "JobSnapshot",
    "PriorityScheduler",
    "QueueConfig",
    "QueueConfigPatch",
    "QueueConfigUpdate",
    "QueueManager",
    "QueueStats",
    "UnitOfWork",
    "WorkCancelledError",
]
