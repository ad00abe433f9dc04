"""Queue-related models.

These models define the queue configuration record, the statistics shape
reported to operators, and the in-memory Job record owned by the QueueManager.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pydantic import ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

from crawlgate.domain.enums import LEGAL_TRANSITIONS, JobState, PriorityLevel, UsageCounter
from crawlgate.domain.models import CamelModel
from crawlgate.errors import IllegalTransitionError
from crawlgate.queue.cancellation import CancellationToken

__all__ = [
    "Job",
    "JobSnapshot",
    "QueueConfig",
    "QueueConfigPatch",
    "QueueConfigUpdate",
    "QueueStats",
]


def generate_job_id() -> str:
    """Generate a unique job ID."""
    return f"job_{uuid.uuid4().hex[:12]}"


def utcnow() -> datetime:
    return datetime.now(UTC)


class QueueConfig(CamelModel):
    """Static configuration of one named queue.

    Attributes:
        queue_name: Name of the queue (e.g. "web-scraping").
        max_workers: Number of workers.
        max_queue_size: Backlog ceiling (waiting + delayed + paused jobs).
        concurrency: Jobs per worker; capacity is ``max_workers * concurrency``.
        delay_between_jobs: Milliseconds a new job waits before it is eligible.
        retry_attempts: Retries after the first failed attempt.
        retry_delay: Base backoff in milliseconds (doubles per retry).
        is_active: Inactive queues neither admit nor dispatch.
    """

    queue_name: str
    max_workers: int = Field(default=1, ge=1)
    max_queue_size: int = Field(default=100, ge=1)
    concurrency: int = Field(default=1, ge=1)
    delay_between_jobs: int = Field(default=0, ge=0)
    retry_attempts: int = Field(default=0, ge=0)
    retry_delay: int = Field(default=1000, ge=0)
    is_active: bool = True
    description: str = ""

    @property
    def capacity(self) -> int:
        return self.max_workers * self.concurrency


class QueueConfigUpdate(CamelModel):
    """Partial config update accepted from operators. Unknown fields are rejected."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    max_workers: int | None = Field(default=None, ge=1)
    max_queue_size: int | None = Field(default=None, ge=1)
    concurrency: int | None = Field(default=None, ge=1)
    delay_between_jobs: int | None = Field(default=None, ge=0)
    retry_attempts: int | None = Field(default=None, ge=0)
    retry_delay: int | None = Field(default=None, ge=0)
    is_active: bool | None = None


class QueueConfigPatch(CamelModel):
    """Body of ``PUT /admin/queues/config``."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    queue_name: str
    config: QueueConfigUpdate


class QueueStats(CamelModel):
    """Per-queue job counts.

    ``completed``, ``failed`` and ``cancelled`` are cumulative since start.
    ``waiting`` counts jobs eligible now; ``delayed`` counts waiting jobs whose
    per-job delay has not elapsed yet.
    """

    queue_name: str
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0
    paused: int = 0
    cancelled: int = 0
    capacity: int = 0
    is_active: bool = True
    admission_paused: bool = False

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> int:
        return (
            self.waiting
            + self.active
            + self.completed
            + self.failed
            + self.delayed
            + self.paused
            + self.cancelled
        )


class JobSnapshot(CamelModel):
    """Read-only view of a job for API responses."""

    id: str
    queue_name: str
    tenant_id: str
    priority: PriorityLevel
    state: JobState
    attempts: int
    last_error: str | None = None
    enqueued_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None
    preempted: bool = False


@dataclass(eq=False)
class Job:
    """A unit of crawl/analysis work owned by the QueueManager.

    ``available_at`` and ``finished_clock`` use the manager's clock (monotonic
    seconds); the datetime fields are for reporting only. ``start_seq`` orders
    dispatches so the most recently started job can be found deterministically.
    """

    queue_name: str
    tenant_id: str
    priority: PriorityLevel
    payload: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=generate_job_id)
    state: JobState = JobState.WAITING
    enqueued_at: datetime = field(default_factory=utcnow)
    available_at: float = 0.0
    started_at: datetime | None = None
    finished_at: datetime | None = None
    finished_clock: float | None = None
    start_seq: int = 0
    attempts: int = 0
    last_error: str | None = None
    preempted: bool = False
    preempted_by: str | None = None
    # Set once this job has had its one chance to displace an active job
    preemption_checked: bool = False
    usage_counters: tuple[UsageCounter, ...] = ()
    token: CancellationToken = field(default_factory=CancellationToken)
    run_epoch: int = 0
    history: list[JobState] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.history.append(self.state)

    def transition(self, target: JobState) -> None:
        """Move to ``target``, enforcing the lifecycle graph."""
        if target not in LEGAL_TRANSITIONS[self.state]:
            raise IllegalTransitionError(self.id, self.state, target)
        self.state = target
        self.history.append(target)

    @property
    def payload_size(self) -> int:
        return len(repr(self.payload))

    def snapshot(self) -> JobSnapshot:
        return JobSnapshot(
            id=self.id,
            queue_name=self.queue_name,
            tenant_id=self.tenant_id,
            priority=self.priority,
            state=self.state,
            attempts=self.attempts,
            last_error=self.last_error,
            enqueued_at=self.enqueued_at,
            started_at=self.started_at,
            finished_at=self.finished_at,
            preempted=self.preempted,
        )
