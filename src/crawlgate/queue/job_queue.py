"""In-memory state of one named queue.

A JobQueue holds the priority buckets, the active and paused sets, the archive
of terminal jobs and the cumulative counters. It has no behaviour of its own
beyond bookkeeping; every state change goes through the QueueManager, which
holds ``lock`` while making dispatch decisions.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Iterator

from crawlgate.domain.enums import JobState, PriorityLevel
from crawlgate.queue.models import Job, QueueConfig, QueueStats


class JobQueue:
    """Priority-bucketed job storage for a single queue."""

    def __init__(self, config: QueueConfig, *, history_limit: int = 100) -> None:
        self.config = config
        self.lock = asyncio.Lock()
        self.wakeup = asyncio.Event()
        self.history_limit = history_limit

        self.buckets: dict[PriorityLevel, deque[Job]] = {p: deque() for p in PriorityLevel}
        self.active: dict[str, Job] = {}
        self.paused: dict[str, Job] = {}
        self.finished: deque[Job] = deque()
        # Job ID -> job, for every job not yet evicted from the archive
        self.jobs: dict[str, Job] = {}

        self.admission_paused = False
        self.completed_count = 0
        self.failed_count = 0
        self.cancelled_count = 0
        self.recent_completions: deque[float] = deque(maxlen=1000)

        # Scheduler bookkeeping
        self.skip_counts: dict[PriorityLevel, int] = {p: 0 for p in PriorityLevel}
        self.dispatch_seq = 0
        self.preemptions = 0
        self.preemption_conflicts = 0

    @property
    def name(self) -> str:
        return self.config.queue_name

    @property
    def capacity(self) -> int:
        return self.config.capacity

    @property
    def is_active(self) -> bool:
        return self.config.is_active

    @property
    def free_slots(self) -> int:
        return max(0, self.capacity - len(self.active))

    # ------------------------------------------------------------------
    # Waiting jobs
    # ------------------------------------------------------------------

    def push(self, job: Job) -> None:
        self.buckets[job.priority].append(job)
        self.jobs[job.id] = job

    def push_front(self, job: Job) -> None:
        self.buckets[job.priority].appendleft(job)
        self.jobs[job.id] = job

    def remove_waiting(self, job: Job) -> None:
        self.buckets[job.priority].remove(job)

    def waiting_jobs(self) -> Iterator[Job]:
        for priority in PriorityLevel:
            yield from self.buckets[priority]

    def eligible_head(self, priority: PriorityLevel, now: float) -> Job | None:
        """First job of a tier whose per-job delay has elapsed."""
        for job in self.buckets[priority]:
            if job.available_at <= now:
                return job
        return None

    def next_available_in(self, now: float) -> float | None:
        """Seconds until the next delayed job becomes eligible, if any."""
        pending = [job.available_at - now for job in self.waiting_jobs() if job.available_at > now]
        return min(pending) if pending else None

    def backlog_size(self) -> int:
        """Jobs counted against ``max_queue_size``: waiting, delayed and paused."""
        return sum(len(bucket) for bucket in self.buckets.values()) + len(self.paused)

    # ------------------------------------------------------------------
    # Terminal jobs
    # ------------------------------------------------------------------

    def archive(self, job: Job) -> None:
        self.finished.append(job)
        while len(self.finished) > self.history_limit:
            evicted = self.finished.popleft()
            self.jobs.pop(evicted.id, None)

    def evict_finished(self, cutoff: float) -> int:
        """Drop archived jobs that finished before ``cutoff``."""
        removed = 0
        while self.finished:
            job = self.finished[0]
            if job.finished_clock is None or job.finished_clock >= cutoff:
                break
            self.finished.popleft()
            self.jobs.pop(job.id, None)
            removed += 1
        return removed

    def count_completed_since(self, since: float) -> int:
        return sum(1 for ts in self.recent_completions if ts >= since)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def stats(self, now: float) -> QueueStats:
        waiting = 0
        delayed = 0
        for job in self.waiting_jobs():
            if job.available_at > now:
                delayed += 1
            else:
                waiting += 1
        return QueueStats(
            queue_name=self.name,
            waiting=waiting,
            active=len(self.active),
            completed=self.completed_count,
            failed=self.failed_count,
            delayed=delayed,
            paused=len(self.paused),
            cancelled=self.cancelled_count,
            capacity=self.capacity,
            is_active=self.is_active,
            admission_paused=self.admission_paused,
        )

    def count_terminal(self, state: JobState) -> None:
        if state is JobState.COMPLETED:
            self.completed_count += 1
        elif state is JobState.FAILED:
            self.failed_count += 1
        elif state is JobState.CANCELLED:
            self.cancelled_count += 1
