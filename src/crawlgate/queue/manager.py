"""In-process queue manager.

This module owns every named queue and the jobs inside it. Each queue gets a
dispatcher task that claims eligible jobs while worker slots are free and
spawns one execution task per claimed job.

Design goals:
- Queue state is only mutated from synchronous code on the event loop, so each
  mutation is atomic; dispatch decisions additionally hold the queue lock
- Cooperative cancellation via CancellationToken (no task killing except at
  shutdown)
- Results of stale runs (cancelled or preempted meanwhile) are discarded
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from crawlgate.domain.enums import (
    AdmissionDeniedReason,
    JobState,
    PriorityLevel,
    UsageCounter,
    WorkOutcome,
)
from crawlgate.errors import (
    AdmissionDeniedError,
    TerminalWorkFailure,
    UnknownQueueError,
    ValidationError,
)
from crawlgate.observability.metrics import (
    ADMISSION_DENIED,
    JOB_DURATION,
    JOB_RETRIES,
    JOB_TOTAL,
    PREEMPTIONS,
    QUEUE_LATENCY,
    QUEUE_SIZE,
)
from crawlgate.queue.cancellation import CancellationToken, CancelReason, WorkCancelledError
from crawlgate.queue.job_queue import JobQueue
from crawlgate.queue.models import Job, QueueConfig, QueueConfigUpdate, QueueStats, utcnow
from crawlgate.queue.protocol import UnitOfWork
from crawlgate.queue.scheduler import PriorityScheduler

logger = logging.getLogger(__name__)

TerminalListener = Callable[[Job], None]


class QueueManager:
    """Owns named queues, dispatches their jobs and runs them on worker slots."""

    def __init__(
        self,
        configs: Iterable[QueueConfig],
        *,
        units: Mapping[str, UnitOfWork] | None = None,
        default_unit: UnitOfWork | None = None,
        scheduler: PriorityScheduler | None = None,
        poll_interval_seconds: float = 1.0,
        job_retention_seconds: float = 3600.0,
        history_limit: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._queues: dict[str, JobQueue] = {}
        for config in configs:
            self._queues[config.queue_name] = JobQueue(
                config.model_copy(), history_limit=history_limit
            )
        self._units = dict(units or {})
        self._default_unit = default_unit
        self._scheduler = scheduler or PriorityScheduler()
        self._poll_interval_seconds = poll_interval_seconds
        self._job_retention_seconds = job_retention_seconds
        self._clock = clock

        self._stop_event = asyncio.Event()
        # Queue name -> dispatcher task
        self._dispatchers: dict[str, asyncio.Task[None]] = {}
        # Execution tasks, including detached runs of cancelled/preempted jobs
        self._running: set[asyncio.Task[None]] = set()
        self._listeners: list[TerminalListener] = []

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def queue_names(self) -> list[str]:
        return list(self._queues)

    @property
    def scheduler(self) -> PriorityScheduler:
        return self._scheduler

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._dispatchers.values())

    def now(self) -> float:
        return self._clock()

    def get_queue(self, queue_name: str) -> JobQueue:
        queue = self._queues.get(queue_name)
        if queue is None:
            raise UnknownQueueError(queue_name)
        return queue

    def add_terminal_listener(self, listener: TerminalListener) -> None:
        """Call ``listener(job)`` whenever a job reaches a terminal state."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start one dispatcher loop per queue."""
        if self.is_running:
            return
        self._stop_event.clear()
        for name, queue in self._queues.items():
            self._dispatchers[name] = asyncio.create_task(
                self._dispatch_loop(queue), name=f"dispatcher:{name}"
            )
        logger.info("QueueManager started (%s queues)", len(self._queues))

    async def stop(self) -> None:
        """Stop dispatching and cancel running work."""
        self._stop_event.set()
        for queue in self._queues.values():
            queue.wakeup.set()

        for task in self._dispatchers.values():
            if not task.done():
                task.cancel()
        if self._dispatchers:
            await asyncio.gather(*self._dispatchers.values(), return_exceptions=True)
        self._dispatchers.clear()

        for queue in self._queues.values():
            for job in queue.active.values():
                job.token.cancel(CancelReason.SHUTDOWN)

        # Shutdown is the one place work is killed rather than asked to stop
        for task in list(self._running):
            if not task.done():
                task.cancel()
        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)
        self._running.clear()
        logger.info("QueueManager stopped")

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        queue_name: str,
        tenant_id: str,
        payload: dict[str, Any],
        priority: PriorityLevel = PriorityLevel.DEFAULT,
        *,
        usage_counters: Iterable[UsageCounter] = (),
    ) -> str:
        """Admit a job into a queue and return its ID.

        Raises:
            UnknownQueueError: The queue is not configured.
            AdmissionDeniedError: The queue is inactive, throttled or full.
        """
        queue = self.get_queue(queue_name)
        async with queue.lock:
            self._check_admission(queue)
            job = Job(
                queue_name=queue_name,
                tenant_id=tenant_id,
                priority=PriorityLevel(priority),
                payload=dict(payload),
                available_at=self._clock() + queue.config.delay_between_jobs / 1000,
                usage_counters=tuple(usage_counters),
            )
            queue.push(job)

        logger.debug(
            "Enqueued %s into %s (tenant=%s, priority=%s)",
            job.id,
            queue_name,
            tenant_id,
            job.priority.value,
        )
        queue.wakeup.set()
        return job.id

    def _check_admission(self, queue: JobQueue) -> None:
        reason: AdmissionDeniedReason | None = None
        message = ""
        if not queue.is_active:
            reason = AdmissionDeniedReason.QUEUE_INACTIVE
            message = f"Queue '{queue.name}' is paused"
        elif queue.admission_paused:
            reason = AdmissionDeniedReason.QUEUE_INACTIVE
            message = f"Queue '{queue.name}' is not accepting work while memory is under pressure"
        elif queue.backlog_size() >= queue.config.max_queue_size:
            reason = AdmissionDeniedReason.QUEUE_FULL
            message = (
                f"Queue '{queue.name}' is full "
                f"({queue.backlog_size()}/{queue.config.max_queue_size})"
            )
        if reason is None:
            return
        ADMISSION_DENIED.labels(queue=queue.name, reason=reason.value).inc()
        raise AdmissionDeniedError(reason, message, details={"queue_name": queue.name})

    # ------------------------------------------------------------------
    # Operator controls
    # ------------------------------------------------------------------

    def pause_queue(self, queue_name: str) -> None:
        """Stop admitting and dispatching. Active jobs keep running."""
        queue = self.get_queue(queue_name)
        queue.config.is_active = False
        logger.info("Queue %s paused", queue_name)

    def resume_queue(self, queue_name: str) -> None:
        queue = self.get_queue(queue_name)
        queue.config.is_active = True
        queue.wakeup.set()
        logger.info("Queue %s resumed", queue_name)

    def clear_queue(self, queue_name: str) -> int:
        """Cancel every waiting and paused job. Returns the number cancelled."""
        queue = self.get_queue(queue_name)
        pending = list(queue.waiting_jobs()) + list(queue.paused.values())
        for job in pending:
            self._finish(queue, job, JobState.CANCELLED)
        logger.info("Queue %s cleared (%s jobs cancelled)", queue_name, len(pending))
        return len(pending)

    def cancel_job(self, queue_name: str, job_id: str) -> bool:
        """Cancel a waiting, paused or active job.

        Active jobs have their token signalled; the unit of work is expected to
        notice and return. Returns False for unknown or already terminal jobs.
        """
        queue = self.get_queue(queue_name)
        job = queue.jobs.get(job_id)
        if job is None or job.state.is_terminal:
            return False
        if job.state is JobState.ACTIVE:
            job.token.cancel(CancelReason.CANCELLED)
        self._finish(queue, job, JobState.CANCELLED)
        logger.info("Job %s in %s cancelled", job_id, queue_name)
        return True

    def throttle_admissions(self, queue_name: str) -> bool:
        """Refuse new admissions without touching is_active. Returns True if changed."""
        queue = self.get_queue(queue_name)
        if queue.admission_paused:
            return False
        queue.admission_paused = True
        logger.warning("Admissions throttled on queue %s", queue_name)
        return True

    def release_admissions(self, queue_name: str) -> bool:
        queue = self.get_queue(queue_name)
        if not queue.admission_paused:
            return False
        queue.admission_paused = False
        logger.info("Admissions released on queue %s", queue_name)
        return True

    def get_queue_config(self, queue_name: str) -> QueueConfig:
        return self.get_queue(queue_name).config.model_copy()

    def get_all_queue_configs(self) -> list[QueueConfig]:
        return [queue.config.model_copy() for queue in self._queues.values()]

    def update_queue_config(self, queue_name: str, update: QueueConfigUpdate) -> QueueConfig:
        """Apply a partial config update. Takes effect on the next dispatch cycle.

        Lowering capacity below the active count sheds nothing: in-flight jobs
        run to the end and no job is dispatched until active drops below the
        new capacity.
        """
        queue = self.get_queue(queue_name)
        changes = update.model_dump(exclude_unset=True, exclude_none=True)
        if not changes:
            raise ValidationError("No configuration fields to update")
        queue.config = queue.config.model_copy(update=changes)
        queue.wakeup.set()
        logger.info("Queue %s config updated: %s", queue_name, changes)
        return queue.config.model_copy()

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    def get_job(self, queue_name: str, job_id: str) -> Job | None:
        return self.get_queue(queue_name).jobs.get(job_id)

    def get_queue_stats(self, queue_name: str) -> QueueStats:
        return self.get_queue(queue_name).stats(self._clock())

    def get_all_queue_stats(self) -> list[QueueStats]:
        now = self._clock()
        return [queue.stats(now) for queue in self._queues.values()]

    def count_completed_since(self, queue_name: str, window_seconds: float) -> int:
        return self.get_queue(queue_name).count_completed_since(self._clock() - window_seconds)

    def cleanup_finished(self) -> int:
        """Evict archived terminal jobs older than the retention window."""
        cutoff = self._clock() - self._job_retention_seconds
        removed = sum(queue.evict_finished(cutoff) for queue in self._queues.values())
        if removed:
            logger.debug("Evicted %s finished job(s)", removed)
        return removed

    def refresh_metrics(self) -> None:
        """Update queue size gauges."""
        for stats in self.get_all_queue_stats():
            for state in ("waiting", "delayed", "active", "paused"):
                QUEUE_SIZE.labels(queue=stats.queue_name, state=state).set(getattr(stats, state))

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _dispatch_loop(self, queue: JobQueue) -> None:
        """Claim jobs whenever slots are free; sleep until woken or a delay elapses."""
        while not self._stop_event.is_set():
            queue.wakeup.clear()
            try:
                async with queue.lock:
                    self._dispatch_cycle(queue)
                queue.evict_finished(self._clock() - self._job_retention_seconds)
            except Exception:
                logger.exception("Dispatch cycle failed for queue %s", queue.name)

            timeout = self._poll_interval_seconds
            next_due = queue.next_available_in(self._clock())
            if next_due is not None:
                timeout = min(timeout, max(next_due, 0.0))
            try:
                await asyncio.wait_for(queue.wakeup.wait(), timeout=timeout)
            except TimeoutError:
                pass

    def _dispatch_cycle(self, queue: JobQueue) -> None:
        if not queue.is_active:
            return
        now = self._clock()
        self._maybe_preempt(queue, now)
        if queue.paused and queue.free_slots > 0:
            # A slot freed while the displacing job is still running
            self._requeue_displaced(queue, list(queue.paused.values()))
        while len(queue.active) < queue.capacity:
            job = self._scheduler.select_next(queue, now)
            if job is None:
                break
            queue.remove_waiting(job)
            self._start_job(queue, job)

    def _maybe_preempt(self, queue: JobQueue, now: float) -> None:
        if queue.free_slots > 0:
            return
        incoming = queue.eligible_head(PriorityLevel.TOP, now)
        if incoming is None or incoming.preemption_checked:
            return
        incoming.preemption_checked = True

        victim = self._scheduler.find_preemption_victim(queue, incoming)
        if victim is None:
            return
        if not victim.token.request_preemption():
            queue.preemption_conflicts += 1
            PREEMPTIONS.labels(queue=queue.name, result="conflict").inc()
            logger.warning(
                "Preemption conflict in %s: %s is non-interruptible; %s waits for a free slot",
                queue.name,
                victim.id,
                incoming.id,
            )
            return

        del queue.active[victim.id]
        victim.transition(JobState.PAUSED)
        victim.preempted = True
        victim.preempted_by = incoming.id
        queue.paused[victim.id] = victim
        queue.preemptions += 1
        PREEMPTIONS.labels(queue=queue.name, result="preempted").inc()
        logger.info("Job %s preempted by %s in %s", victim.id, incoming.id, queue.name)

        # The freed slot belongs to the job that caused the preemption
        queue.remove_waiting(incoming)
        self._start_job(queue, incoming)

    def _start_job(self, queue: JobQueue, job: Job) -> None:
        job.transition(JobState.ACTIVE)
        queue.dispatch_seq += 1
        job.start_seq = queue.dispatch_seq
        job.run_epoch += 1
        if job.started_at is None:
            job.started_at = utcnow()
            QUEUE_LATENCY.labels(queue=queue.name).observe(
                (job.started_at - job.enqueued_at).total_seconds()
            )
        queue.active[job.id] = job

        task = asyncio.create_task(self._execute_job(queue, job, job.run_epoch, job.token))
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _execute_job(
        self, queue: JobQueue, job: Job, epoch: int, token: CancellationToken
    ) -> None:
        """Run one job on a worker slot, applying the queue's retry policy."""
        unit = self._units.get(queue.name, self._default_unit)
        if unit is None:
            self._settle(
                queue,
                job,
                epoch,
                JobState.FAILED,
                error=f"No unit of work registered for queue: {queue.name}",
            )
            return

        max_attempts = queue.config.retry_attempts + 1
        retry_delay = queue.config.retry_delay / 1000
        attempt = 0
        while True:
            attempt += 1
            job.attempts += 1
            try:
                outcome = await unit(job.payload, token)
            except WorkCancelledError:
                outcome = WorkOutcome.CANCELLED
            except TerminalWorkFailure as e:
                logger.warning("Job %s failed terminally: %s", job.id, e)
                self._settle(queue, job, epoch, JobState.FAILED, error=str(e))
                return
            except Exception as e:
                if self._is_stale(job, epoch):
                    return
                if attempt >= max_attempts:
                    logger.exception("Job %s failed after %s attempt(s): %s", job.id, attempt, e)
                    self._settle(queue, job, epoch, JobState.FAILED, error=str(e))
                    return
                job.last_error = str(e)
                backoff = retry_delay * 2 ** (attempt - 1)
                JOB_RETRIES.labels(queue=queue.name).inc()
                logger.info(
                    "Job %s attempt %s failed (%s); retrying in %.1fs", job.id, attempt, e, backoff
                )
                if await token.wait(timeout=backoff):
                    if not self._is_stale(job, epoch):
                        self._settle(queue, job, epoch, JobState.CANCELLED)
                    return
                continue

            if outcome is WorkOutcome.CANCELLED:
                if not self._is_stale(job, epoch):
                    self._settle(queue, job, epoch, JobState.CANCELLED)
                return
            self._settle(queue, job, epoch, JobState.COMPLETED)
            return

    @staticmethod
    def _is_stale(job: Job, epoch: int) -> bool:
        return job.run_epoch != epoch or job.state is not JobState.ACTIVE

    def _settle(
        self,
        queue: JobQueue,
        job: Job,
        epoch: int,
        state: JobState,
        *,
        error: str | None = None,
    ) -> None:
        """Record the result of a run unless the run has gone stale."""
        if self._is_stale(job, epoch):
            logger.debug("Discarding %s result of stale run of %s", state.value, job.id)
            return
        self._finish(queue, job, state, error=error)

    def _finish(
        self,
        queue: JobQueue,
        job: Job,
        state: JobState,
        *,
        error: str | None = None,
    ) -> None:
        previous = job.state
        job.transition(state)
        if previous is JobState.WAITING:
            queue.remove_waiting(job)
        elif previous is JobState.PAUSED:
            queue.paused.pop(job.id, None)
        elif previous is JobState.ACTIVE:
            queue.active.pop(job.id, None)

        job.finished_at = utcnow()
        job.finished_clock = self._clock()
        if error is not None:
            job.last_error = error
        queue.count_terminal(state)
        if state is JobState.COMPLETED:
            queue.recent_completions.append(job.finished_clock)
        queue.archive(job)

        JOB_TOTAL.labels(queue=queue.name, status=state.value).inc()
        if job.started_at is not None:
            JOB_DURATION.labels(queue=queue.name, status=state.value).observe(
                (job.finished_at - job.started_at).total_seconds()
            )

        self._release_preempted(queue, job)
        for listener in self._listeners:
            try:
                listener(job)
            except Exception:
                logger.exception("Terminal listener failed for job %s", job.id)
        queue.wakeup.set()

    def _release_preempted(self, queue: JobQueue, finished: Job) -> None:
        """Return jobs displaced by ``finished`` to the front of their tier."""
        displaced = [job for job in queue.paused.values() if job.preempted_by == finished.id]
        if displaced:
            self._requeue_displaced(queue, displaced)
            logger.info("Displaced jobs resume after %s finished", finished.id)

    def _requeue_displaced(self, queue: JobQueue, displaced: list[Job]) -> None:
        # Reverse start order so the earliest-started ends up first in its bucket
        for job in sorted(displaced, key=lambda j: j.start_seq, reverse=True):
            del queue.paused[job.id]
            job.transition(JobState.WAITING)
            job.token = CancellationToken()
            job.available_at = self._clock()
            queue.push_front(job)
            logger.info("Job %s returned to the front of tier %s", job.id, job.priority.value)
