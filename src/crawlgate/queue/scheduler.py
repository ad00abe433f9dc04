"""Plan-tier priority scheduling.

The scheduler decides which waiting job gets the next free worker slot of a
queue and which active job, if any, gives up its slot to an arriving top-tier
job. It never mutates job state itself; the QueueManager applies its decisions
while holding the queue lock.

Selection order for a free slot:
1. Aging: a tier passed over ``starvation_threshold - 1`` times is served next,
   so waiting work is dispatched within ``starvation_threshold`` selections.
2. Fairness reservation: with capacity >= 2 and exactly one slot free, the
   lowest tier gets that slot if it has eligible work and nothing active.
3. Otherwise the lowest numeric priority wins, FIFO within the tier.
"""

from __future__ import annotations

import logging

from crawlgate.domain.enums import PriorityLevel
from crawlgate.queue.job_queue import JobQueue
from crawlgate.queue.models import Job

logger = logging.getLogger(__name__)

DEFAULT_STARVATION_THRESHOLD = 10


class PriorityScheduler:
    """Chooses jobs for dispatch and victims for preemption."""

    def __init__(self, *, starvation_threshold: int = DEFAULT_STARVATION_THRESHOLD) -> None:
        if starvation_threshold < 1:
            raise ValueError("starvation_threshold must be >= 1")
        self.starvation_threshold = starvation_threshold

    def select_next(self, queue: JobQueue, now: float) -> Job | None:
        """Pick the next job to dispatch and update the skip counts.

        Returns None when no waiting job is eligible at ``now``. The caller is
        responsible for removing the job from its bucket.
        """
        eligible = [tier for tier in PriorityLevel if queue.eligible_head(tier, now) is not None]
        if not eligible:
            return None

        chosen = self._choose_tier(queue, eligible)
        for tier in eligible:
            if tier == chosen:
                queue.skip_counts[tier] = 0
            elif tier > chosen:
                queue.skip_counts[tier] += 1

        return queue.eligible_head(chosen, now)

    def _choose_tier(self, queue: JobQueue, eligible: list[PriorityLevel]) -> PriorityLevel:
        limit = self.starvation_threshold - 1
        starving = [t for t in eligible if queue.skip_counts[t] >= limit]
        if starving:
            # Longest-starved first; ties go to the higher priority
            tier = max(starving, key=lambda t: (queue.skip_counts[t], -t))
            logger.debug(
                "Serving starved tier %s in queue %s after %s skips",
                tier.value,
                queue.name,
                queue.skip_counts[tier],
            )
            return tier

        lowest = PriorityLevel.DEFAULT
        if (
            queue.capacity >= 2
            and queue.free_slots == 1
            and lowest in eligible
            and not any(job.priority == lowest for job in queue.active.values())
        ):
            return lowest

        return min(eligible)

    def find_preemption_victim(self, queue: JobQueue, incoming: Job) -> Job | None:
        """Return the active job that should yield its slot to ``incoming``.

        Only a top-tier arrival preempts, only when the queue is at capacity,
        and only when no top-tier job is already active. Jobs preempted once
        are immune until they finish. Among the rest, the most recently
        started job is chosen since it has the least progress to lose.
        """
        if incoming.priority != PriorityLevel.TOP:
            return None
        if len(queue.active) < queue.capacity:
            return None
        if any(job.priority == PriorityLevel.TOP for job in queue.active.values()):
            return None

        candidates = [job for job in queue.active.values() if not job.preempted]
        if not candidates:
            return None
        return max(candidates, key=lambda job: job.start_seq)
