"""Tests for PriorityScheduler selection, aging, fairness and victim choice."""

from __future__ import annotations

from crawlgate.domain.enums import JobState, PriorityLevel
from crawlgate.queue.job_queue import JobQueue
from crawlgate.queue.models import Job, QueueConfig
from crawlgate.queue.scheduler import PriorityScheduler

NOW = 100.0


def _queue(capacity: int = 1) -> JobQueue:
    return JobQueue(QueueConfig(queue_name="web-scraping", max_workers=capacity))


def _job(priority: PriorityLevel, *, available_at: float = 0.0) -> Job:
    return Job(
        queue_name="web-scraping",
        tenant_id="t",
        priority=priority,
        available_at=available_at,
    )


def _activate(queue: JobQueue, job: Job) -> Job:
    job.transition(JobState.ACTIVE)
    queue.dispatch_seq += 1
    job.start_seq = queue.dispatch_seq
    queue.active[job.id] = job
    return job


def test_lowest_priority_value_wins_fifo_within_tier() -> None:
    queue = _queue()
    scheduler = PriorityScheduler()
    low = _job(PriorityLevel.DEFAULT)
    mid_first = _job(PriorityLevel.MID)
    mid_second = _job(PriorityLevel.MID)
    for job in (low, mid_first, mid_second):
        queue.push(job)

    assert scheduler.select_next(queue, NOW) is mid_first


def test_delayed_jobs_are_not_eligible() -> None:
    queue = _queue()
    scheduler = PriorityScheduler()
    delayed_top = _job(PriorityLevel.TOP, available_at=NOW + 5)
    ready_low = _job(PriorityLevel.DEFAULT)
    queue.push(delayed_top)
    queue.push(ready_low)

    assert scheduler.select_next(queue, NOW) is ready_low
    assert queue.next_available_in(NOW) == 5


def test_empty_queue_selects_nothing() -> None:
    assert PriorityScheduler().select_next(_queue(), NOW) is None


def test_skip_counts_only_grow_for_lower_tiers() -> None:
    queue = _queue()
    scheduler = PriorityScheduler()
    queue.push(_job(PriorityLevel.TOP))
    queue.push(_job(PriorityLevel.MID))
    queue.push(_job(PriorityLevel.DEFAULT))

    chosen = scheduler.select_next(queue, NOW)

    assert chosen is not None and chosen.priority is PriorityLevel.TOP
    assert queue.skip_counts == {
        PriorityLevel.TOP: 0,
        PriorityLevel.MID: 1,
        PriorityLevel.DEFAULT: 1,
    }


def test_lowest_tier_served_within_starvation_threshold() -> None:
    """Under continuous top-tier arrivals a waiting tier-3 job is still served."""
    threshold = 10
    queue = _queue(capacity=2)
    scheduler = PriorityScheduler(starvation_threshold=threshold)
    starving = _job(PriorityLevel.DEFAULT)
    queue.push(starving)

    served_at = None
    for cycle in range(1, threshold + 2):
        queue.push(_job(PriorityLevel.TOP))
        chosen = scheduler.select_next(queue, NOW)
        assert chosen is not None
        queue.remove_waiting(chosen)
        if chosen is starving:
            served_at = cycle
            break

    assert served_at is not None and served_at <= threshold
    assert queue.skip_counts[PriorityLevel.DEFAULT] == 0


def test_default_threshold_serves_lowest_tier_by_tenth_selection() -> None:
    queue = _queue(capacity=2)
    scheduler = PriorityScheduler()
    starving = _job(PriorityLevel.DEFAULT)
    queue.push(starving)

    picks = []
    for _ in range(10):
        queue.push(_job(PriorityLevel.TOP))
        chosen = scheduler.select_next(queue, NOW)
        assert chosen is not None
        queue.remove_waiting(chosen)
        picks.append(chosen)

    assert picks[-1] is starving
    assert all(job.priority is PriorityLevel.TOP for job in picks[:-1])


def test_longest_starved_tier_wins_ties_to_higher_priority() -> None:
    queue = _queue()
    scheduler = PriorityScheduler(starvation_threshold=3)
    mid = _job(PriorityLevel.MID)
    low = _job(PriorityLevel.DEFAULT)
    queue.push(_job(PriorityLevel.TOP))
    queue.push(mid)
    queue.push(low)

    queue.skip_counts[PriorityLevel.MID] = 3
    queue.skip_counts[PriorityLevel.DEFAULT] = 3
    assert scheduler.select_next(queue, NOW) is mid

    queue.remove_waiting(mid)
    assert scheduler.select_next(queue, NOW) is low


def test_fairness_reserves_last_slot_for_lowest_tier() -> None:
    queue = _queue(capacity=2)
    scheduler = PriorityScheduler()
    _activate(queue, _job(PriorityLevel.TOP))
    queue.push(_job(PriorityLevel.TOP))
    low = _job(PriorityLevel.DEFAULT)
    queue.push(low)

    assert scheduler.select_next(queue, NOW) is low


def test_no_fairness_reservation_when_lowest_tier_already_running() -> None:
    queue = _queue(capacity=2)
    scheduler = PriorityScheduler()
    _activate(queue, _job(PriorityLevel.DEFAULT))
    top = _job(PriorityLevel.TOP)
    queue.push(top)
    queue.push(_job(PriorityLevel.DEFAULT))

    assert scheduler.select_next(queue, NOW) is top


def test_no_fairness_reservation_for_single_slot_queue() -> None:
    queue = _queue(capacity=1)
    scheduler = PriorityScheduler()
    top = _job(PriorityLevel.TOP)
    queue.push(top)
    queue.push(_job(PriorityLevel.DEFAULT))

    assert scheduler.select_next(queue, NOW) is top


def test_victim_is_most_recently_started_non_preempted_job() -> None:
    queue = _queue(capacity=3)
    scheduler = PriorityScheduler()
    _activate(queue, _job(PriorityLevel.DEFAULT))
    second = _activate(queue, _job(PriorityLevel.MID))
    newest = _activate(queue, _job(PriorityLevel.DEFAULT))
    newest.preempted = True

    incoming = _job(PriorityLevel.TOP)
    assert scheduler.find_preemption_victim(queue, incoming) is second


def test_no_victim_below_capacity_or_for_lower_tiers() -> None:
    queue = _queue(capacity=2)
    scheduler = PriorityScheduler()
    _activate(queue, _job(PriorityLevel.DEFAULT))

    assert scheduler.find_preemption_victim(queue, _job(PriorityLevel.TOP)) is None

    _activate(queue, _job(PriorityLevel.DEFAULT))
    assert scheduler.find_preemption_victim(queue, _job(PriorityLevel.MID)) is None


def test_no_victim_while_top_tier_job_is_active() -> None:
    queue = _queue(capacity=2)
    scheduler = PriorityScheduler()
    _activate(queue, _job(PriorityLevel.TOP))
    _activate(queue, _job(PriorityLevel.DEFAULT))

    assert scheduler.find_preemption_victim(queue, _job(PriorityLevel.TOP)) is None
