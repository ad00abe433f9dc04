"""Enums for crawlgate domain models."""

from enum import Enum, IntEnum


class JobState(str, Enum):
    """Job lifecycle state.

    Legal transitions:
        waiting -> active | paused | cancelled
        active  -> completed | failed | paused | cancelled
        paused  -> waiting | cancelled
    """

    WAITING = "waiting"  # Queued, possibly delayed
    ACTIVE = "active"  # Claimed by a worker slot
    PAUSED = "paused"  # Preempted, waiting for the displacing job to finish
    COMPLETED = "completed"
    FAILED = "failed"  # Retries exhausted or terminal failure
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED)


LEGAL_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.WAITING: frozenset({JobState.ACTIVE, JobState.PAUSED, JobState.CANCELLED}),
    JobState.ACTIVE: frozenset(
        {JobState.COMPLETED, JobState.FAILED, JobState.PAUSED, JobState.CANCELLED}
    ),
    JobState.PAUSED: frozenset({JobState.WAITING, JobState.CANCELLED}),
    JobState.COMPLETED: frozenset(),
    JobState.FAILED: frozenset(),
    JobState.CANCELLED: frozenset(),
}


class PriorityLevel(IntEnum):
    """Scheduling priority. Lower value is served first."""

    TOP = 1  # Enterprise plans
    MID = 2  # Professional plans
    DEFAULT = 3  # Free / starter / unknown plans


class PlanTier(str, Enum):
    """Subscription plan tier."""

    FREE = "free"
    STARTER = "starter"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"

    @property
    def priority(self) -> PriorityLevel:
        if self is PlanTier.ENTERPRISE:
            return PriorityLevel.TOP
        if self is PlanTier.PROFESSIONAL:
            return PriorityLevel.MID
        return PriorityLevel.DEFAULT


class TenantStatus(str, Enum):
    """Tenant account status."""

    ACTIVE = "active"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


class UsageCounter(str, Enum):
    """Tenant usage counters tracked by the ledger."""

    CURRENT_PROJECTS = "currentProjects"
    CURRENT_PAGES = "currentPages"
    CURRENT_CRAWLS = "currentCrawls"
    CURRENT_WORKERS = "currentWorkers"
    CURRENT_STORAGE_GB = "currentStorageGB"
    MONTHLY_CRAWLS = "monthlyCrawls"

    @property
    def limit_field(self) -> str:
        """Name of the PlanLimits field that caps this counter."""
        return _LIMIT_FIELDS[self]


_LIMIT_FIELDS: dict[UsageCounter, str] = {
    UsageCounter.CURRENT_PROJECTS: "max_projects",
    UsageCounter.CURRENT_PAGES: "max_pages_per_project",
    UsageCounter.CURRENT_CRAWLS: "max_concurrent_crawls",
    UsageCounter.CURRENT_WORKERS: "max_workers",
    UsageCounter.CURRENT_STORAGE_GB: "storage_gb",
    UsageCounter.MONTHLY_CRAWLS: "monthly_crawl_limit",
}


class PressureLevel(str, Enum):
    """Memory pressure classification."""

    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


class AdmissionDeniedReason(str, Enum):
    """Machine-readable reasons for an admission denial."""

    QUEUE_FULL = "QueueFull"
    QUEUE_INACTIVE = "QueueInactive"
    TENANT_LIMIT_EXCEEDED = "TenantLimitExceeded"
    RATE_LIMIT_EXCEEDED = "RateLimitExceeded"


class QueueControlAction(str, Enum):
    """Actions accepted by the queue control endpoint."""

    PAUSE = "pause"
    RESUME = "resume"
    CLEAR = "clear"
    CANCEL_JOB = "cancel_job"
    GET_STATS = "get_stats"


class MemoryAction(str, Enum):
    """Actions accepted by the memory endpoint."""

    CHECK_MEMORY = "check_memory"
    GET_BREAKDOWN = "get_breakdown"
    START_MONITORING = "start_monitoring"
    STOP_MONITORING = "stop_monitoring"


class WorkOutcome(str, Enum):
    """Outcome reported by a unit of work."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"  # Observed the cancellation token and exited early
