"""Domain models for crawlgate."""

from crawlgate.domain.enums import (
    AdmissionDeniedReason,
    JobState,
    PlanTier,
    PressureLevel,
    PriorityLevel,
    TenantStatus,
    UsageCounter,
    WorkOutcome,
)
from crawlgate.domain.models import (
    LimitCheck,
    MemoryStats,
    PlanLimits,
    QueueMemoryUsage,
    RateLimitResult,
    Tenant,
)

__all__ = [
    "AdmissionDeniedReason",
    "JobState",
    "PlanTier",
    "PressureLevel",
    "PriorityLevel",
    "TenantStatus",
    "UsageCounter",
    "WorkOutcome",
    "LimitCheck",
    "MemoryStats",
    "PlanLimits",
    "QueueMemoryUsage",
    "RateLimitResult",
    "Tenant",
]
