"""Pydantic models shared across crawlgate services and routes.

Models serialize with camelCase aliases so the admin surface speaks the same
JSON shape as the dashboard that consumes it.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from crawlgate.domain.enums import (
    MemoryAction,
    PlanTier,
    PressureLevel,
    PriorityLevel,
    QueueControlAction,
    TenantStatus,
    UsageCounter,
)

UNLIMITED = -1


class CamelModel(BaseModel):
    """Base model with camelCase JSON aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================
# Tenants
# ============================================================


class PlanLimits(CamelModel):
    """Resource ceilings granted by a subscription plan. -1 means unlimited."""

    max_projects: int = 50
    max_pages_per_project: int = 500
    max_concurrent_crawls: int = 1
    max_workers: int = 1
    rate_limit_per_minute: int = 100
    storage_gb: int = 1
    monthly_crawl_limit: int = 100

    def ceiling_for(self, counter: UsageCounter) -> int:
        return int(getattr(self, counter.limit_field))


class Tenant(CamelModel):
    """Tenant record as read from the persistence collaborator."""

    id: str
    name: str = ""
    plan_tier: PlanTier = PlanTier.FREE
    status: TenantStatus = TenantStatus.ACTIVE
    limit_overrides: dict[str, int] = Field(default_factory=dict)

    @property
    def priority(self) -> PriorityLevel:
        return self.plan_tier.priority


class LimitCheck(CamelModel):
    """Result of a tenant limit check."""

    allowed: bool
    reason: str | None = None
    current_usage: int = 0
    limit: int = 0


class TenantUsageSnapshot(CamelModel):
    """Current usage counters and ceilings for one tenant."""

    tenant_id: str
    plan_tier: PlanTier
    priority: PriorityLevel
    usage: dict[str, int]
    limits: dict[str, int]


# ============================================================
# Rate limiting
# ============================================================


class RateLimitRule(CamelModel):
    """Ceiling for a route pattern. ``*`` matches one or more path segments."""

    route: str
    limit: int = Field(ge=1)
    burst_limit: int = Field(ge=1)


class RateLimitResult(CamelModel):
    """Outcome of a rate limit check."""

    key: str
    route: str
    allowed: bool
    limit: int
    remaining: int
    reset_time: datetime
    retry_after_seconds: float = 0.0
    reason: str | None = None


class RateLimiterStats(CamelModel):
    total_entries: int
    active_entries: int
    blocked_entries: int


# ============================================================
# Memory
# ============================================================


class QueueMemoryUsage(CamelModel):
    """Estimated memory attribution for one queue."""

    queue_name: str
    estimated_memory_mb: float
    worker_count: int
    queue_size: int
    active_jobs: int
    waiting_jobs: int


class MemoryStats(CamelModel):
    """Point-in-time process memory classification."""

    timestamp: datetime
    used_bytes: int
    total_bytes: int
    used_mb: float
    total_mb: float
    free_mb: float
    usage_percentage: float
    pressure: PressureLevel
    queue_memory_usage: dict[str, float] = Field(default_factory=dict)
    recommendations: list[str] = Field(default_factory=list)


class MemoryAlert(CamelModel):
    """Diagnostic signal raised by the memory monitor for the dashboard."""

    timestamp: datetime
    pressure: PressureLevel
    used_mb: float
    message: str
    throttled_queues: list[str] = Field(default_factory=list)


# ============================================================
# Audit / submission
# ============================================================


class AuditEntry(CamelModel):
    """Record of a control-plane action."""

    id: str
    action: str
    queue_name: str | None = None
    job_id: str | None = None
    actor: str = "system"
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class SubmissionReceipt(CamelModel):
    """Returned to a tenant once a job has been admitted."""

    job_id: str
    queue_name: str
    tenant_id: str
    priority: PriorityLevel
    rate_limit_remaining: int


# ============================================================
# Performance
# ============================================================


class PerformanceMetrics(CamelModel):
    total_jobs: int
    total_completed: int
    total_failed: int
    total_cancelled: int
    total_active: int
    total_waiting: int
    success_rate: float
    error_rate: float
    utilization_rate: float
    throughput_per_minute: float


class QueueCapacity(CamelModel):
    queue_name: str
    in_flight: int
    capacity: int
    utilization: float
    backlog: int
    max_queue_size: int
    backlog_utilization: float


class CapacityAnalysis(CamelModel):
    queues: list[QueueCapacity]
    overall_utilization: float
    can_accept_more_work: bool


class SystemHealth(CamelModel):
    status: str  # healthy | warning | critical
    score: int
    error_rate: float
    total_waiting: int
    total_active: int
    is_processing: bool


class OptimizationRecommendation(CamelModel):
    type: str  # scale | error | capacity | memory
    priority: str  # low | medium | high | critical
    message: str
    action: str
    queue: str | None = None


class PerformanceReport(CamelModel):
    timestamp: datetime
    performance_metrics: PerformanceMetrics
    system_health: SystemHealth
    capacity_analysis: CapacityAnalysis
    optimization_recommendations: list[OptimizationRecommendation]


# ============================================================
# Admin / submission requests
# ============================================================


class QueueControlRequest(CamelModel):
    """Body of ``POST /admin/queues/control``."""

    action: QueueControlAction
    queue_name: str | None = None
    job_id: str | None = None


class MemoryActionRequest(CamelModel):
    """Body of ``POST /admin/memory``."""

    action: MemoryAction
    interval_ms: int = Field(default=30000, ge=100)


class JobSubmission(CamelModel):
    """Body of ``POST /jobs``."""

    queue_name: str
    payload: dict[str, Any] = Field(default_factory=dict)
    route: str | None = None
