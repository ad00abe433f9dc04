"""Per-tenant resource ledger.

The ledger tracks usage counters per tenant and enforces the ceilings of the
tenant's plan (merged with per-tenant overrides from the tenant store).
Check-then-increment is made atomic per tenant through ``admission()``,
which holds that tenant's lock; unrelated tenants never contend.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable, Mapping
from contextlib import asynccontextmanager

from crawlgate.domain.enums import (
    AdmissionDeniedReason,
    PlanTier,
    PriorityLevel,
    TenantStatus,
    UsageCounter,
)
from crawlgate.domain.models import (
    UNLIMITED,
    LimitCheck,
    PlanLimits,
    Tenant,
    TenantUsageSnapshot,
)
from crawlgate.errors import AdmissionDeniedError, NotFoundError
from crawlgate.observability.metrics import TENANT_LIMIT_DENIED
from crawlgate.queue.models import Job
from crawlgate.storage.dao import TenantStore

logger = logging.getLogger(__name__)

CounterDeltas = Mapping[UsageCounter, int] | Iterable[UsageCounter]


def _as_deltas(counters: CounterDeltas) -> dict[UsageCounter, int]:
    if isinstance(counters, Mapping):
        return dict(counters)
    return {counter: 1 for counter in counters}


class TenantLedger:
    """Usage counters and limit checks keyed by tenant."""

    def __init__(
        self,
        store: TenantStore,
        *,
        plan_limits: Mapping[PlanTier, PlanLimits],
    ) -> None:
        self._store = store
        self._plan_limits = dict(plan_limits)
        self._tenants: dict[str, Tenant] = {}
        self._priorities: dict[str, PriorityLevel] = {}
        self._usage: dict[str, dict[UsageCounter, int]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Tenant records
    # ------------------------------------------------------------------

    async def get_tenant(self, tenant_id: str) -> Tenant | None:
        tenant = self._tenants.get(tenant_id)
        if tenant is None:
            tenant = await self._store.get(tenant_id)
            if tenant is not None:
                self._tenants[tenant_id] = tenant
        return tenant

    def invalidate(self, tenant_id: str) -> None:
        """Forget cached plan data so the next access re-reads the store."""
        self._tenants.pop(tenant_id, None)
        self._priorities.pop(tenant_id, None)

    def limits_for(self, tenant: Tenant) -> PlanLimits:
        base = self._plan_limits.get(tenant.plan_tier, PlanLimits())
        overrides = {
            name: value
            for name, value in tenant.limit_overrides.items()
            if name in PlanLimits.model_fields
        }
        return base.model_copy(update=overrides) if overrides else base

    async def get_priority(self, tenant_id: str) -> PriorityLevel:
        """Priority derived from the plan tier; cached for the tenant's lifetime."""
        priority = self._priorities.get(tenant_id)
        if priority is None:
            tenant = await self.get_tenant(tenant_id)
            priority = tenant.priority if tenant is not None else PriorityLevel.DEFAULT
            self._priorities[tenant_id] = priority
        return priority

    async def get_rate_limit(self, tenant_id: str) -> int | None:
        """Plan rate ceiling per minute, or None when the route rule applies."""
        tenant = await self.get_tenant(tenant_id)
        if tenant is None:
            return None
        limit = self.limits_for(tenant).rate_limit_per_minute
        return None if limit == UNLIMITED else limit

    # ------------------------------------------------------------------
    # Checks and counters
    # ------------------------------------------------------------------

    async def check_tenant_limits(
        self, tenant_id: str, counter: UsageCounter, delta: int = 1
    ) -> LimitCheck:
        """Would adding ``delta`` to ``counter`` stay within the tenant's ceiling?

        Advisory on its own; use ``admission()`` to check and increment
        atomically.
        """
        tenant = await self.get_tenant(tenant_id)
        return self._check(tenant_id, tenant, counter, delta)

    def _check(
        self, tenant_id: str, tenant: Tenant | None, counter: UsageCounter, delta: int
    ) -> LimitCheck:
        if tenant is None:
            return LimitCheck(allowed=False, reason="Tenant not found")
        if tenant.status is not TenantStatus.ACTIVE:
            return LimitCheck(allowed=False, reason=f"Tenant is {tenant.status.value}")

        current = self._counter(tenant_id, counter)
        limit = self.limits_for(tenant).ceiling_for(counter)
        if limit != UNLIMITED and current + delta > limit:
            return LimitCheck(
                allowed=False,
                reason=f"{counter.value} limit reached ({current}/{limit})",
                current_usage=current,
                limit=limit,
            )
        return LimitCheck(allowed=True, current_usage=current, limit=limit)

    def increment_usage(self, tenant_id: str, counter: UsageCounter, delta: int = 1) -> int:
        usage = self._usage.setdefault(tenant_id, {})
        usage[counter] = usage.get(counter, 0) + delta
        return usage[counter]

    def decrement_usage(self, tenant_id: str, counter: UsageCounter, delta: int = 1) -> int:
        usage = self._usage.setdefault(tenant_id, {})
        usage[counter] = max(0, usage.get(counter, 0) - delta)
        return usage[counter]

    def _counter(self, tenant_id: str, counter: UsageCounter) -> int:
        return self._usage.get(tenant_id, {}).get(counter, 0)

    def _lock_for(self, tenant_id: str) -> asyncio.Lock:
        lock = self._locks.get(tenant_id)
        if lock is None:
            lock = self._locks[tenant_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def admission(self, tenant_id: str, counters: CounterDeltas) -> AsyncIterator[Tenant]:
        """Hold the tenant's lock, check every counter, and increment on success.

        The body runs the caller's own admission step (e.g. enqueue). If it
        raises, nothing is incremented.

        Usage:
            ```python
            async with ledger.admission(tenant_id, [UsageCounter.CURRENT_CRAWLS]):
                job_id = await queue_manager.enqueue(...)
            ```

        Raises:
            AdmissionDeniedError: A counter would exceed its ceiling, or the
                tenant is unknown or not active.
        """
        deltas = _as_deltas(counters)
        async with self._lock_for(tenant_id):
            tenant = await self.get_tenant(tenant_id)
            if tenant is None or tenant.status is not TenantStatus.ACTIVE:
                reason = self._check(tenant_id, tenant, UsageCounter.CURRENT_CRAWLS, 0).reason
                raise AdmissionDeniedError(
                    AdmissionDeniedReason.TENANT_LIMIT_EXCEEDED,
                    reason or "Tenant is not active",
                    details={"tenant_id": tenant_id},
                )
            for counter, delta in deltas.items():
                check = self._check(tenant_id, tenant, counter, delta)
                if not check.allowed:
                    TENANT_LIMIT_DENIED.labels(counter=counter.value).inc()
                    logger.info("Tenant %s denied: %s", tenant_id, check.reason)
                    raise AdmissionDeniedError(
                        AdmissionDeniedReason.TENANT_LIMIT_EXCEEDED,
                        check.reason or "Tenant limit exceeded",
                        details={
                            "tenant_id": tenant_id,
                            "counter": counter.value,
                            "current_usage": check.current_usage,
                            "limit": check.limit,
                        },
                    )
            yield tenant
            for counter, delta in deltas.items():
                self.increment_usage(tenant_id, counter, delta)

    def release_job(self, job: Job) -> None:
        """Terminal-state hook: give back the counters a job held."""
        for counter in job.usage_counters:
            self.decrement_usage(job.tenant_id, counter)

    # ------------------------------------------------------------------
    # Reporting / maintenance
    # ------------------------------------------------------------------

    async def get_usage(self, tenant_id: str) -> TenantUsageSnapshot:
        tenant = await self.get_tenant(tenant_id)
        if tenant is None:
            raise NotFoundError(f"Tenant not found: {tenant_id}", code="TENANT_NOT_FOUND")
        limits = self.limits_for(tenant)
        return TenantUsageSnapshot(
            tenant_id=tenant_id,
            plan_tier=tenant.plan_tier,
            priority=await self.get_priority(tenant_id),
            usage={counter.value: self._counter(tenant_id, counter) for counter in UsageCounter},
            limits={counter.value: limits.ceiling_for(counter) for counter in UsageCounter},
        )

    def reset_monthly_usage(self, tenant_id: str | None = None) -> int:
        """Zero ``monthly_crawls`` for one tenant, or all. Returns tenants reset."""
        tenant_ids = [tenant_id] if tenant_id is not None else list(self._usage)
        for tid in tenant_ids:
            self._usage.setdefault(tid, {})[UsageCounter.MONTHLY_CRAWLS] = 0
        logger.info("Monthly usage reset for %s tenant(s)", len(tenant_ids))
        return len(tenant_ids)
