"""Tests for tenant limit checks and usage accounting."""

from __future__ import annotations

import asyncio

import pytest

from crawlgate.config import default_plan_limits
from crawlgate.domain.enums import (
    AdmissionDeniedReason,
    JobState,
    PlanTier,
    PriorityLevel,
    TenantStatus,
    UsageCounter,
)
from crawlgate.domain.models import UNLIMITED, Tenant
from crawlgate.errors import AdmissionDeniedError, NotFoundError
from crawlgate.queue.models import Job
from crawlgate.services.tenant_ledger import TenantLedger
from crawlgate.storage.dao import TenantStore
from crawlgate.storage.db import Database

CRAWLS = UsageCounter.CURRENT_CRAWLS


@pytest.fixture
def store(test_db: Database) -> TenantStore:
    return TenantStore(test_db)


@pytest.fixture
def ledger(store: TenantStore) -> TenantLedger:
    return TenantLedger(store, plan_limits=default_plan_limits())


@pytest.mark.asyncio
async def test_priority_follows_plan_tier(store: TenantStore, ledger: TenantLedger) -> None:
    await store.upsert(Tenant(id="ent", plan_tier=PlanTier.ENTERPRISE))
    await store.upsert(Tenant(id="pro", plan_tier=PlanTier.PROFESSIONAL))
    await store.upsert(Tenant(id="free", plan_tier=PlanTier.FREE))

    assert await ledger.get_priority("ent") is PriorityLevel.TOP
    assert await ledger.get_priority("pro") is PriorityLevel.MID
    assert await ledger.get_priority("free") is PriorityLevel.DEFAULT
    assert await ledger.get_priority("unknown") is PriorityLevel.DEFAULT


@pytest.mark.asyncio
async def test_check_then_increment(store: TenantStore, ledger: TenantLedger) -> None:
    await store.upsert(Tenant(id="free", plan_tier=PlanTier.FREE))

    check = await ledger.check_tenant_limits("free", CRAWLS)
    assert check.allowed is True
    assert check.limit == 1

    ledger.increment_usage("free", CRAWLS)
    check = await ledger.check_tenant_limits("free", CRAWLS)
    assert check.allowed is False
    assert check.current_usage == 1

    assert ledger.decrement_usage("free", CRAWLS) == 0
    assert ledger.decrement_usage("free", CRAWLS) == 0


@pytest.mark.asyncio
async def test_limit_overrides_and_unlimited(store: TenantStore, ledger: TenantLedger) -> None:
    await store.upsert(
        Tenant(id="free", plan_tier=PlanTier.FREE, limit_overrides={"max_concurrent_crawls": 3})
    )
    await store.upsert(Tenant(id="ent", plan_tier=PlanTier.ENTERPRISE))

    tenant = await ledger.get_tenant("free")
    assert tenant is not None
    assert ledger.limits_for(tenant).max_concurrent_crawls == 3

    ledger.increment_usage("ent", UsageCounter.MONTHLY_CRAWLS, 10_000)
    check = await ledger.check_tenant_limits("ent", UsageCounter.MONTHLY_CRAWLS)
    assert check.allowed is True


@pytest.mark.asyncio
async def test_unknown_and_suspended_tenants_are_denied(
    store: TenantStore, ledger: TenantLedger
) -> None:
    await store.upsert(Tenant(id="gone", status=TenantStatus.SUSPENDED))

    for tenant_id in ("gone", "nobody"):
        with pytest.raises(AdmissionDeniedError) as exc_info:
            async with ledger.admission(tenant_id, {CRAWLS: 1}):
                pass
        assert exc_info.value.reason is AdmissionDeniedReason.TENANT_LIMIT_EXCEEDED


@pytest.mark.asyncio
async def test_admission_body_failure_leaves_usage_untouched(
    store: TenantStore, ledger: TenantLedger
) -> None:
    await store.upsert(Tenant(id="pro", plan_tier=PlanTier.PROFESSIONAL))

    with pytest.raises(RuntimeError):
        async with ledger.admission("pro", {CRAWLS: 1}):
            raise RuntimeError("enqueue failed")

    usage = await ledger.get_usage("pro")
    assert usage.usage[CRAWLS.value] == 0


@pytest.mark.asyncio
async def test_concurrent_admissions_never_exceed_ceiling(
    store: TenantStore, ledger: TenantLedger
) -> None:
    await store.upsert(Tenant(id="starter", plan_tier=PlanTier.STARTER))  # 2 concurrent crawls
    admitted: list[int] = []

    async def attempt(i: int) -> None:
        try:
            async with ledger.admission("starter", {CRAWLS: 1}):
                # Yield inside the critical section to invite interleaving
                await asyncio.sleep(0)
                admitted.append(i)
        except AdmissionDeniedError:
            pass

    await asyncio.gather(*(attempt(i) for i in range(20)))

    assert len(admitted) == 2
    usage = await ledger.get_usage("starter")
    assert usage.usage[CRAWLS.value] == 2
    assert usage.limits[CRAWLS.value] == 2


@pytest.mark.asyncio
async def test_release_job_returns_counters(store: TenantStore, ledger: TenantLedger) -> None:
    await store.upsert(Tenant(id="pro", plan_tier=PlanTier.PROFESSIONAL))
    async with ledger.admission("pro", {CRAWLS: 1, UsageCounter.MONTHLY_CRAWLS: 1}):
        pass

    job = Job(
        queue_name="web-scraping",
        tenant_id="pro",
        priority=PriorityLevel.MID,
        usage_counters=(CRAWLS,),
        state=JobState.COMPLETED,
    )
    ledger.release_job(job)

    usage = await ledger.get_usage("pro")
    assert usage.usage[CRAWLS.value] == 0
    assert usage.usage[UsageCounter.MONTHLY_CRAWLS.value] == 1


@pytest.mark.asyncio
async def test_reset_monthly_usage(store: TenantStore, ledger: TenantLedger) -> None:
    await store.upsert(Tenant(id="pro", plan_tier=PlanTier.PROFESSIONAL))
    ledger.increment_usage("pro", UsageCounter.MONTHLY_CRAWLS, 7)
    ledger.increment_usage("other", UsageCounter.MONTHLY_CRAWLS, 3)

    assert ledger.reset_monthly_usage() == 2

    usage = await ledger.get_usage("pro")
    assert usage.usage[UsageCounter.MONTHLY_CRAWLS.value] == 0


@pytest.mark.asyncio
async def test_usage_of_unknown_tenant(ledger: TenantLedger) -> None:
    with pytest.raises(NotFoundError):
        await ledger.get_usage("nobody")


@pytest.mark.asyncio
async def test_unlimited_rate_limit_defers_to_route_rule(
    store: TenantStore, ledger: TenantLedger
) -> None:
    await store.upsert(
        Tenant(
            id="ent",
            plan_tier=PlanTier.ENTERPRISE,
            limit_overrides={"rate_limit_per_minute": UNLIMITED},
        )
    )
    await store.upsert(Tenant(id="pro", plan_tier=PlanTier.PROFESSIONAL))

    assert await ledger.get_rate_limit("ent") is None
    assert await ledger.get_rate_limit("pro") == 500


@pytest.mark.asyncio
async def test_invalidate_picks_up_plan_changes(store: TenantStore, ledger: TenantLedger) -> None:
    await store.upsert(Tenant(id="grower", plan_tier=PlanTier.FREE))
    assert await ledger.get_priority("grower") is PriorityLevel.DEFAULT

    await store.upsert(Tenant(id="grower", plan_tier=PlanTier.ENTERPRISE))
    # Cached until told otherwise
    assert await ledger.get_priority("grower") is PriorityLevel.DEFAULT

    ledger.invalidate("grower")
    assert await ledger.get_priority("grower") is PriorityLevel.TOP
    check = await ledger.check_tenant_limits("grower", CRAWLS)
    assert check.limit == 20
