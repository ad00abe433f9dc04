"""Pytest configuration and fixtures for crawlgate tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Generator

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from support import ControlledUnit, FakeClock

from crawlgate.config import Settings
from crawlgate.context import SchedulerContext
from crawlgate.domain.enums import PlanTier, TenantStatus
from crawlgate.domain.models import Tenant
from crawlgate.main import create_app
from crawlgate.queue.manager import QueueManager
from crawlgate.queue.models import QueueConfig
from crawlgate.storage.db import Database, create_database

MEMORY_BUDGET = 1000


def small_queues() -> list[QueueConfig]:
    return [
        QueueConfig(queue_name="web-scraping", max_workers=1, max_queue_size=10),
        QueueConfig(queue_name="content-analysis", max_workers=2, max_queue_size=10),
    ]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def unit() -> ControlledUnit:
    return ControlledUnit()


@pytest.fixture
def memory_sample() -> list[int]:
    """Mutable memory reading; tests overwrite ``[0]``."""
    return [100]


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite:///:memory:",
        queues=small_queues(),
        dispatcher_poll_interval_seconds=0.05,
        memory_budget_bytes=MEMORY_BUDGET,
        memory_monitor_enabled=False,
        admin_token="",
    )


@pytest_asyncio.fixture
async def test_db() -> AsyncGenerator[Database]:
    """Create an in-memory database with the schema applied."""
    db = await create_database("sqlite:///:memory:")
    yield db
    await db.disconnect()


@pytest_asyncio.fixture
async def manager(clock: FakeClock, unit: ControlledUnit) -> AsyncGenerator[QueueManager]:
    """A started QueueManager over the small test queues."""
    queue_manager = QueueManager(
        small_queues(),
        default_unit=unit,
        poll_interval_seconds=0.05,
        clock=clock,
    )
    queue_manager.start()
    yield queue_manager
    await queue_manager.stop()


async def seed_tenants(context: SchedulerContext) -> None:
    for tenant in (
        Tenant(id="free-co", plan_tier=PlanTier.FREE),
        Tenant(id="pro-co", plan_tier=PlanTier.PROFESSIONAL),
        Tenant(id="big-co", plan_tier=PlanTier.ENTERPRISE),
        Tenant(id="gone-co", plan_tier=PlanTier.STARTER, status=TenantStatus.SUSPENDED),
    ):
        await context.tenant_store.upsert(tenant)


@pytest_asyncio.fixture
async def context(
    settings: Settings, clock: FakeClock, unit: ControlledUnit, memory_sample: list[int]
) -> AsyncGenerator[SchedulerContext]:
    """A started SchedulerContext with seeded tenants."""
    ctx = await SchedulerContext.create(
        settings,
        default_unit=unit,
        memory_sampler=lambda: memory_sample[0],
        clock=clock,
    )
    await seed_tenants(ctx)
    await ctx.start()
    yield ctx
    await ctx.close()


@pytest.fixture
def client(
    settings: Settings, unit: ControlledUnit, memory_sample: list[int]
) -> Generator[TestClient]:
    """TestClient over a full app; the lifespan builds the context."""

    async def factory(app_settings: Settings) -> SchedulerContext:
        ctx = await SchedulerContext.create(
            app_settings,
            default_unit=unit,
            memory_sampler=lambda: memory_sample[0],
        )
        await seed_tenants(ctx)
        return ctx

    app = create_app(settings, context_factory=factory)
    with TestClient(app) as test_client:
        yield test_client
