"""Process-wide scheduler context.

Everything the core needs is built once here from injected Settings and
passed by reference: routes reach it through ``app.state``, workers through
the QueueManager. Tests build isolated contexts with their own settings,
clock, memory sampler and units of work.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from crawlgate.config import Settings
from crawlgate.queue.manager import QueueManager
from crawlgate.queue.protocol import UnitOfWork
from crawlgate.queue.scheduler import PriorityScheduler
from crawlgate.services.admission_service import AdmissionService
from crawlgate.services.http_fetch import HttpFetchUnit
from crawlgate.services.memory_monitor import MemoryMonitor, MemorySampler, process_rss
from crawlgate.services.performance_service import PerformanceService
from crawlgate.services.rate_limiter import RateLimiter
from crawlgate.services.tenant_ledger import TenantLedger
from crawlgate.storage.dao import AuditLog, QueueConfigStore, TenantStore
from crawlgate.storage.db import Database, create_database

logger = logging.getLogger(__name__)


@dataclass
class SchedulerContext:
    settings: Settings
    db: Database
    tenant_store: TenantStore
    audit_log: AuditLog
    queue_config_store: QueueConfigStore
    queue_manager: QueueManager
    rate_limiter: RateLimiter
    memory_monitor: MemoryMonitor
    ledger: TenantLedger
    admission: AdmissionService
    performance: PerformanceService

    @classmethod
    async def create(
        cls,
        settings: Settings,
        *,
        units: Mapping[str, UnitOfWork] | None = None,
        default_unit: UnitOfWork | None = None,
        memory_sampler: MemorySampler = process_rss,
        clock: Callable[[], float] = time.monotonic,
    ) -> SchedulerContext:
        """Connect storage and wire every component together."""
        if settings.database_url is None:
            raise ValueError("database_url is not configured")
        db = await create_database(settings.database_url)
        tenant_store = TenantStore(db)
        audit_log = AuditLog(db)
        queue_config_store = QueueConfigStore(db)

        # Operator edits persisted earlier win over the static defaults
        persisted = await queue_config_store.load_all()
        configs = [persisted.get(config.queue_name, config) for config in settings.queues]

        if default_unit is None:
            default_unit = HttpFetchUnit(
                timeout_seconds=settings.fetch_timeout_seconds,
                user_agent=settings.fetch_user_agent,
            )

        queue_manager = QueueManager(
            configs,
            units=units,
            default_unit=default_unit,
            scheduler=PriorityScheduler(starvation_threshold=settings.starvation_threshold),
            poll_interval_seconds=settings.dispatcher_poll_interval_seconds,
            job_retention_seconds=settings.job_retention_seconds,
            history_limit=settings.job_history_limit,
            clock=clock,
        )
        rate_limiter = RateLimiter(
            rules=settings.rate_limit_rules,
            default_limit=settings.rate_limit_default,
            default_burst_limit=settings.rate_limit_default_burst,
            window_seconds=settings.rate_limit_window_seconds,
            burst_window_seconds=settings.rate_limit_burst_window_seconds,
            clock=clock,
        )
        memory_monitor = MemoryMonitor(
            queue_manager,
            total_bytes=settings.memory_budget_bytes,
            warning_ratio=settings.memory_warning_ratio,
            critical_ratio=settings.memory_critical_ratio,
            sampler=memory_sampler,
        )
        ledger = TenantLedger(tenant_store, plan_limits=settings.plan_limits)
        queue_manager.add_terminal_listener(ledger.release_job)

        return cls(
            settings=settings,
            db=db,
            tenant_store=tenant_store,
            audit_log=audit_log,
            queue_config_store=queue_config_store,
            queue_manager=queue_manager,
            rate_limiter=rate_limiter,
            memory_monitor=memory_monitor,
            ledger=ledger,
            admission=AdmissionService(
                queue_manager=queue_manager, rate_limiter=rate_limiter, ledger=ledger
            ),
            performance=PerformanceService(queue_manager, memory_monitor),
        )

    async def start(self) -> None:
        """Start dispatchers and background loops."""
        self.queue_manager.start()
        self.rate_limiter.start_sweeper(self.settings.rate_limit_sweep_interval_seconds)
        if self.settings.memory_monitor_enabled:
            self.memory_monitor.start_memory_monitoring(self.settings.memory_monitor_interval_ms)

    async def close(self) -> None:
        await self.memory_monitor.stop_memory_monitoring()
        await self.rate_limiter.stop_sweeper()
        await self.queue_manager.stop()
        await self.db.disconnect()

    async def audit(
        self,
        action: str,
        *,
        queue_name: str | None = None,
        job_id: str | None = None,
        actor: str = "operator",
        details: dict[str, Any] | None = None,
    ) -> None:
        """Record a control action. A failed write is logged, never raised."""
        try:
            await self.audit_log.record(
                action, queue_name=queue_name, job_id=job_id, actor=actor, details=details
            )
        except Exception:
            logger.exception("Failed to write audit entry for %s", action)
