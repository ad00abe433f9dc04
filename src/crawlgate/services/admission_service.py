"""Tenant submission path.

Work submitted by a tenant passes three gates in order: the per-tenant route
rate limit, the tenant ledger (concurrent and monthly crawl ceilings) and the
queue's own admission checks. Usage is incremented only after the job has
been enqueued, and ``current_crawls`` is handed back when the job ends.
"""

from __future__ import annotations

import logging
from typing import Any

from crawlgate.domain.enums import AdmissionDeniedReason, UsageCounter
from crawlgate.domain.models import SubmissionReceipt
from crawlgate.errors import AdmissionDeniedError
from crawlgate.queue.manager import QueueManager
from crawlgate.services.rate_limiter import RateLimiter
from crawlgate.services.tenant_ledger import TenantLedger

logger = logging.getLogger(__name__)

DEFAULT_SUBMISSION_ROUTE = "/api/scrape/start"

# Counters charged per admitted job; only the concurrent one is released at the end
ADMISSION_COUNTERS = {UsageCounter.CURRENT_CRAWLS: 1, UsageCounter.MONTHLY_CRAWLS: 1}
RELEASED_COUNTERS = (UsageCounter.CURRENT_CRAWLS,)


class AdmissionService:
    """Rate limit, tenant ledger, then enqueue."""

    def __init__(
        self,
        *,
        queue_manager: QueueManager,
        rate_limiter: RateLimiter,
        ledger: TenantLedger,
    ) -> None:
        self._queue_manager = queue_manager
        self._rate_limiter = rate_limiter
        self._ledger = ledger

    async def submit(
        self,
        queue_name: str,
        tenant_id: str,
        payload: dict[str, Any],
        *,
        route: str = DEFAULT_SUBMISSION_ROUTE,
    ) -> SubmissionReceipt:
        """Admit ``payload`` for ``tenant_id`` into ``queue_name``.

        Raises:
            UnknownQueueError: The queue is not configured.
            AdmissionDeniedError: Any of the gates refused the submission.
        """
        # Fail fast on unknown queues before charging the rate limit
        self._queue_manager.get_queue(queue_name)

        plan_limit = await self._ledger.get_rate_limit(tenant_id)
        rate = self._rate_limiter.check_rate_limit(tenant_id, route, limit=plan_limit)
        if not rate.allowed:
            raise AdmissionDeniedError(
                AdmissionDeniedReason.RATE_LIMIT_EXCEEDED,
                f"Rate limit exceeded for {route}; retry after {rate.retry_after_seconds:.0f}s",
                reset_time=rate.reset_time,
                retry_after_seconds=rate.retry_after_seconds,
                details={"tenant_id": tenant_id, "route": route, "limit": rate.limit},
            )

        priority = await self._ledger.get_priority(tenant_id)
        async with self._ledger.admission(tenant_id, ADMISSION_COUNTERS):
            job_id = await self._queue_manager.enqueue(
                queue_name,
                tenant_id,
                payload,
                priority,
                usage_counters=RELEASED_COUNTERS,
            )

        logger.info(
            "Admitted %s for tenant %s into %s (priority=%s)",
            job_id,
            tenant_id,
            queue_name,
            priority.value,
        )
        return SubmissionReceipt(
            job_id=job_id,
            queue_name=queue_name,
            tenant_id=tenant_id,
            priority=priority,
            rate_limit_remaining=rate.remaining,
        )
