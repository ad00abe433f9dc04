"""FastAPI dependency injection."""

import hmac

from fastapi import Depends, Header, Request

from crawlgate.context import SchedulerContext
from crawlgate.errors import ForbiddenError, ValidationError
from crawlgate.queue.manager import QueueManager
from crawlgate.services.admission_service import AdmissionService
from crawlgate.services.memory_monitor import MemoryMonitor
from crawlgate.services.performance_service import PerformanceService


def get_context(request: Request) -> SchedulerContext:
    """Get the scheduler context built at startup."""
    context: SchedulerContext | None = getattr(request.app.state, "context", None)
    if context is None:
        raise RuntimeError("Scheduler context is not initialized")
    return context


def get_queue_manager(context: SchedulerContext = Depends(get_context)) -> QueueManager:
    return context.queue_manager


def get_memory_monitor(context: SchedulerContext = Depends(get_context)) -> MemoryMonitor:
    return context.memory_monitor


def get_admission_service(context: SchedulerContext = Depends(get_context)) -> AdmissionService:
    return context.admission


def get_performance_service(
    context: SchedulerContext = Depends(get_context),
) -> PerformanceService:
    return context.performance


async def require_operator(
    context: SchedulerContext = Depends(get_context),
    authorization: str | None = Header(default=None),
) -> str:
    """Stand-in for the external operator auth check.

    When an admin token is configured, requests must carry it as a bearer
    token. Returns the actor name recorded in the audit log.
    """
    expected = context.settings.admin_token
    if not expected:
        return "operator"
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(token, expected):
        raise ForbiddenError("Operator credentials required")
    return "operator"


async def require_tenant(x_tenant_id: str | None = Header(default=None)) -> str:
    """Tenant identity for submissions, as resolved by the upstream auth layer."""
    if not x_tenant_id:
        raise ValidationError("X-Tenant-ID header is required", code="TENANT_REQUIRED")
    return x_tenant_id
