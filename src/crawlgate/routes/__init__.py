"""API routes for crawlgate."""

from crawlgate.routes.jobs import router as jobs_router
from crawlgate.routes.memory import router as memory_router
from crawlgate.routes.prometheus import router as prometheus_router
from crawlgate.routes.queues import router as queues_router
from crawlgate.routes.tenants import router as tenants_router

__all__ = [
    "jobs_router",
    "memory_router",
    "prometheus_router",
    "queues_router",
    "tenants_router",
]
