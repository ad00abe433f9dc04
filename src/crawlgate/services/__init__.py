"""Services for crawlgate."""

from crawlgate.services.admission_service import AdmissionService
from crawlgate.services.http_fetch import HttpFetchUnit
from crawlgate.services.memory_monitor import MemoryMonitor
from crawlgate.services.performance_service import PerformanceService
from crawlgate.services.rate_limiter import RateLimiter
from crawlgate.services.tenant_ledger import TenantLedger

__all__ = [
    "AdmissionService",
    "HttpFetchUnit",
    "MemoryMonitor",
    "PerformanceService",
    "RateLimiter",
    "TenantLedger",
]
