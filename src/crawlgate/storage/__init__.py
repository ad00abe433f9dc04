"""Storage layer for crawlgate."""

from crawlgate.storage.dao import AuditLog, QueueConfigStore, TenantStore
from crawlgate.storage.db import Database, create_database

__all__ = [
    "AuditLog",
    "Database",
    "QueueConfigStore",
    "TenantStore",
    "create_database",
]
