"""Data Access Objects for crawlgate storage."""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from typing import Any

from crawlgate.domain.enums import PlanTier, TenantStatus
from crawlgate.domain.models import AuditEntry, Tenant
from crawlgate.queue.models import QueueConfig
from crawlgate.storage.db import Database


def generate_id() -> str:
    """Generate a unique ID."""
    return str(uuid.uuid4())


def now_iso() -> str:
    """Get current time as ISO string."""
    return datetime.now(UTC).isoformat()


class TenantStore:
    """Read side of tenant plan and limit configuration."""

    def __init__(self, db: Database):
        self.db = db

    async def get(self, tenant_id: str) -> Tenant | None:
        """Get a tenant by ID."""
        cursor = await self.db.connection.execute("SELECT * FROM tenants WHERE id = ?", (tenant_id,))
        row = await cursor.fetchone()
        if not row:
            return None
        return self._row_to_model(row)

    async def upsert(self, tenant: Tenant) -> Tenant:
        """Create or replace a tenant record."""
        now = now_iso()
        await self.db.connection.execute(
            """
            INSERT INTO tenants (id, name, plan_tier, status, limit_overrides, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                plan_tier = excluded.plan_tier,
                status = excluded.status,
                limit_overrides = excluded.limit_overrides,
                updated_at = excluded.updated_at
            """,
            (
                tenant.id,
                tenant.name,
                tenant.plan_tier.value,
                tenant.status.value,
                json.dumps(tenant.limit_overrides),
                now,
                now,
            ),
        )
        await self.db.connection.commit()
        return tenant

    def _row_to_model(self, row: Any) -> Tenant:
        return Tenant(
            id=row["id"],
            name=row["name"],
            plan_tier=PlanTier(row["plan_tier"]),
            status=TenantStatus(row["status"]),
            limit_overrides=json.loads(row["limit_overrides"] or "{}"),
        )


class AuditLog:
    """Append-only record of control-plane actions."""

    def __init__(self, db: Database):
        self.db = db

    async def record(
        self,
        action: str,
        *,
        queue_name: str | None = None,
        job_id: str | None = None,
        actor: str = "system",
        details: dict[str, Any] | None = None,
    ) -> AuditEntry:
        entry = AuditEntry(
            id=generate_id(),
            action=action,
            queue_name=queue_name,
            job_id=job_id,
            actor=actor,
            details=details or {},
            created_at=datetime.now(UTC),
        )
        await self.db.connection.execute(
            """
            INSERT INTO audit_log (id, action, queue_name, job_id, actor, details, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.id,
                entry.action,
                entry.queue_name,
                entry.job_id,
                entry.actor,
                json.dumps(entry.details, default=str),
                entry.created_at.isoformat(),
            ),
        )
        await self.db.connection.commit()
        return entry

    async def list_recent(self, *, queue_name: str | None = None, limit: int = 50) -> list[AuditEntry]:
        if queue_name is None:
            cursor = await self.db.connection.execute(
                "SELECT * FROM audit_log ORDER BY created_at DESC LIMIT ?", (limit,)
            )
        else:
            cursor = await self.db.connection.execute(
                "SELECT * FROM audit_log WHERE queue_name = ? ORDER BY created_at DESC LIMIT ?",
                (queue_name, limit),
            )
        rows = await cursor.fetchall()
        return [
            AuditEntry(
                id=row["id"],
                action=row["action"],
                queue_name=row["queue_name"],
                job_id=row["job_id"],
                actor=row["actor"],
                details=json.loads(row["details"] or "{}"),
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]


class QueueConfigStore:
    """Operator-edited queue configuration, overriding the static defaults."""

    def __init__(self, db: Database):
        self.db = db

    async def load_all(self) -> dict[str, QueueConfig]:
        cursor = await self.db.connection.execute("SELECT queue_name, config FROM queue_configs")
        rows = await cursor.fetchall()
        return {row["queue_name"]: QueueConfig.model_validate_json(row["config"]) for row in rows}

    async def save(self, config: QueueConfig) -> None:
        await self.db.connection.execute(
            """
            INSERT INTO queue_configs (queue_name, config, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(queue_name) DO UPDATE SET
                config = excluded.config,
                updated_at = excluded.updated_at
            """,
            (config.queue_name, config.model_dump_json(), now_iso()),
        )
        await self.db.connection.commit()
