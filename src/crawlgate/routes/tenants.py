"""Admin tenant usage routes."""

from typing import Any

from fastapi import APIRouter, Depends, Query

from crawlgate.context import SchedulerContext
from crawlgate.dependencies import get_context, require_operator
from crawlgate.domain.models import TenantUsageSnapshot

router = APIRouter(prefix="/admin/tenants", tags=["admin-tenants"])


@router.get("/{tenant_id}/usage", response_model=TenantUsageSnapshot)
async def get_tenant_usage(
    tenant_id: str,
    context: SchedulerContext = Depends(get_context),
    _actor: str = Depends(require_operator),
) -> TenantUsageSnapshot:
    """Usage counters and plan ceilings for a tenant."""
    return await context.ledger.get_usage(tenant_id)


@router.post("/usage/reset-monthly")
async def reset_monthly_usage(
    tenant_id: str | None = Query(default=None, alias="tenantId"),
    context: SchedulerContext = Depends(get_context),
    actor: str = Depends(require_operator),
) -> dict[str, Any]:
    reset = context.ledger.reset_monthly_usage(tenant_id)
    await context.audit(
        "reset_monthly_usage", actor=actor, details={"tenantId": tenant_id, "reset": reset}
    )
    return {"success": True, "data": {"reset": reset}}
