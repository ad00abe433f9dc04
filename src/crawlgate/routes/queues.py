"""Admin queue routes: stats, control actions, configuration and performance."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query
from fastapi.encoders import jsonable_encoder

from crawlgate.context import SchedulerContext
from crawlgate.dependencies import (
    get_context,
    get_performance_service,
    get_queue_manager,
    require_operator,
)
from crawlgate.domain.enums import QueueControlAction
from crawlgate.domain.models import QueueControlRequest
from crawlgate.errors import ValidationError
from crawlgate.queue.manager import QueueManager
from crawlgate.queue.models import QueueConfigPatch
from crawlgate.services.performance_service import PerformanceService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/queues", tags=["admin-queues"])


def _ok(data: Any) -> dict[str, Any]:
    return {"success": True, "data": jsonable_encoder(data)}


@router.get("")
async def get_queues(
    queue_name: str | None = Query(default=None, alias="queueName"),
    queue_manager: QueueManager = Depends(get_queue_manager),
    _actor: str = Depends(require_operator),
) -> dict[str, Any]:
    """Stats for one queue, or for every configured queue."""
    if queue_name:
        return _ok(queue_manager.get_queue_stats(queue_name))
    return _ok(queue_manager.get_all_queue_stats())


@router.post("/control")
async def control_queue(
    data: QueueControlRequest,
    context: SchedulerContext = Depends(get_context),
    actor: str = Depends(require_operator),
) -> dict[str, Any]:
    """Run an operator action against a queue or a job.

    ``pause``, ``resume`` and ``clear`` need ``queueName``; ``cancel_job`` also
    needs ``jobId``. ``get_stats`` falls back to every queue when no name is given.
    """
    queue_manager = context.queue_manager
    action = data.action

    if action is QueueControlAction.GET_STATS:
        if data.queue_name:
            return _ok(queue_manager.get_queue_stats(data.queue_name))
        return _ok(queue_manager.get_all_queue_stats())

    if not data.queue_name:
        raise ValidationError(
            f"Queue name is required for {action.value} action", code="QUEUE_NAME_REQUIRED"
        )
    queue_name = data.queue_name
    details: dict[str, Any] = {}

    if action is QueueControlAction.PAUSE:
        queue_manager.pause_queue(queue_name)
        result: dict[str, Any] = {"message": f"Queue {queue_name} paused"}
    elif action is QueueControlAction.RESUME:
        queue_manager.resume_queue(queue_name)
        result = {"message": f"Queue {queue_name} resumed"}
    elif action is QueueControlAction.CLEAR:
        cleared = queue_manager.clear_queue(queue_name)
        details["cleared"] = cleared
        result = {"message": f"Queue {queue_name} cleared", "cleared": cleared}
    else:
        if not data.job_id:
            raise ValidationError(
                "Queue name and job ID are required for cancel_job action",
                code="JOB_ID_REQUIRED",
            )
        cancelled = queue_manager.cancel_job(queue_name, data.job_id)
        details["cancelled"] = cancelled
        result = {
            "message": (
                f"Job {data.job_id} cancelled"
                if cancelled
                else f"Failed to cancel job {data.job_id}"
            ),
            "cancelled": cancelled,
        }

    await context.audit(
        action.value,
        queue_name=queue_name,
        job_id=data.job_id,
        actor=actor,
        details=details,
    )
    return _ok(result)


@router.get("/config")
async def get_queue_config(
    queue_name: str | None = Query(default=None, alias="queueName"),
    queue_manager: QueueManager = Depends(get_queue_manager),
    _actor: str = Depends(require_operator),
) -> dict[str, Any]:
    if queue_name:
        return _ok(queue_manager.get_queue_config(queue_name))
    return _ok(queue_manager.get_all_queue_configs())


@router.put("/config")
async def update_queue_config(
    data: QueueConfigPatch,
    context: SchedulerContext = Depends(get_context),
    actor: str = Depends(require_operator),
) -> dict[str, Any]:
    """Apply a partial config update and persist it.

    Unknown fields in ``config`` are rejected with 422 before anything changes.
    """
    changes = data.config.model_dump(exclude_unset=True, exclude_none=True, by_alias=True)
    config = context.queue_manager.update_queue_config(data.queue_name, data.config)
    await context.queue_config_store.save(config)
    await context.audit(
        "update_config", queue_name=data.queue_name, actor=actor, details=changes
    )
    return _ok(config)


@router.get("/performance")
async def get_queue_performance(
    performance: PerformanceService = Depends(get_performance_service),
    _actor: str = Depends(require_operator),
) -> dict[str, Any]:
    """Throughput, health score, capacity and optimization recommendations."""
    return _ok(performance.build_report())


@router.get("/audit")
async def get_audit_log(
    queue_name: str | None = Query(default=None, alias="queueName"),
    limit: int = Query(default=50, ge=1, le=500),
    context: SchedulerContext = Depends(get_context),
    _actor: str = Depends(require_operator),
) -> dict[str, Any]:
    """Most recent control actions, newest first."""
    entries = await context.audit_log.list_recent(queue_name=queue_name, limit=limit)
    return _ok(entries)
