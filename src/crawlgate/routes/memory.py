"""Admin memory monitor routes."""

import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder

from crawlgate.context import SchedulerContext
from crawlgate.dependencies import get_context, get_memory_monitor, require_operator
from crawlgate.domain.enums import MemoryAction
from crawlgate.domain.models import MemoryActionRequest
from crawlgate.services.memory_monitor import MemoryMonitor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/memory", tags=["admin-memory"])


def _monitoring_state(monitor: MemoryMonitor) -> dict[str, Any]:
    return {
        "active": monitor.is_monitoring,
        "intervalMs": monitor.interval_ms,
        "throttledQueues": monitor.throttled_queues,
    }


@router.get("")
async def get_memory(
    monitor: MemoryMonitor = Depends(get_memory_monitor),
    _actor: str = Depends(require_operator),
) -> dict[str, Any]:
    """Current memory classification, per-queue breakdown and recent alerts."""
    return {
        "success": True,
        "data": jsonable_encoder(
            {
                "memoryStats": monitor.get_memory_stats(),
                "queueMemoryBreakdown": monitor.get_queue_memory_breakdown(),
                "monitoring": _monitoring_state(monitor),
                "alerts": monitor.recent_alerts(),
                "timestamp": datetime.now(UTC),
            }
        ),
    }


@router.post("")
async def memory_action(
    data: MemoryActionRequest,
    context: SchedulerContext = Depends(get_context),
    actor: str = Depends(require_operator),
) -> dict[str, Any]:
    monitor = context.memory_monitor
    action = data.action

    if action is MemoryAction.CHECK_MEMORY:
        action_taken = monitor.check_memory_and_take_action()
        result: dict[str, Any] = {
            "actionTaken": action_taken,
            "message": "Memory action taken" if action_taken else "No action needed",
            "throttledQueues": monitor.throttled_queues,
        }
    elif action is MemoryAction.GET_BREAKDOWN:
        result = {"breakdown": monitor.get_queue_memory_breakdown()}
    elif action is MemoryAction.START_MONITORING:
        started = monitor.start_memory_monitoring(data.interval_ms)
        result = {
            "started": started,
            "message": (
                f"Memory monitoring started with {data.interval_ms}ms interval"
                if started
                else "Memory monitoring already running"
            ),
        }
    else:
        stopped = await monitor.stop_memory_monitoring()
        result = {
            "stopped": stopped,
            "message": "Memory monitoring stopped" if stopped else "Memory monitoring not running",
        }

    if action is not MemoryAction.GET_BREAKDOWN:
        await context.audit(f"memory_{action.value}", actor=actor)
    logger.info("Memory monitor action %s by %s", action.value, actor)
    return {"success": True, "data": jsonable_encoder(result)}
