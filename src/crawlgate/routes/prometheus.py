"""Prometheus metrics endpoint for infrastructure monitoring.

Queue size gauges are refreshed on scrape so they reflect the live backlog.
"""

from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from crawlgate.dependencies import get_queue_manager
from crawlgate.queue.manager import QueueManager

router = APIRouter(tags=["prometheus"])


@router.get("/metrics")
async def prometheus_metrics(
    queue_manager: QueueManager = Depends(get_queue_manager),
) -> Response:
    """Expose Prometheus metrics for scraping.

    Returns:
        Prometheus text format metrics.
    """
    queue_manager.refresh_metrics()
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
