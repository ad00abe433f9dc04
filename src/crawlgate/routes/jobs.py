"""Tenant job submission routes."""

import logging

from fastapi import APIRouter, Depends

from crawlgate.dependencies import get_admission_service, get_queue_manager, require_tenant
from crawlgate.domain.models import JobSubmission, SubmissionReceipt
from crawlgate.errors import NotFoundError
from crawlgate.queue.manager import QueueManager
from crawlgate.queue.models import JobSnapshot
from crawlgate.services.admission_service import DEFAULT_SUBMISSION_ROUTE, AdmissionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("", response_model=SubmissionReceipt, status_code=201)
async def submit_job(
    data: JobSubmission,
    tenant_id: str = Depends(require_tenant),
    admission: AdmissionService = Depends(get_admission_service),
) -> SubmissionReceipt:
    """Submit work for the calling tenant.

    Rate limit, tenant limits and queue admission are checked in that order;
    a refusal comes back as 429 or 503 with a machine-readable reason.
    """
    return await admission.submit(
        data.queue_name,
        tenant_id,
        data.payload,
        route=data.route or DEFAULT_SUBMISSION_ROUTE,
    )


@router.get("/{queue_name}/{job_id}", response_model=JobSnapshot)
async def get_job(
    queue_name: str,
    job_id: str,
    tenant_id: str = Depends(require_tenant),
    queue_manager: QueueManager = Depends(get_queue_manager),
) -> JobSnapshot:
    """Get a job owned by the calling tenant."""
    job = queue_manager.get_job(queue_name, job_id)
    # Other tenants' jobs are reported as missing
    if job is None or job.tenant_id != tenant_id:
        raise NotFoundError(f"Job not found: {job_id}", code="JOB_NOT_FOUND")
    return job.snapshot()
