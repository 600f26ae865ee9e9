"""Generation job API: submit a job, poll its status."""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException

from app.auth.supabase_auth import verify_jwt
from app.errors import NotFoundError, ServiceUnavailableError
from app.jobs.models import JobRecord, JobRequest, JobStatus, JobType

logger = logging.getLogger(__name__)

router = APIRouter()

# Set by main.py during lifespan
_services = None


def set_services(services):
    global _services
    _services = services


def _require_services():
    if _services is None:
        raise HTTPException(status_code=503, detail="Job dispatcher not initialized")
    return _services


@router.post("/dtp/process")
async def submit_job(
    body: Dict[str, Any] = Body(default=None),
    user_id: str = Depends(verify_jwt),
):
    """Queue a BASE_AVATAR or GARMENT_OVERLAY job and return immediately.

    Base avatar submissions are throttled per user; overlay submissions
    are exempt.
    """
    services = _require_services()
    request = JobRequest.from_submission(body)

    if request.job_type == JobType.BASE_AVATAR:
        services.rate_limiter.check(user_id)

    job = JobRecord(owner_id=user_id, request_payload=request)
    logger.info(
        "Received %s job %s from user %s", request.job_type.value, job.id, user_id
    )
    await services.store.create(job)
    try:
        services.dispatcher.submit(job.id)
    except RuntimeError as exc:
        logger.error("Could not dispatch job %s: %s", job.id, exc)
        await _fail_undispatched(services, job)
        raise ServiceUnavailableError("Job processing is unavailable, try again later.") from exc
    logger.info("Job %s queued for processing", job.id)

    return {
        "jobId": job.id,
        "status": job.status.value,
        "createdAt": job.created_at.isoformat(),
    }


async def _fail_undispatched(services, job: JobRecord) -> None:
    try:
        await services.store.update_status(job.id, JobStatus.FAILED, None)
    except Exception as exc:
        logger.error("Failed to mark undispatched job %s as FAILED: %s", job.id, exc)


@router.get("/dtp/status/{job_id}")
async def get_job_status(job_id: str, user_id: str = Depends(verify_jwt)):
    """Current status, result URL and keypoints of one of the caller's jobs."""
    services = _require_services()
    if not job_id or not job_id.strip():
        raise HTTPException(status_code=400, detail="jobId is required.")

    try:
        job = await services.store.get_for_owner(job_id, user_id)
    except NotFoundError:
        logger.info("Status miss for job %s (user %s)", job_id, user_id)
        raise
    return job.to_status_response()
