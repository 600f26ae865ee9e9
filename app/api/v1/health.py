"""Health check endpoint."""

import platform
import sys

from fastapi import APIRouter

from app.api.v1 import jobs as jobs_api
from app.pose.estimator import describe_mode

router = APIRouter()


@router.get("/health")
async def health_check():
    """Service health and configured backends."""
    services = jobs_api._services
    if services is None:
        return {"status": "starting"}

    s = services.settings
    return {
        "status": "healthy",
        "job_store": s.job_store_backend,
        "catalog": s.catalog_backend,
        "artifacts": s.artifact_backend,
        "pose_estimation": describe_mode(services.pose_estimator),
        "generation_model": s.gemini_model,
        "jobs_in_flight": getattr(services.dispatcher, "pending", 0),
        "python_version": sys.version,
        "platform": platform.platform(),
    }
