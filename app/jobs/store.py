"""Job store interface and in-process implementation."""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from app.errors import ConflictError, InvalidTransitionError, NotFoundError
from app.jobs.models import (
    JobRecord,
    JobStatus,
    JobType,
    KeypointData,
    can_transition,
    utcnow,
)


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


# Passed (or defaulted) as keypoint_data to leave the stored value alone.
UNSET: Any = _Unset()


class JobStore(ABC):
    """Abstract interface for durable job persistence.

    Reads used for status or authorization take the owner id; a job owned by
    someone else is reported as NotFoundError, exactly like a missing one.
    """

    @abstractmethod
    async def create(self, job: JobRecord) -> JobRecord:
        """Insert a new job. Raises ConflictError if the id exists."""
        ...

    @abstractmethod
    async def get_by_id(self, job_id: str) -> JobRecord:
        """Unscoped lookup for the orchestrator. Raises NotFoundError."""
        ...

    @abstractmethod
    async def update_status(
        self,
        job_id: str,
        status: JobStatus,
        result_url: Optional[str] = None,
        keypoint_data: Any = UNSET,
    ) -> JobRecord:
        """Move a job forward and stamp updated_at.

        result_url is always written (None clears it). keypoint_data is left
        untouched when omitted; passing it, including None, overwrites it.
        Raises InvalidTransitionError if the move would regress the status.
        """
        ...

    @abstractmethod
    async def find_latest_base_avatar_with_keypoints(
        self, owner_id: str
    ) -> Optional[JobRecord]:
        """Most recently updated BASE_AVATAR job of the owner with keypoints."""
        ...

    async def get_for_owner(self, job_id: str, owner_id: str) -> JobRecord:
        job = await self.get_by_id(job_id)
        if job.owner_id != owner_id:
            raise NotFoundError("Job not found.")
        return job


def check_transition(job: JobRecord, status: JobStatus) -> None:
    if not can_transition(job.status, status):
        raise InvalidTransitionError(
            f"Job {job.id} cannot move from {job.status.value} to {status.value}"
        )


class InMemoryJobStore(JobStore):
    """Process-local store; contents are lost on restart."""

    def __init__(self):
        self._jobs: Dict[str, JobRecord] = {}
        self._lock = asyncio.Lock()

    async def create(self, job: JobRecord) -> JobRecord:
        async with self._lock:
            if job.id in self._jobs:
                raise ConflictError(f"Job {job.id} already exists")
            self._jobs[job.id] = job.model_copy(deep=True)
            return job

    async def get_by_id(self, job_id: str) -> JobRecord:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError("Job not found.")
        return job.model_copy(deep=True)

    async def update_status(
        self,
        job_id: str,
        status: JobStatus,
        result_url: Optional[str] = None,
        keypoint_data: Any = UNSET,
    ) -> JobRecord:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFoundError("Job not found.")
            check_transition(job, status)

            job.status = status
            job.result_url = result_url
            if keypoint_data is not UNSET:
                job.keypoint_data = (
                    KeypointData.model_validate(keypoint_data)
                    if keypoint_data is not None
                    else None
                )
            job.updated_at = utcnow()
            return job.model_copy(deep=True)

    async def find_latest_base_avatar_with_keypoints(
        self, owner_id: str
    ) -> Optional[JobRecord]:
        candidates = [
            job
            for job in self._jobs.values()
            if job.owner_id == owner_id
            and job.job_type == JobType.BASE_AVATAR
            and job.keypoint_data is not None
        ]
        if not candidates:
            return None
        latest = max(candidates, key=lambda job: job.updated_at)
        return latest.model_copy(deep=True)
