"""Supabase-backed job store (``dtp_jobs`` table).

Expected schema::

    create table dtp_jobs (
        id uuid primary key,
        user_id text not null,
        status text not null,
        request_payload jsonb,
        result_url text,
        keypoint_data jsonb,
        created_at timestamptz default now(),
        updated_at timestamptz default now()
    );
"""

import asyncio
from functools import partial
from typing import Any, Dict, Optional

from supabase import Client

from app.errors import ConflictError, InvalidTransitionError, NotFoundError
from app.jobs.models import (
    JobRecord,
    JobStatus,
    JobType,
    KeypointData,
    can_transition,
    utcnow,
)
from app.jobs.store import UNSET, JobStore

TABLE = "dtp_jobs"
UNIQUE_VIOLATION = "23505"
INVALID_TEXT_REPRESENTATION = "22P02"


def _row_to_job(row: Dict[str, Any]) -> JobRecord:
    return JobRecord(
        id=str(row["id"]),
        owner_id=str(row["user_id"]),
        status=JobStatus(row["status"]),
        request_payload=row.get("request_payload") or {},
        result_url=row.get("result_url"),
        keypoint_data=row.get("keypoint_data"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _job_to_row(job: JobRecord) -> Dict[str, Any]:
    return {
        "id": job.id,
        "user_id": job.owner_id,
        "status": job.status.value,
        "request_payload": job.request_payload.to_payload(),
        "result_url": job.result_url,
        "keypoint_data": (
            job.keypoint_data.model_dump(mode="json") if job.keypoint_data else None
        ),
        "created_at": job.created_at.isoformat(),
        "updated_at": job.updated_at.isoformat(),
    }


class SupabaseJobStore(JobStore):
    """Job store on a Supabase table.

    The Supabase client is synchronous, so every call is pushed to the
    default thread executor to keep the event loop free.
    """

    def __init__(self, client: Client):
        self._client = client

    async def _run(self, fn, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(fn, *args, **kwargs))

    async def create(self, job: JobRecord) -> JobRecord:
        def _insert():
            return self._client.table(TABLE).insert(_job_to_row(job)).execute()

        try:
            await self._run(_insert)
        except Exception as exc:
            if getattr(exc, "code", None) == UNIQUE_VIOLATION:
                raise ConflictError(f"Job {job.id} already exists") from exc
            raise
        return job

    async def get_by_id(self, job_id: str) -> JobRecord:
        def _select():
            return (
                self._client.table(TABLE)
                .select("*")
                .eq("id", job_id)
                .limit(1)
                .execute()
            )

        try:
            response = await self._run(_select)
        except Exception as exc:
            # The id column is a uuid; anything else cannot name a job.
            if getattr(exc, "code", None) == INVALID_TEXT_REPRESENTATION:
                raise NotFoundError("Job not found.") from exc
            raise
        if not response.data:
            raise NotFoundError("Job not found.")
        return _row_to_job(response.data[0])

    async def update_status(
        self,
        job_id: str,
        status: JobStatus,
        result_url: Optional[str] = None,
        keypoint_data: Any = UNSET,
    ) -> JobRecord:
        values: Dict[str, Any] = {
            "status": status.value,
            "result_url": result_url,
            "updated_at": utcnow().isoformat(),
        }
        if keypoint_data is not UNSET:
            values["keypoint_data"] = (
                KeypointData.model_validate(keypoint_data).model_dump(mode="json")
                if keypoint_data is not None
                else None
            )

        # Guard the write on the current status so a regression never lands,
        # even with a second writer.
        allowed_from = [s.value for s in JobStatus if can_transition(s, status)]

        def _update():
            return (
                self._client.table(TABLE)
                .update(values)
                .eq("id", job_id)
                .in_("status", allowed_from)
                .execute()
            )

        response = await self._run(_update)
        if response.data:
            return _row_to_job(response.data[0])

        current = await self.get_by_id(job_id)
        raise InvalidTransitionError(
            f"Job {job_id} cannot move from {current.status.value} to {status.value}"
        )

    async def find_latest_base_avatar_with_keypoints(
        self, owner_id: str
    ) -> Optional[JobRecord]:
        def _select():
            return (
                self._client.table(TABLE)
                .select("*")
                .eq("user_id", owner_id)
                .eq("request_payload->metadata->>jobType", JobType.BASE_AVATAR.value)
                .not_.is_("keypoint_data", "null")
                .order("updated_at", desc=True)
                .limit(1)
                .execute()
            )

        response = await self._run(_select)
        if not response.data:
            return None
        return _row_to_job(response.data[0])
