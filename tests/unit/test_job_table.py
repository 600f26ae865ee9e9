"""Tests for the Supabase-backed job store against a recording fake client."""

import asyncio
from types import SimpleNamespace
from typing import Any, List

import pytest

from app.db.job_table import SupabaseJobStore, _job_to_row
from app.errors import ConflictError, InvalidTransitionError, NotFoundError
from app.jobs.models import JobRecord, JobRequest, JobStatus


class FakeQuery:
    """Records builder calls; execute() pops the next queued result."""

    def __init__(self, results: List[Any]):
        self.calls = []
        self._results = results

    @property
    def not_(self):
        self.calls.append(("not_",))
        return self

    def __getattr__(self, name):
        def _record(*args, **kwargs):
            self.calls.append((name, *args))
            return self

        return _record

    def execute(self):
        result = self._results.pop(0)
        if isinstance(result, Exception):
            raise result
        return SimpleNamespace(data=result)


class FakeSupabase:
    def __init__(self, *results):
        self.results = list(results)
        self.queries: List[FakeQuery] = []

    def table(self, name):
        assert name == "dtp_jobs"
        query = FakeQuery(self.results)
        self.queries.append(query)
        return query


class UniqueViolation(Exception):
    code = "23505"


class InvalidUuid(Exception):
    code = "22P02"


def make_job(status=JobStatus.QUEUED) -> JobRecord:
    return JobRecord(
        owner_id="alice",
        status=status,
        request_payload=JobRequest.from_submission({"photoBase64": "abcd"}),
    )


def test_create_inserts_row():
    client = FakeSupabase([{}])
    job = make_job()
    asyncio.run(SupabaseJobStore(client).create(job))
    name, row = client.queries[0].calls[0]
    assert name == "insert"
    assert row["id"] == job.id
    assert row["user_id"] == "alice"
    assert row["status"] == "QUEUED"
    assert row["request_payload"]["photoBase64"] == "abcd"


def test_duplicate_insert_is_conflict():
    client = FakeSupabase(UniqueViolation("duplicate key"))
    with pytest.raises(ConflictError):
        asyncio.run(SupabaseJobStore(client).create(make_job()))


def test_get_maps_row():
    job = make_job()
    client = FakeSupabase([_job_to_row(job)])
    loaded = asyncio.run(SupabaseJobStore(client).get_by_id(job.id))
    assert loaded.id == job.id
    assert loaded.request_payload.to_payload() == job.request_payload.to_payload()


def test_get_missing():
    with pytest.raises(NotFoundError):
        asyncio.run(SupabaseJobStore(FakeSupabase([])).get_by_id("nope"))


def test_malformed_id_is_not_found():
    client = FakeSupabase(InvalidUuid("invalid input syntax for type uuid"))
    with pytest.raises(NotFoundError):
        asyncio.run(SupabaseJobStore(client).get_by_id("not-a-uuid"))


def test_other_database_errors_propagate():
    client = FakeSupabase(RuntimeError("connection reset"))
    with pytest.raises(RuntimeError, match="connection reset"):
        asyncio.run(SupabaseJobStore(client).get_by_id(make_job().id))


def test_update_is_guarded_on_prior_status():
    job = make_job(JobStatus.READY)
    client = FakeSupabase([_job_to_row(job)])
    asyncio.run(SupabaseJobStore(client).update_status(job.id, JobStatus.READY, "https://x"))
    calls = client.queries[0].calls
    assert ("in_", "status", ["QUEUED", "PROCESSING"]) in calls
    update = next(c for c in calls if c[0] == "update")[1]
    assert update["result_url"] == "https://x"
    assert "keypoint_data" not in update


def test_explicit_none_keypoints_are_written():
    job = make_job(JobStatus.FAILED)
    client = FakeSupabase([_job_to_row(job)])
    asyncio.run(SupabaseJobStore(client).update_status(job.id, JobStatus.FAILED, None, None))
    update = next(c for c in client.queries[0].calls if c[0] == "update")[1]
    assert update["keypoint_data"] is None


def test_rejected_update_reports_transition():
    current = make_job(JobStatus.READY)
    client = FakeSupabase([], [_job_to_row(current)])
    with pytest.raises(InvalidTransitionError, match="READY"):
        asyncio.run(SupabaseJobStore(client).update_status(current.id, JobStatus.PROCESSING))


def test_latest_base_avatar_query():
    client = FakeSupabase([])
    result = asyncio.run(SupabaseJobStore(client).find_latest_base_avatar_with_keypoints("alice"))
    assert result is None
    calls = client.queries[0].calls
    assert ("eq", "user_id", "alice") in calls
    assert ("eq", "request_payload->metadata->>jobType", "BASE_AVATAR") in calls
    assert ("not_",) in calls
    assert ("is_", "keypoint_data", "null") in calls
    assert ("limit", 1) in calls
