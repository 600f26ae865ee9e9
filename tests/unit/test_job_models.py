"""Tests for app.jobs.models: statuses, request validation, fitting metadata."""

from __future__ import annotations

import pytest

from app.errors import ValidationError
from app.jobs.models import (
    BaseAvatarMetadata,
    GarmentOverlayMetadata,
    JobRecord,
    JobRequest,
    JobStatus,
    JobType,
    can_transition,
    normalize_anchor,
    normalize_fitting_metadata,
    normalize_job_type,
)


class TestTransitions:
    @pytest.mark.parametrize(
        "current,target",
        [
            (JobStatus.QUEUED, JobStatus.PROCESSING),
            (JobStatus.PROCESSING, JobStatus.READY),
            (JobStatus.PROCESSING, JobStatus.FAILED),
            (JobStatus.QUEUED, JobStatus.FAILED),
        ],
    )
    def test_forward_moves_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (JobStatus.PROCESSING, JobStatus.QUEUED),
            (JobStatus.READY, JobStatus.FAILED),
            (JobStatus.FAILED, JobStatus.READY),
            (JobStatus.READY, JobStatus.PROCESSING),
            (JobStatus.PROCESSING, JobStatus.PROCESSING),
        ],
    )
    def test_regressions_and_terminal_exits_rejected(self, current, target):
        assert not can_transition(current, target)


class TestJobType:
    def test_overlay_is_case_insensitive(self):
        assert normalize_job_type("garment_overlay") == JobType.GARMENT_OVERLAY

    @pytest.mark.parametrize("value", [None, "", "something", "BASE_AVATAR"])
    def test_everything_else_is_base_avatar(self, value):
        assert normalize_job_type(value) == JobType.BASE_AVATAR


class TestJobRequest:
    def test_defaults_to_base_avatar(self):
        request = JobRequest.from_submission({"photoBase64": "abcd"})
        assert request.job_type == JobType.BASE_AVATAR
        assert isinstance(request.metadata, BaseAvatarMetadata)

    def test_missing_photo(self):
        with pytest.raises(ValidationError, match="photoBase64"):
            JobRequest.from_submission({"metadata": {}})

    def test_blank_photo(self):
        with pytest.raises(ValidationError):
            JobRequest.from_submission({"photoBase64": "   "})

    def test_non_object_body(self):
        with pytest.raises(ValidationError):
            JobRequest.from_submission(["photoBase64"])

    def test_overlay_requires_garment_image(self):
        with pytest.raises(ValidationError, match="garmentImageBase64"):
            JobRequest.from_submission(
                {"photoBase64": "abcd", "metadata": {"jobType": "GARMENT_OVERLAY"}}
            )

    def test_overlay_metadata_is_typed(self):
        request = JobRequest.from_submission(
            {
                "photoBase64": "abcd",
                "garmentImageBase64": "efgh",
                "metadata": {
                    "jobType": "garment_overlay",
                    "garmentId": 42,
                    "garmentName": "Wool coat",
                    "baseAvatarJobID": "job-1",
                },
            }
        )
        metadata = request.metadata
        assert isinstance(metadata, GarmentOverlayMetadata)
        assert metadata.garment_id == "42"
        assert metadata.garment_name == "Wool coat"
        assert metadata.base_avatar_job_id == "job-1"

    def test_payload_survives_storage_round_trip(self):
        request = JobRequest.from_submission(
            {
                "photoBase64": "abcd",
                "garmentImageBase64": "efgh",
                "prompt": "evening look",
                "metadata": {
                    "jobType": "GARMENT_OVERLAY",
                    "baseAvatarJobId": "job-1",
                    "fittingMetadata": {"anchors": [{"name": "collar"}], "notes": "loose"},
                },
            }
        )
        restored = JobRequest.model_validate(request.to_payload())
        assert restored.to_payload() == request.to_payload()
        assert request.to_payload()["metadata"]["baseAvatarJobId"] == "job-1"


class TestAnchorNormalization:
    def test_name_only_anchor_kept(self):
        anchor = normalize_anchor({"name": "collar"})
        assert anchor.name == "collar"
        assert anchor.x is None

    def test_nested_coordinates(self):
        anchor = normalize_anchor({"role": "hem", "coordinates": {"x": 10, "y": 20.5}})
        assert (anchor.x, anchor.y) == (10, 20.5)
        assert anchor.role == "hem"

    def test_half_coordinates_without_name_discarded(self):
        assert normalize_anchor({"x": 10}) is None

    def test_role_only_anchor_discarded(self):
        assert normalize_anchor({"role": "hem"}) is None

    def test_partial_coordinates_dropped_from_named_anchor(self):
        anchor = normalize_anchor({"name": "cuff", "x": 3})
        assert anchor.x is None and anchor.y is None


class TestFittingMetadata:
    def test_bare_list_becomes_anchors(self):
        metadata = normalize_fitting_metadata([{"name": "collar"}, {"notes": "junk"}])
        assert [a.name for a in metadata.anchors] == ["collar"]

    def test_notes_and_instructions(self):
        metadata = normalize_fitting_metadata(
            {"notes": "slim fit", "additionalInstructions": "tuck in"}
        )
        assert metadata.notes == "slim fit"
        assert metadata.additional_instructions == "tuck in"
        assert metadata.anchors == []

    def test_nothing_usable_is_none(self):
        assert normalize_fitting_metadata({"anchors": [{"x": 1}]}) is None
        assert normalize_fitting_metadata("collar") is None


class TestStatusResponse:
    def test_shape(self):
        job = JobRecord(owner_id="u1", request_payload=JobRequest.from_submission({"photoBase64": "abcd"}))
        data = job.to_status_response()
        assert data["jobId"] == job.id
        assert data["status"] == "QUEUED"
        assert data["resultUrl"] is None
        assert data["keypointData"] is None
        assert set(data) == {"jobId", "status", "resultUrl", "keypointData", "createdAt", "updatedAt"}
