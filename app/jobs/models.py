"""Job record data model for async processing."""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
import uuid

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError as PydanticValidationError,
    field_validator,
    model_validator,
)

from app.errors import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    READY = "READY"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.READY, JobStatus.FAILED)


_STATUS_RANK = {
    JobStatus.QUEUED: 0,
    JobStatus.PROCESSING: 1,
    JobStatus.READY: 2,
    JobStatus.FAILED: 2,
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    """Status only moves forward, and never out of a terminal state."""
    if current.is_terminal:
        return False
    return _STATUS_RANK[target] > _STATUS_RANK[current]


class JobType(str, Enum):
    BASE_AVATAR = "BASE_AVATAR"
    GARMENT_OVERLAY = "GARMENT_OVERLAY"


def normalize_job_type(value: Any) -> JobType:
    """Anything other than GARMENT_OVERLAY is a base avatar job."""
    if str(value or "").strip().upper() == JobType.GARMENT_OVERLAY.value:
        return JobType.GARMENT_OVERLAY
    return JobType.BASE_AVATAR


# ---------------------------------------------------------------------------
# Pose keypoints
# ---------------------------------------------------------------------------

class PoseKeypoint(BaseModel):
    name: str
    x: Optional[float] = None
    y: Optional[float] = None
    score: Optional[float] = None


class KeypointData(BaseModel):
    keypoints: List[PoseKeypoint] = Field(min_length=1)


# ---------------------------------------------------------------------------
# Garment fitting metadata
# ---------------------------------------------------------------------------

class Anchor(BaseModel):
    name: Optional[str] = None
    role: Optional[str] = None
    x: Optional[float] = None
    y: Optional[float] = None
    notes: Optional[str] = None


class FittingMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    anchors: List[Anchor] = Field(default_factory=list)
    notes: Optional[str] = None
    additional_instructions: Optional[str] = Field(
        default=None, alias="additionalInstructions"
    )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def normalize_anchor(raw: Any) -> Optional[Anchor]:
    """Build an Anchor from loosely shaped input, or None when unusable.

    Coordinates may be flat (``x``/``y``) or nested under ``coordinates``.
    An anchor with neither a name nor both coordinates is discarded.
    """
    if not isinstance(raw, dict):
        return None

    name = raw.get("name") if isinstance(raw.get("name"), str) else None
    role = raw.get("role") if isinstance(raw.get("role"), str) else None
    notes = raw.get("notes") if isinstance(raw.get("notes"), str) else None

    coordinates = raw.get("coordinates")
    if not isinstance(coordinates, dict):
        coordinates = raw
    x = coordinates.get("x") if _is_number(coordinates.get("x")) else None
    y = coordinates.get("y") if _is_number(coordinates.get("y")) else None

    has_coordinates = x is not None and y is not None
    if not name and not has_coordinates:
        return None

    return Anchor(
        name=name or None,
        role=role or None,
        x=x if has_coordinates else None,
        y=y if has_coordinates else None,
        notes=notes or None,
    )


def normalize_fitting_metadata(raw: Any) -> Optional[FittingMetadata]:
    """Normalize stored or submitted fitting metadata.

    A bare list is taken as the anchor list. Returns None when nothing
    usable remains after normalization.
    """
    if raw is None:
        return None
    if isinstance(raw, FittingMetadata):
        return raw

    if isinstance(raw, list):
        anchors = [a for a in (normalize_anchor(entry) for entry in raw) if a]
        return FittingMetadata(anchors=anchors) if anchors else None

    if not isinstance(raw, dict):
        return None

    raw_anchors = raw.get("anchors")
    anchors = []
    if isinstance(raw_anchors, list):
        anchors = [a for a in (normalize_anchor(entry) for entry in raw_anchors) if a]

    notes = raw.get("notes") if isinstance(raw.get("notes"), str) else None
    additional = raw.get("additionalInstructions")
    if not isinstance(additional, str):
        additional = raw.get("additional_instructions")
    if not isinstance(additional, str):
        additional = None

    if not anchors and not notes and not additional:
        return None
    return FittingMetadata(
        anchors=anchors, notes=notes, additional_instructions=additional
    )


# ---------------------------------------------------------------------------
# Submission payload: metadata bag as a union tagged by jobType
# ---------------------------------------------------------------------------

class BaseAvatarMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    job_type: Literal["BASE_AVATAR"] = Field(
        default="BASE_AVATAR", alias="jobType"
    )


class GarmentOverlayMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    job_type: Literal["GARMENT_OVERLAY"] = Field(alias="jobType")
    garment_id: Optional[str] = Field(default=None, alias="garmentId")
    garment_name: Optional[str] = Field(default=None, alias="garmentName")
    garment_image_url: Optional[str] = Field(default=None, alias="garmentImageUrl")
    base_avatar_job_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "baseAvatarJobId", "baseAvatarJobID", "base_avatar_job_id"
        ),
        serialization_alias="baseAvatarJobId",
    )
    fitting_metadata: Optional[FittingMetadata] = Field(
        default=None, alias="fittingMetadata"
    )
    pose_metadata: Optional[FittingMetadata] = Field(
        default=None, alias="poseMetadata"
    )
    pose_anchors: Optional[List[Anchor]] = Field(default=None, alias="poseAnchors")

    @field_validator("garment_id", "base_avatar_job_id", mode="before")
    @classmethod
    def _coerce_identifier(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        if _is_number(value):
            return str(value)
        return value

    @field_validator("garment_image_url", "garment_name", mode="before")
    @classmethod
    def _drop_non_strings(cls, value: Any) -> Any:
        return value if isinstance(value, str) else None

    @field_validator("fitting_metadata", "pose_metadata", mode="before")
    @classmethod
    def _normalize_metadata(cls, value: Any) -> Any:
        return normalize_fitting_metadata(value)

    @field_validator("pose_anchors", mode="before")
    @classmethod
    def _normalize_anchors(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return None
        return [a for a in (normalize_anchor(entry) for entry in value) if a]


JobMetadata = Annotated[
    Union[BaseAvatarMetadata, GarmentOverlayMetadata],
    Field(discriminator="job_type"),
]


class JobRequest(BaseModel):
    """The original submission, validated once at the API boundary."""

    model_config = ConfigDict(populate_by_name=True)

    photo_base64: str = Field(alias="photoBase64", min_length=1)
    garment_image_base64: Optional[str] = Field(
        default=None, alias="garmentImageBase64"
    )
    prompt: Optional[str] = None
    metadata: JobMetadata = Field(default_factory=BaseAvatarMetadata)

    @model_validator(mode="before")
    @classmethod
    def _tag_metadata(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        metadata = data.get("metadata")
        if isinstance(metadata, BaseModel):
            return data
        metadata = dict(metadata) if isinstance(metadata, dict) else {}
        metadata["jobType"] = normalize_job_type(metadata.get("jobType")).value
        return {**data, "metadata": metadata}

    @model_validator(mode="after")
    def _require_garment_image(self) -> "JobRequest":
        if self.job_type == JobType.GARMENT_OVERLAY and not self.garment_image_base64:
            raise ValueError(
                "garmentImageBase64 is required for garment overlay jobs."
            )
        return self

    @property
    def job_type(self) -> JobType:
        return JobType(self.metadata.job_type)

    @classmethod
    def from_submission(cls, body: Any) -> "JobRequest":
        """Validate a raw submission body, raising the API ValidationError."""
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object.")
        photo = body.get("photoBase64")
        if not isinstance(photo, str) or not photo.strip():
            raise ValidationError("photoBase64 is required.")
        garment = body.get("garmentImageBase64")
        if garment is not None and not isinstance(garment, str):
            raise ValidationError("garmentImageBase64 must be a string.")
        try:
            return cls.model_validate(body)
        except PydanticValidationError as exc:
            first = exc.errors()[0]
            message = first.get("msg", "Invalid request.")
            raise ValidationError(message.removeprefix("Value error, ")) from exc

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Job record
# ---------------------------------------------------------------------------

class JobRecord(BaseModel):
    """Tracks the lifecycle of an async generation job."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    owner_id: str
    status: JobStatus = JobStatus.QUEUED
    request_payload: JobRequest
    result_url: Optional[str] = None
    keypoint_data: Optional[KeypointData] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def job_type(self) -> JobType:
        return self.request_payload.job_type

    def to_status_response(self) -> Dict[str, Any]:
        return {
            "jobId": self.id,
            "status": self.status.value,
            "resultUrl": self.result_url,
            "keypointData": (
                self.keypoint_data.model_dump(mode="json")
                if self.keypoint_data is not None
                else None
            ),
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
