"""Shared pytest fixtures for the digital tailoring backend tests."""

import base64
import io
import json
from pathlib import Path
from typing import Callable, Dict, List, Optional

import httpx
import pytest
from fastapi import Header
from PIL import Image

from app.catalog.reader import InMemoryCatalog
from app.config import Settings
from app.errors import AuthError
from app.generation.gemini import GeminiImageClient
from app.jobs.rate_limiter import SubmissionRateLimiter
from app.jobs.store import InMemoryJobStore
from app.orchestrator.images import ImageResolver
from app.pose import estimator as pose_module
from app.pose.estimator import FallbackPoseEstimator
from app.services import Services, assemble
from app.storage.artifacts import LocalArtifactStore

GEMINI_HOST = "generativelanguage.googleapis.com"


def make_png(color=(200, 30, 30), size=(4, 4)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


PNG_BYTES = make_png()
PNG_B64 = base64.b64encode(PNG_BYTES).decode("ascii")
GARMENT_PNG_B64 = base64.b64encode(make_png((10, 10, 240))).decode("ascii")


def gemini_image_response(data: str = PNG_B64, mime_type: str = "image/png") -> Dict:
    return {
        "candidates": [
            {"content": {"parts": [{"inlineData": {"mimeType": mime_type, "data": data}}]}}
        ]
    }


class FakeClock:
    """Manually advanced clock for time-dependent components."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUpstream:
    """Routes httpx requests to canned generation responses and remote images.

    Records every request so tests can inspect what was sent.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.gemini_status = 200
        self.gemini_body: Dict = gemini_image_response()
        self.remote_images: Dict[str, httpx.Response] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == GEMINI_HOST:
            return httpx.Response(self.gemini_status, json=self.gemini_body)
        response = self.remote_images.get(str(request.url))
        if response is not None:
            return response
        return httpx.Response(404, text="not found")

    @property
    def gemini_requests(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.host == GEMINI_HOST]

    def last_gemini_body(self) -> Dict:
        return json.loads(self.gemini_requests[-1].content)


@pytest.fixture(autouse=True)
def reset_pose_notice():
    pose_module.reset_simulation_notice()
    yield
    pose_module.reset_simulation_notice()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        gemini_api_key="test-key",
        supabase_url="https://test.supabase.co",
        supabase_anon_key="anon-key",
        artifact_bucket="test-bucket",
        artifact_dir=str(tmp_path / "artifacts"),
        artifact_signing_secret="test-secret",
        public_base_url="http://testserver",
        rate_limit_window_seconds=30,
        max_concurrent_jobs=4,
    )


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def catalog() -> InMemoryCatalog:
    return InMemoryCatalog()


@pytest.fixture
def make_services(test_settings, upstream, clock, catalog) -> Callable[..., Services]:
    """Factory for a fully wired in-memory service graph.

    Every external HTTP call goes through the FakeUpstream transport.
    """

    def _make(
        store: Optional[InMemoryJobStore] = None, pose_estimator=None, generator=None
    ) -> Services:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
        return assemble(
            settings=test_settings,
            store=store or InMemoryJobStore(),
            pose_estimator=pose_estimator or FallbackPoseEstimator(primary=None),
            generator=generator or GeminiImageClient.from_settings(test_settings, http_client),
            artifacts=LocalArtifactStore(
                base_dir=test_settings.artifact_dir,
                bucket=test_settings.artifact_bucket,
                signing_secret=test_settings.artifact_signing_secret,
                public_base_url=test_settings.public_base_url,
            ),
            catalog=catalog,
            images=ImageResolver(http_client),
            rate_limiter=SubmissionRateLimiter(
                window_seconds=test_settings.rate_limit_window_seconds, clock=clock
            ),
            http_client=http_client,
        )

    return _make


async def fake_verify_jwt(authorization: str = Header(None)) -> str:
    """Treats the bearer token itself as the user id."""
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthError("Missing or invalid token")
    return authorization[len("Bearer "):]


def auth(user_id: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {user_id}"}
