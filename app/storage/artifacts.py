"""Generated image storage with time-limited signed retrieval URLs."""

import asyncio
import base64
import binascii
import hashlib
import hmac
import os
import re
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional
from urllib.parse import quote, urlencode

from pydantic import BaseModel
from supabase import Client

from app.config import Settings
from app.errors import ConfigurationError, InvalidRequestError, UpstreamError

SIGNED_URL_TTL_MINUTES = 60


class StoredArtifact(BaseModel):
    signed_url: str
    bucket: str
    path: str
    expires_at: int


def extension_from_mime_type(mime_type: Optional[str]) -> str:
    normalized = (mime_type or "").lower()
    if "png" in normalized:
        return "png"
    if "jpeg" in normalized or "jpg" in normalized:
        return "jpg"
    if "webp" in normalized:
        return "webp"
    return "png"


def sanitize_segment(segment: Optional[str]) -> str:
    if not segment:
        return "anonymous"
    cleaned = re.sub(r"[^a-z0-9_-]+", "-", str(segment).strip().lower())
    return cleaned.strip("-") or "anonymous"


def build_object_path(owner_id: str, job_id: str, mime_type: str) -> str:
    ext = extension_from_mime_type(mime_type)
    return f"images/{sanitize_segment(owner_id)}/{sanitize_segment(job_id)}.{ext}"


def _decode(base64_data: str) -> bytes:
    if not isinstance(base64_data, str) or not base64_data:
        raise InvalidRequestError("Artifact upload requires a base64-encoded payload.")
    try:
        return base64.b64decode(base64_data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidRequestError(f"Artifact payload is not valid base64: {exc}") from exc


class ArtifactStore(ABC):
    bucket: str

    @abstractmethod
    async def upload_base64_image(
        self, owner_id: str, job_id: str, base64_data: str, mime_type: str = "image/png"
    ) -> StoredArtifact:
        """Persist the image and return a signed URL valid for the TTL."""
        ...


class LocalArtifactStore(ArtifactStore):
    """Writes artifacts under ``<base_dir>/<bucket>/`` and signs URLs with HMAC.

    URLs point at the service's own ``/api/v1/artifacts`` route, which checks
    the signature and expiry before streaming the file.
    """

    def __init__(
        self,
        base_dir: str,
        bucket: str,
        signing_secret: str,
        public_base_url: str,
        ttl_minutes: int = SIGNED_URL_TTL_MINUTES,
        clock: Callable[[], float] = time.time,
    ):
        self.bucket = bucket
        self._root = os.path.realpath(os.path.join(base_dir, bucket))
        self._secret = signing_secret.encode("utf-8")
        self._public_base_url = public_base_url.rstrip("/")
        self._ttl_seconds = ttl_minutes * 60
        self._clock = clock

    def resolve_path(self, path: str) -> str:
        """Filesystem location of an object path, refusing to escape the bucket."""
        full = os.path.realpath(os.path.join(self._root, path))
        if not full.startswith(self._root + os.sep):
            raise InvalidRequestError("Invalid artifact path.")
        return full

    def _signature(self, path: str, expires: int) -> str:
        message = f"{path}:{expires}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def sign(self, path: str) -> StoredArtifact:
        expires = int(self._clock()) + self._ttl_seconds
        query = urlencode({"Expires": expires, "Signature": self._signature(path, expires)})
        url = f"{self._public_base_url}/api/v1/artifacts/{quote(path)}?{query}"
        return StoredArtifact(signed_url=url, bucket=self.bucket, path=path, expires_at=expires)

    def verify(self, path: str, expires: int, signature: str) -> bool:
        if int(self._clock()) > expires:
            return False
        return hmac.compare_digest(self._signature(path, expires), signature or "")

    async def upload_base64_image(
        self, owner_id: str, job_id: str, base64_data: str, mime_type: str = "image/png"
    ) -> StoredArtifact:
        content = _decode(base64_data)
        path = build_object_path(owner_id, job_id, mime_type)
        target = self.resolve_path(path)

        def _write():
            os.makedirs(os.path.dirname(target), exist_ok=True)
            with open(target, "wb") as dst:
                dst.write(content)

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, _write)
        except OSError as exc:
            raise UpstreamError(f"Failed to store artifact: {exc}") from exc
        return self.sign(path)


class SupabaseArtifactStore(ArtifactStore):
    """Uploads to a Supabase Storage bucket and returns its signed URL."""

    def __init__(
        self,
        client: Client,
        bucket: str,
        ttl_minutes: int = SIGNED_URL_TTL_MINUTES,
        clock: Callable[[], float] = time.time,
    ):
        self._client = client
        self.bucket = bucket
        self._ttl_seconds = ttl_minutes * 60
        self._clock = clock

    async def upload_base64_image(
        self, owner_id: str, job_id: str, base64_data: str, mime_type: str = "image/png"
    ) -> StoredArtifact:
        content = _decode(base64_data)
        path = build_object_path(owner_id, job_id, mime_type)
        bucket = self._client.storage.from_(self.bucket)

        def _upload_and_sign():
            bucket.upload(
                path,
                content,
                {"content-type": mime_type, "upsert": "true"},
            )
            return bucket.create_signed_url(path, self._ttl_seconds)

        loop = asyncio.get_running_loop()
        try:
            signed = await loop.run_in_executor(None, _upload_and_sign)
        except Exception as exc:
            raise UpstreamError(f"Artifact upload failed: {exc}") from exc

        url = signed.get("signedURL") or signed.get("signedUrl")
        if not url:
            raise UpstreamError("Artifact store did not return a signed URL.")
        return StoredArtifact(
            signed_url=url,
            bucket=self.bucket,
            path=path,
            expires_at=int(self._clock()) + self._ttl_seconds,
        )


def build_artifact_store(settings: Settings, client: Optional[Client] = None) -> ArtifactStore:
    if not settings.artifact_bucket:
        raise ConfigurationError("Missing ARTIFACT_BUCKET configuration.")
    if settings.artifact_backend == "supabase":
        if client is None:
            raise ConfigurationError("Supabase artifact backend needs a Supabase client.")
        return SupabaseArtifactStore(
            client, settings.artifact_bucket, ttl_minutes=settings.signed_url_ttl_minutes
        )
    return LocalArtifactStore(
        base_dir=settings.artifact_dir,
        bucket=settings.artifact_bucket,
        signing_secret=settings.artifact_signing_secret,
        public_base_url=settings.public_base_url,
        ttl_minutes=settings.signed_url_ttl_minutes,
    )
