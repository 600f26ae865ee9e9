"""Tests for artifact paths, local storage and signed URLs."""

import asyncio
import base64
import os
from urllib.parse import parse_qs, urlparse

import pytest

from app.config import Settings
from app.errors import ConfigurationError, InvalidRequestError
from app.storage.artifacts import (
    LocalArtifactStore,
    build_artifact_store,
    build_object_path,
    extension_from_mime_type,
    sanitize_segment,
)
from conftest import PNG_B64, PNG_BYTES, FakeClock


@pytest.fixture
def store(tmp_path, clock):
    return LocalArtifactStore(
        base_dir=str(tmp_path),
        bucket="results",
        signing_secret="secret",
        public_base_url="http://testserver/",
        ttl_minutes=60,
        clock=clock,
    )


def query_of(url):
    parsed = urlparse(url)
    params = parse_qs(parsed.query)
    return parsed.path, int(params["Expires"][0]), params["Signature"][0]


@pytest.mark.parametrize(
    "mime,ext",
    [
        ("image/png", "png"),
        ("image/jpeg", "jpg"),
        ("IMAGE/JPG", "jpg"),
        ("image/webp", "webp"),
        ("image/gif", "png"),
        (None, "png"),
    ],
)
def test_extension_from_mime_type(mime, ext):
    assert extension_from_mime_type(mime) == ext


def test_sanitize_segment():
    assert sanitize_segment("User@Example.com") == "user-example-com"
    assert sanitize_segment("../../etc") == "etc"
    assert sanitize_segment("") == "anonymous"
    assert sanitize_segment("@@@") == "anonymous"


def test_object_path():
    assert build_object_path("Alice", "job-1", "image/jpeg") == "images/alice/job-1.jpg"


class TestLocalStore:
    def test_upload_writes_file_and_signs(self, store, tmp_path, clock):
        artifact = asyncio.run(store.upload_base64_image("alice", "job-1", PNG_B64))
        assert artifact.path == "images/alice/job-1.png"
        assert artifact.bucket == "results"
        assert artifact.expires_at == int(clock()) + 3600
        with open(os.path.join(tmp_path, "results", "images", "alice", "job-1.png"), "rb") as f:
            assert f.read() == PNG_BYTES

        path, expires, signature = query_of(artifact.signed_url)
        assert artifact.signed_url.startswith("http://testserver/api/v1/artifacts/images/alice/job-1.png?")
        assert store.verify(artifact.path, expires, signature)

    def test_reupload_overwrites(self, store):
        asyncio.run(store.upload_base64_image("alice", "job-1", PNG_B64))
        other = base64.b64encode(b"second").decode()
        artifact = asyncio.run(store.upload_base64_image("alice", "job-1", other))
        with open(store.resolve_path(artifact.path), "rb") as f:
            assert f.read() == b"second"

    def test_invalid_base64_rejected(self, store):
        with pytest.raises(InvalidRequestError):
            asyncio.run(store.upload_base64_image("alice", "job-1", "not base64!"))

    def test_empty_payload_rejected(self, store):
        with pytest.raises(InvalidRequestError):
            asyncio.run(store.upload_base64_image("alice", "job-1", ""))

    def test_expired_signature(self, store, clock):
        artifact = store.sign("images/alice/job-1.png")
        _, expires, signature = query_of(artifact.signed_url)
        clock.advance(3601)
        assert not store.verify(artifact.path, expires, signature)

    def test_signature_bound_to_path_and_expiry(self, store):
        artifact = store.sign("images/alice/job-1.png")
        _, expires, signature = query_of(artifact.signed_url)
        assert not store.verify("images/bob/job-1.png", expires, signature)
        assert not store.verify(artifact.path, expires + 1, signature)
        assert not store.verify(artifact.path, expires, "")

    def test_traversal_refused(self, store):
        with pytest.raises(InvalidRequestError):
            store.resolve_path("../outside.png")


class TestBuild:
    def test_missing_bucket(self):
        with pytest.raises(ConfigurationError):
            build_artifact_store(Settings(_env_file=None, artifact_bucket=None))

    def test_supabase_backend_needs_client(self):
        settings = Settings(_env_file=None, artifact_bucket="b", artifact_backend="supabase")
        with pytest.raises(ConfigurationError):
            build_artifact_store(settings)

    def test_local_backend(self, tmp_path):
        settings = Settings(_env_file=None, artifact_bucket="b", artifact_dir=str(tmp_path))
        store = build_artifact_store(settings)
        assert isinstance(store, LocalArtifactStore)
        assert store.bucket == "b"
