"""Tests for startup configuration checks."""

import pytest

from app.config import Settings
from app.errors import ConfigurationError


def make_settings(**overrides):
    values = {
        "gemini_api_key": "k",
        "artifact_bucket": "b",
        "supabase_url": "https://test.supabase.co",
        "supabase_anon_key": "anon",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def test_minimal_memory_configuration_is_valid():
    make_settings().validate_for_startup()


def test_missing_values_are_all_named():
    settings = make_settings(gemini_api_key=None, artifact_bucket=None)
    with pytest.raises(ConfigurationError) as exc_info:
        settings.validate_for_startup()
    assert "GEMINI_API_KEY" in exc_info.value.message
    assert "ARTIFACT_BUCKET" in exc_info.value.message


def test_auth_credentials_required_with_memory_backends():
    settings = make_settings(supabase_url="", supabase_anon_key="")
    assert not settings.uses_supabase
    with pytest.raises(ConfigurationError) as exc_info:
        settings.validate_for_startup()
    assert "SUPABASE_URL" in exc_info.value.message
    assert "SUPABASE_ANON_KEY" in exc_info.value.message


def test_supabase_backend_requires_service_role_key():
    settings = make_settings(job_store_backend="supabase")
    with pytest.raises(ConfigurationError, match="SUPABASE_SERVICE_ROLE_KEY"):
        settings.validate_for_startup()


def test_supabase_backend_with_service_role_key():
    make_settings(
        job_store_backend="supabase", supabase_service_role_key="service"
    ).validate_for_startup()


def test_unknown_backend():
    with pytest.raises(ConfigurationError, match="ARTIFACT_BACKEND"):
        make_settings(artifact_backend="s3").validate_for_startup()


def test_pose_estimation_needs_all_four_values():
    partial = make_settings(gcp_project_id="p", gcp_region="r", vertex_pose_endpoint="e")
    assert not partial.pose_estimation_configured
    full = make_settings(
        gcp_project_id="p", gcp_region="r", vertex_pose_endpoint="e", vertex_access_token="t"
    )
    assert full.pose_estimation_configured


def test_defaults():
    settings = make_settings()
    assert settings.gemini_max_request_bytes == 20 * 1024 * 1024
    assert settings.signed_url_ttl_minutes == 60
    assert settings.rate_limit_window_seconds == 30
    assert settings.shutdown_grace_seconds == 10
    assert not settings.uses_supabase
