"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings
from typing import List, Optional

from app.errors import ConfigurationError


class Settings(BaseSettings):
    # Server
    compute_port: int = 8001
    cors_origins: List[str] = ["http://localhost:5173", "http://localhost:3000"]
    log_level: str = "INFO"
    public_base_url: str = "http://localhost:8001"

    # Supabase
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    supabase_anon_key: str = ""

    # Backends
    job_store_backend: str = "memory"  # "memory" or "supabase"
    catalog_backend: str = "memory"  # "memory" or "supabase"
    artifact_backend: str = "local"  # "local" or "supabase"

    # Image generation (Gemini)
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash-image-preview"
    gemini_api_base: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_max_request_bytes: int = 20 * 1024 * 1024
    gemini_timeout_seconds: float = 120.0
    gemini_image_job_cost_usd: float = 0.02

    # Pose estimation (Vertex AI); all four must be set to leave simulation
    gcp_project_id: Optional[str] = None
    gcp_region: Optional[str] = None
    vertex_pose_endpoint: Optional[str] = None
    vertex_access_token: Optional[str] = None
    vertex_timeout_seconds: float = 30.0

    # Artifact storage
    artifact_bucket: Optional[str] = None
    artifact_dir: str = "/data/artifacts"
    artifact_signing_secret: str = "dtp-dev-signing-secret"
    signed_url_ttl_minutes: int = 60

    # Job processing
    rate_limit_window_seconds: float = 30.0
    max_concurrent_jobs: int = 8
    remote_fetch_timeout_seconds: float = 15.0
    shutdown_grace_seconds: float = 10.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def pose_estimation_configured(self) -> bool:
        return all(
            (
                self.gcp_project_id,
                self.gcp_region,
                self.vertex_pose_endpoint,
                self.vertex_access_token,
            )
        )

    @property
    def uses_supabase(self) -> bool:
        return "supabase" in (
            self.job_store_backend,
            self.catalog_backend,
            self.artifact_backend,
        )

    def validate_for_startup(self) -> None:
        """Raise ConfigurationError naming every missing required value."""
        missing = []
        if not self.gemini_api_key:
            missing.append("GEMINI_API_KEY")
        if not self.artifact_bucket:
            missing.append("ARTIFACT_BUCKET")
        # Bearer tokens are always resolved against Supabase auth.
        if not self.supabase_url:
            missing.append("SUPABASE_URL")
        if not self.supabase_anon_key:
            missing.append("SUPABASE_ANON_KEY")
        if self.uses_supabase and not self.supabase_service_role_key:
            missing.append("SUPABASE_SERVICE_ROLE_KEY")

        for name, value, allowed in (
            ("JOB_STORE_BACKEND", self.job_store_backend, ("memory", "supabase")),
            ("CATALOG_BACKEND", self.catalog_backend, ("memory", "supabase")),
            ("ARTIFACT_BACKEND", self.artifact_backend, ("local", "supabase")),
        ):
            if value not in allowed:
                raise ConfigurationError(
                    f"{name} must be one of {', '.join(allowed)} (got '{value}')"
                )

        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}"
            )


settings = Settings()
