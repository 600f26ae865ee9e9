"""Construction of the long-lived collaborators the API and worker share."""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from app.catalog.reader import CatalogReader, InMemoryCatalog, SupabaseCatalog
from app.config import Settings
from app.db.job_table import SupabaseJobStore
from app.db.supabase_client import get_supabase
from app.generation.gemini import GeminiImageClient
from app.jobs.in_process_queue import InProcessQueue
from app.jobs.dispatcher import JobDispatcher
from app.jobs.rate_limiter import SubmissionRateLimiter
from app.jobs.store import InMemoryJobStore, JobStore
from app.orchestrator.images import ImageResolver
from app.orchestrator.pipeline import JobOrchestrator
from app.pose.estimator import PoseEstimator, build_pose_estimator
from app.storage.artifacts import ArtifactStore, build_artifact_store

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    store: JobStore
    rate_limiter: SubmissionRateLimiter
    orchestrator: JobOrchestrator
    dispatcher: JobDispatcher
    artifacts: ArtifactStore
    pose_estimator: PoseEstimator
    http_client: Optional[httpx.AsyncClient] = None

    async def start(self) -> None:
        await self.dispatcher.start()

    async def stop(self) -> None:
        await self.dispatcher.stop()
        if self.http_client is not None:
            await self.http_client.aclose()


def assemble(
    settings: Settings,
    store: JobStore,
    pose_estimator: PoseEstimator,
    generator: GeminiImageClient,
    artifacts: ArtifactStore,
    catalog: CatalogReader,
    images: ImageResolver,
    rate_limiter: Optional[SubmissionRateLimiter] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Services:
    orchestrator = JobOrchestrator(
        store=store,
        pose_estimator=pose_estimator,
        generator=generator,
        artifacts=artifacts,
        catalog=catalog,
        images=images,
        image_job_cost_usd=settings.gemini_image_job_cost_usd,
    )
    dispatcher = InProcessQueue(
        worker_fn=orchestrator.process,
        max_concurrency=settings.max_concurrent_jobs,
        shutdown_grace_seconds=settings.shutdown_grace_seconds,
        on_abandoned=orchestrator.abandon,
    )
    return Services(
        settings=settings,
        store=store,
        rate_limiter=rate_limiter
        or SubmissionRateLimiter(window_seconds=settings.rate_limit_window_seconds),
        orchestrator=orchestrator,
        dispatcher=dispatcher,
        artifacts=artifacts,
        pose_estimator=pose_estimator,
        http_client=http_client,
    )


def build_services(settings: Settings) -> Services:
    """Wire production collaborators from configuration."""
    supabase = None
    if settings.uses_supabase:
        supabase = get_supabase(settings)

    if settings.job_store_backend == "supabase":
        store: JobStore = SupabaseJobStore(supabase)
    else:
        store = InMemoryJobStore()
        logger.warning("Using in-memory job store. Jobs will not survive a restart.")

    catalog: CatalogReader
    if settings.catalog_backend == "supabase":
        catalog = SupabaseCatalog(supabase)
    else:
        catalog = InMemoryCatalog()

    http_client = httpx.AsyncClient()
    return assemble(
        settings=settings,
        store=store,
        pose_estimator=build_pose_estimator(settings, http_client),
        generator=GeminiImageClient.from_settings(settings, http_client),
        artifacts=build_artifact_store(settings, supabase),
        catalog=catalog,
        images=ImageResolver(http_client, timeout=settings.remote_fetch_timeout_seconds),
        http_client=http_client,
    )
