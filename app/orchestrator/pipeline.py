"""Job orchestrator: drives one job from QUEUED to READY or FAILED.

Steps:
1. Load the job (abort without writing if it is missing)
2. Mark it PROCESSING
3. Gather context: pose keypoints for base avatars; base avatar job,
   fitting metadata and garment reference for overlays
4. Compose the generation parts
5. Call the image model
6. Upload the returned image
7. Mark it READY (with keypoints for base avatars)

Any exception in steps 2-6 marks the job FAILED. Nothing is retried; the
client resubmits a new job instead.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from app.catalog.reader import CatalogReader
from app.errors import NotFoundError, UpstreamError, ValidationError
from app.generation.gemini import (
    GeminiImageClient,
    InlineImagePart,
    Part,
    TextPart,
    estimate_image_job_cost,
)
from app.jobs.models import (
    FittingMetadata,
    GarmentOverlayMetadata,
    JobRecord,
    JobStatus,
    JobType,
    KeypointData,
)
from app.jobs.store import UNSET, JobStore
from app.orchestrator import prompts
from app.orchestrator.images import ImageResolver, parse_inline
from app.pose.estimator import PoseEstimator
from app.storage.artifacts import ArtifactStore

logger = logging.getLogger(__name__)


@dataclass
class GarmentContext:
    metadata: Optional[FittingMetadata] = None
    reference_url: Optional[str] = None


@dataclass
class GenerationRequest:
    parts: List[Part]
    summary: Optional[Dict[str, Any]] = None


class JobOrchestrator:
    def __init__(
        self,
        store: JobStore,
        pose_estimator: PoseEstimator,
        generator: GeminiImageClient,
        artifacts: ArtifactStore,
        catalog: CatalogReader,
        images: ImageResolver,
        image_job_cost_usd: float = 0.02,
    ):
        self._store = store
        self._pose = pose_estimator
        self._generator = generator
        self._artifacts = artifacts
        self._catalog = catalog
        self._images = images
        self._image_job_cost_usd = image_job_cost_usd

    async def process(self, job_id: str) -> None:
        """Run one job to a terminal state.

        Never raises, except to let a cancellation through once the job has
        been recorded as FAILED.
        """
        # 1. Load
        try:
            job = await self._store.get_by_id(job_id)
        except NotFoundError:
            logger.error("Job %s not found when processing started", job_id)
            return
        except Exception:
            logger.exception("Could not load job %s for processing", job_id)
            return

        try:
            await self._run(job)
        except asyncio.CancelledError:
            logger.warning("Job %s for user %s cancelled during shutdown", job.id, job.owner_id)
            await self._mark_failed(job)
            raise
        except Exception as exc:
            logger.error(
                "Job %s for user %s failed: %s: %s",
                job.id,
                job.owner_id,
                type(exc).__name__,
                exc,
            )
            await self._mark_failed(job)

    async def abandon(self, job_id: str) -> None:
        """Record a job that was cancelled before it ever started."""
        try:
            job = await self._store.get_by_id(job_id)
        except Exception as exc:
            logger.error("Could not load abandoned job %s: %s", job_id, exc)
            return
        logger.warning("Job %s for user %s abandoned during shutdown", job.id, job.owner_id)
        await self._mark_failed(job)

    async def _mark_failed(self, job: JobRecord) -> None:
        try:
            await self._store.update_status(job.id, JobStatus.FAILED, None)
        except Exception as update_exc:
            # Job stays in PROCESSING; nothing else will move it.
            logger.error("Failed to mark job %s as FAILED: %s", job.id, update_exc)

    async def _run(self, job: JobRecord) -> None:
        job_type = job.job_type

        # 2. PROCESSING
        await self._store.update_status(job.id, JobStatus.PROCESSING, None)
        started = time.monotonic()
        logger.info(
            "Job %s (%s) for user %s is PROCESSING", job.id, job_type.value, job.owner_id
        )

        # 3. Context
        keypoints: Optional[KeypointData] = None
        base_avatar: Optional[JobRecord] = None
        garment = GarmentContext()
        if job_type == JobType.BASE_AVATAR:
            keypoints = await self._estimate_pose(job)
        else:
            base_avatar = await self.resolve_base_avatar(job)
            garment = await self.resolve_garment(job)
            if base_avatar is None:
                logger.warning(
                    "Job %s: no base avatar context, continuing without alignment hints",
                    job.id,
                )
            elif base_avatar.keypoint_data is None:
                logger.info(
                    "Job %s: base avatar job %s has no keypoints", job.id, base_avatar.id
                )

        # 4. Compose
        if job_type == JobType.BASE_AVATAR:
            request = await self.build_base_avatar_request(job)
        else:
            request = await self.build_overlay_request(job, base_avatar, garment)
        if request.summary:
            logger.info("Job %s prompt prepared: %s", job.id, request.summary)

        # 5. Generate
        generation_started = time.monotonic()
        data_url = await self._generator.generate_image(
            request.parts,
            generation_config={"responseMimeType": "image/png"},
        )
        cost = estimate_image_job_cost(request.parts, self._image_job_cost_usd)
        logger.info(
            "Job %s generation completed in %dms (estimated cost $%.4f, model=%s)",
            job.id,
            int((time.monotonic() - generation_started) * 1000),
            cost,
            self._generator.default_model,
        )

        # 6. Upload
        output = parse_inline(data_url)
        if output is None:
            raise UpstreamError("Generation result did not include image data.")
        artifact = await self._artifacts.upload_base64_image(
            job.owner_id, job.id, output.data, output.mime_type
        )

        # 7. READY
        await self._store.update_status(
            job.id,
            JobStatus.READY,
            artifact.signed_url,
            keypoints if job_type == JobType.BASE_AVATAR else UNSET,
        )
        logger.info(
            "Job %s READY in %dms (asset=%s/%s%s)",
            job.id,
            int((time.monotonic() - started) * 1000),
            artifact.bucket,
            artifact.path,
            f", keypoints={len(keypoints.keypoints)}" if keypoints else "",
        )

    async def _estimate_pose(self, job: JobRecord) -> KeypointData:
        photo = job.request_payload.photo_base64
        if not photo:
            raise ValidationError("Missing photo for base avatar job.")
        pose_started = time.monotonic()
        inline = parse_inline(photo)
        keypoints = await self._pose.estimate(inline.data if inline else photo)
        if not isinstance(keypoints, KeypointData) or not keypoints.keypoints:
            raise UpstreamError("Pose estimation did not return keypoints.")
        logger.info(
            "Job %s pose estimation returned %d keypoints in %dms",
            job.id,
            len(keypoints.keypoints),
            int((time.monotonic() - pose_started) * 1000),
        )
        return keypoints

    async def resolve_base_avatar(self, job: JobRecord) -> Optional[JobRecord]:
        """Explicitly referenced base avatar job, else the owner's latest one.

        Lookup failures are logged and treated as "no context".
        """
        metadata = job.request_payload.metadata
        explicit_id = (
            metadata.base_avatar_job_id
            if isinstance(metadata, GarmentOverlayMetadata)
            else None
        )

        if explicit_id:
            try:
                return await self._store.get_for_owner(explicit_id, job.owner_id)
            except NotFoundError:
                logger.info(
                    "Job %s: base avatar job %s not found for user %s",
                    job.id,
                    explicit_id,
                    job.owner_id,
                )
            except Exception as exc:
                logger.error(
                    "Job %s: error loading base avatar job %s: %s", job.id, explicit_id, exc
                )

        try:
            return await self._store.find_latest_base_avatar_with_keypoints(job.owner_id)
        except Exception as exc:
            logger.error(
                "Job %s: failed to look up latest base avatar for user %s: %s",
                job.id,
                job.owner_id,
                exc,
            )
            return None

    async def resolve_garment(self, job: JobRecord) -> GarmentContext:
        """Fitting metadata by priority: fittingMetadata, poseMetadata,
        poseAnchors, then the catalog item's stored metadata."""
        metadata = job.request_payload.metadata
        if not isinstance(metadata, GarmentOverlayMetadata):
            return GarmentContext()

        reference_url = metadata.garment_image_url
        if metadata.fitting_metadata is not None:
            return GarmentContext(metadata.fitting_metadata, reference_url)
        if metadata.pose_metadata is not None:
            return GarmentContext(metadata.pose_metadata, reference_url)
        if metadata.pose_anchors is not None:
            return GarmentContext(FittingMetadata(anchors=metadata.pose_anchors), reference_url)

        if not metadata.garment_id:
            return GarmentContext(None, reference_url)

        try:
            item = await self._catalog.get_item(metadata.garment_id)
        except Exception as exc:
            logger.error(
                "Job %s: failed to load fitting metadata for garment %s: %s",
                job.id,
                metadata.garment_id,
                exc,
            )
            return GarmentContext(None, reference_url)

        if item is None:
            return GarmentContext(None, reference_url)
        return GarmentContext(item.fitting_metadata, reference_url or item.image_url)

    async def build_base_avatar_request(self, job: JobRecord) -> GenerationRequest:
        photo = await self._images.resolve(
            job.request_payload.photo_base64, label="base avatar capture"
        )
        return GenerationRequest(
            parts=[
                TextPart(text=prompts.BASE_AVATAR_PROMPT),
                InlineImagePart(inline_data=photo),
            ]
        )

    async def build_overlay_request(
        self,
        job: JobRecord,
        base_avatar: Optional[JobRecord],
        garment: GarmentContext,
    ) -> GenerationRequest:
        payload = job.request_payload
        metadata = payload.metadata
        garment_name = (
            metadata.garment_name if isinstance(metadata, GarmentOverlayMetadata) else None
        )

        avatar_image = await self._images.resolve(
            payload.photo_base64,
            base_avatar.result_url if base_avatar else None,
            label="base avatar",
        )
        garment_image = await self._images.resolve(
            payload.garment_image_base64,
            garment.reference_url,
            label="garment reference",
        )

        keypoint_text = prompts.format_keypoints(
            base_avatar.keypoint_data if base_avatar else None
        )
        fitting_text = prompts.format_fitting_metadata(garment.metadata)

        parts: List[Part] = [
            TextPart(text=f"{prompts.GARMENT_OVERLAY_PROMPT}\n\n{prompts.OVERLAY_ALIGNMENT_HINT}")
        ]
        if keypoint_text:
            parts.append(
                TextPart(text=f"Pose keypoints to prioritize (pixel coordinates): {keypoint_text}.")
            )
        if fitting_text:
            parts.append(TextPart(text=f"Garment fitting metadata: {fitting_text}."))
        parts.append(TextPart(text=prompts.BASE_AVATAR_IMAGE_CAPTION))
        parts.append(InlineImagePart(inline_data=avatar_image))
        parts.append(TextPart(text=prompts.garment_image_caption(garment_name)))
        parts.append(InlineImagePart(inline_data=garment_image))

        return GenerationRequest(
            parts=parts,
            summary={
                "baseAvatarJobId": base_avatar.id if base_avatar else None,
                "alignmentKeypoints": keypoint_text,
                "garmentMetadata": fitting_text,
            },
        )
