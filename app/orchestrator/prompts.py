"""Instruction text and prompt rendering for generation requests."""

import math
from typing import Optional

from app.jobs.models import FittingMetadata, KeypointData

BASE_AVATAR_PROMPT = (
    "You are a digital tailoring pipeline. Cleanly segment the subject from "
    "the provided photo, preserve their identity, and return a photorealistic "
    "base avatar suitable for garment try-on. Maintain the subject's original "
    "pose and lighting, remove background distractions, and deliver the "
    "result as a transparent-background PNG."
)

GARMENT_OVERLAY_PROMPT = (
    "You are a digital tailor. Combine the provided base avatar with the "
    "garment reference image to produce a photorealistic, properly fitted "
    "look. Preserve the subject's identity, proportions, pose, and lighting. "
    "Align the garment naturally with realistic draping and shadows. Return a "
    "transparent-background PNG of the fitted result."
)

OVERLAY_ALIGNMENT_HINT = (
    "Overlay the garment precisely onto the human figure, ensuring the collar "
    "aligns with the neckline."
)

BASE_AVATAR_IMAGE_CAPTION = (
    "Base avatar reference image. Respect the provided keypoints during warping."
)


def _px(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clean(value: Optional[str]) -> Optional[str]:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def format_keypoints(keypoint_data: Optional[KeypointData]) -> Optional[str]:
    """Render keypoints as ``name: (x, y) confidence=0.87; ...``.

    Coordinates are rounded to integers and confidence to two decimals.
    """
    if keypoint_data is None or not keypoint_data.keypoints:
        return None

    rendered = []
    for index, kp in enumerate(keypoint_data.keypoints):
        label = _clean(kp.name) or f"point_{index + 1}"
        if kp.x is not None and kp.y is not None:
            coords = f"({_px(kp.x)}, {_px(kp.y)})"
        else:
            coords = "(unknown)"
        confidence = f" confidence={kp.score:.2f}" if kp.score is not None else ""
        rendered.append(f"{label}: {coords}{confidence}")
    return "; ".join(rendered)


def format_fitting_metadata(metadata: Optional[FittingMetadata]) -> Optional[str]:
    if metadata is None:
        return None

    sections = []
    anchors = []
    for anchor in metadata.anchors:
        label = _clean(anchor.name) or _clean(anchor.role) or "anchor"
        coords = ""
        if anchor.x is not None and anchor.y is not None:
            coords = f"({_px(anchor.x)}, {_px(anchor.y)})"
        notes = _clean(anchor.notes)
        anchors.append(f"{label}{coords}{f' - {notes}' if notes else ''}")
    if anchors:
        sections.append(f"Anchors: {'; '.join(anchors)}")

    notes = _clean(metadata.notes)
    if notes:
        sections.append(f"Notes: {notes}")
    instructions = _clean(metadata.additional_instructions)
    if instructions:
        sections.append(f"Instructions: {instructions}")

    return " | ".join(sections) if sections else None


def garment_image_caption(garment_name: Optional[str]) -> str:
    label = _clean(garment_name)
    return (
        f"Garment reference image{f': {label}' if label else ''}. "
        "Fit and drape this garment over the avatar using the specified anchors."
    )
