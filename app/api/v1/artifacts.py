"""Signed download route for artifacts kept by the local artifact store."""

import os

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import FileResponse

from app.errors import InvalidRequestError
from app.storage.artifacts import LocalArtifactStore

router = APIRouter()

_store = None

_MEDIA_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".webp": "image/webp",
}


def set_artifact_store(store):
    global _store
    _store = store


@router.get("/artifacts/{path:path}")
async def get_artifact(
    path: str,
    expires: int = Query(..., alias="Expires"),
    signature: str = Query(..., alias="Signature"),
):
    """Stream an artifact if the URL signature is valid and not expired."""
    if not isinstance(_store, LocalArtifactStore):
        raise HTTPException(status_code=404, detail="Artifact not found")

    if not _store.verify(path, expires, signature):
        raise HTTPException(status_code=403, detail="Signed URL is invalid or expired")

    try:
        full_path = _store.resolve_path(path)
    except InvalidRequestError:
        raise HTTPException(status_code=404, detail="Artifact not found")
    if not os.path.isfile(full_path):
        raise HTTPException(status_code=404, detail="Artifact not found")

    ext = os.path.splitext(full_path)[1].lower()
    return FileResponse(
        full_path,
        media_type=_MEDIA_TYPES.get(ext, "application/octet-stream"),
        headers={"Cache-Control": "private, max-age=3600"},
    )
