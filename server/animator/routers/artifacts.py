"""Playback, download and release of finished videos."""
from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request, Response

from ..services.artifacts import ARTIFACT_ROUTE_PREFIX, ArtifactStore

router = APIRouter(prefix=ARTIFACT_ROUTE_PREFIX, tags=["artifacts"])

DOWNLOAD_FILENAME = "ethereal-animation.mp4"


def _store(request: Request) -> ArtifactStore:
    return request.app.state.artifacts


@router.get("/{artifact_id}")
async def get_artifact(artifact_id: str, request: Request, download: bool = False) -> Response:
    """Serve the video bytes; ``?download=true`` asks the browser to save them."""

    artifact = _store(request).get(artifact_id)
    if artifact is None:
        raise HTTPException(status_code=404, detail="Artifact not found or already released")
    headers = {}
    if download:
        headers["Content-Disposition"] = f'attachment; filename="{DOWNLOAD_FILENAME}"'
    return Response(content=artifact.data, media_type=artifact.mime_type, headers=headers)


@router.delete("/{artifact_id}", status_code=204)
async def release_artifact(artifact_id: str, request: Request) -> Response:
    if not _store(request).revoke(artifact_id):
        raise HTTPException(status_code=404, detail="Artifact not found or already released")
    return Response(status_code=204)
