"""Project snapshot read and video export."""

import asyncio
import logging
from typing import Any, Literal

import httpx
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel

from models.project import Project, ProjectStatus
from models.scene import Scene
from services import gcs
from services.auth import Principal, get_principal
from services.compositor import compose
from services.errors import CodecUnavailable, CompositionAborted, ProjectNotFound
from services.images import read_media_bytes
from services.orchestrator import JobOrchestrator, get_orchestrator

router = APIRouter(tags=["projects"])
logger = logging.getLogger(__name__)


class ProjectResponse(BaseModel):
    id: str
    title: str
    status: ProjectStatus
    input: dict[str, Any] | None = None
    result: dict[str, Any] | None = None
    last_error: str | None = None
    created_at: str
    updated_at: str


class VideoExportIn(BaseModel):
    resolution: Literal["720p", "1080p"] = "720p"
    audio_url: str | None = None
    delivery: Literal["download", "signed_url"] = "download"


class VideoLinkResponse(BaseModel):
    url: str
    filename: str


def _owned_project(project_id: str, principal: Principal, orchestrator: JobOrchestrator) -> Project:
    try:
        project = orchestrator.projects.get(project_id)
    except ProjectNotFound:
        raise HTTPException(status_code=404, detail="Project not found") from None
    if project.owner_id != principal.id and not principal.is_admin:
        raise HTTPException(status_code=403, detail="Access denied")
    return project


@router.get("/projects/{project_id}", response_model=ProjectResponse)
def get_project(
    project_id: str,
    principal: Principal = Depends(get_principal),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> ProjectResponse:
    project = _owned_project(project_id, principal, orchestrator)
    return ProjectResponse(
        id=project.id,
        title=project.title,
        status=project.status,
        input=project.input,
        result=project.result,
        last_error=project.last_error,
        created_at=project.created_at.isoformat(),
        updated_at=project.updated_at.isoformat(),
    )


@router.post("/projects/{project_id}/video", response_model=VideoLinkResponse)
async def export_video(
    project_id: str,
    body: VideoExportIn,
    principal: Principal = Depends(get_principal),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """
    Render the project's scenes to video.

    ``delivery="download"`` returns the file as an attachment;
    ``delivery="signed_url"`` uploads it to GCS and returns a 48h link.
    """
    project = _owned_project(project_id, principal, orchestrator)
    scenes = [Scene(**s) for s in project.scenes]
    if not scenes:
        raise HTTPException(status_code=400, detail="Project has no scenes to render")

    audio: bytes | None = None
    if body.audio_url:
        try:
            audio = await asyncio.to_thread(read_media_bytes, body.audio_url)
        except (ValueError, OSError, httpx.HTTPError) as exc:
            raise HTTPException(status_code=400, detail=f"Could not fetch the audio file: {exc}") from exc

    def on_progress(percent: int, message: str) -> None:
        logger.debug("[projects] export %s %d%% %s", project_id, percent, message)

    try:
        video = await asyncio.to_thread(compose, scenes, audio, body.resolution, on_progress)
    except CodecUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except CompositionAborted as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    logger.info(
        "[projects] Rendered %s for project %s (%d bytes, %d frames)",
        video.filename,
        project_id,
        len(video.data),
        video.frame_count,
    )

    if body.delivery == "download":
        return Response(
            content=video.data,
            media_type=video.mime_type,
            headers={"Content-Disposition": f'attachment; filename="{video.filename}"'},
        )
    try:
        url = await asyncio.to_thread(gcs.publish_video, project_id, video.filename, video.data, video.mime_type)
    except Exception as exc:  # noqa: BLE001
        logger.exception("[projects] Upload failed for project %s", project_id)
        raise HTTPException(status_code=502, detail="Could not upload the video") from exc
    return VideoLinkResponse(url=url, filename=video.filename)
