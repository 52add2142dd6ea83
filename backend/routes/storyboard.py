"""Storyboard generation REST API: background jobs with SSE progress, plus synchronous helpers."""

import asyncio
import json
import logging
from typing import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from models.generation import (
    DEFAULT_DELAY_BETWEEN_SCENES_MS,
    DEFAULT_PACING,
    MAX_PACING,
    MIN_PACING,
    CharacterInfo,
    CharacterReference,
    GenerationRequest,
    PacingParams,
    VisualParams,
)
from models.job import JobEvent, JobEventKind, JobSnapshot, JobStatus, scenes_to_dicts
from services.auth import Principal, get_principal
from services.errors import (
    ExternalCallFailed,
    JobAccessDenied,
    JobNotFound,
    ProjectNotFound,
    SegmentationEmpty,
    StoryboardError,
)
from services.orchestrator import JobOrchestrator, get_orchestrator

router = APIRouter(tags=["storyboard"])
logger = logging.getLogger(__name__)

MAX_CHARACTER_REFERENCES = 30
MAX_CHARACTERS_INFO = 50
MAX_DELAY_BETWEEN_SCENES_MS = 60_000
REGENERATE_PAUSE_SECONDS = 1.0


class CharacterInfoIn(BaseModel):
    name: str = Field(..., min_length=1)
    characteristic: str | None = None
    context: str | None = None


class CharacterReferenceIn(CharacterInfoIn):
    base64_image: str = Field(..., min_length=1)
    mime_type: str = "image/png"


class VisualIn(BaseModel):
    character_references: list[CharacterReferenceIn] = Field(default_factory=list, max_length=MAX_CHARACTER_REFERENCES)
    all_characters_info: list[CharacterInfoIn] = Field(default_factory=list, max_length=MAX_CHARACTERS_INFO)
    image_style: str = Field(..., min_length=1)
    restriction_prompt: str = ""

    def to_visual(self) -> VisualParams:
        return VisualParams(
            image_style=self.image_style,
            restriction_prompt=self.restriction_prompt,
            character_references=[CharacterReference(**c.model_dump()) for c in self.character_references],
            all_characters_info=[CharacterInfo(**c.model_dump()) for c in self.all_characters_info],
        )


class GenerateRequestIn(VisualIn):
    script_or_srt_content: str = Field(..., min_length=1)
    is_srt: bool = False
    delay_between_scenes: int = Field(DEFAULT_DELAY_BETWEEN_SCENES_MS, ge=0, le=MAX_DELAY_BETWEEN_SCENES_MS)
    pacing: int = Field(DEFAULT_PACING, ge=MIN_PACING, le=MAX_PACING)
    project_id: str | None = None
    title: str | None = Field(None, max_length=200)

    def to_request(self) -> GenerationRequest:
        return GenerationRequest(
            script_or_srt_content=self.script_or_srt_content,
            is_srt=self.is_srt,
            visual=self.to_visual(),
            pacing=PacingParams(pacing=self.pacing, delay_between_scenes_ms=self.delay_between_scenes),
            project_id=self.project_id,
            title=self.title,
        )


class RegenerateImageIn(VisualIn):
    visual_description: str = Field(..., min_length=1)


class SceneOut(BaseModel):
    scene_number: int
    narration: str
    duration_seconds: float
    duration: str
    visual_description: str
    image_url: str


class JobStartResponse(BaseModel):
    job_id: str
    project_id: str
    status: JobStatus
    message: str


class JobResultResponse(BaseModel):
    job_id: str
    project_id: str
    status: JobStatus
    message: str
    updated_at: str
    scenes: list[SceneOut] | None = None
    error: str | None = None


class GenerateResponse(BaseModel):
    scenes: list[SceneOut]


class RegenerateImageResponse(BaseModel):
    image_url: str


def _authorized_job(job_id: str, principal: Principal, orchestrator: JobOrchestrator):
    try:
        job = orchestrator.get_job(job_id)
        orchestrator.check_access(job, principal)
    except JobNotFound:
        raise HTTPException(status_code=404, detail="Job not found") from None
    except JobAccessDenied:
        raise HTTPException(status_code=403, detail="Access denied") from None
    return job


def _result_body(snapshot: JobSnapshot) -> dict:
    body = JobResultResponse(
        job_id=snapshot.job_id,
        project_id=snapshot.project_id,
        status=snapshot.status,
        message=snapshot.message,
        updated_at=snapshot.updated_at.isoformat(),
        scenes=scenes_to_dicts(snapshot.scenes) if snapshot.scenes is not None else None,
        error=snapshot.error,
    )
    return body.model_dump(mode="json", exclude_none=True)


def format_sse(event: JobEvent, job_id: str) -> str:
    if event.kind is JobEventKind.HEARTBEAT:
        return ": ping\n\n"
    data = {"job_id": job_id, **event.payload}
    return f"event: {event.kind.value}\ndata: {json.dumps(data)}\n\n"


@router.post("/storyboard/generate/start", response_model=JobStartResponse, status_code=202)
async def start_generation(
    body: GenerateRequestIn,
    principal: Principal = Depends(get_principal),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> JobStartResponse:
    """Launch a background storyboard job and return its IDs immediately."""
    if body.project_id:
        try:
            project = orchestrator.projects.get(body.project_id)
        except ProjectNotFound:
            raise HTTPException(status_code=404, detail="Project not found") from None
        if project.owner_id != principal.id and not principal.is_admin:
            raise HTTPException(status_code=403, detail="Access denied")
    job_id, project_id = await orchestrator.start(body.to_request(), principal.id)
    snapshot = orchestrator.poll(job_id)
    logger.info("[storyboard] POST /storyboard/generate/start → 202 job_id=%s project_id=%s", job_id, project_id)
    return JobStartResponse(
        job_id=job_id,
        project_id=project_id,
        status=snapshot.status,
        message=snapshot.message,
    )


@router.get("/storyboard/jobs/{job_id}/events")
async def stream_job_events(
    job_id: str,
    principal: Principal = Depends(get_principal),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> StreamingResponse:
    """Server-sent events: progress, then exactly one completed/failed event; ``: ping`` keeps idle links open."""
    _authorized_job(job_id, principal, orchestrator)

    async def body() -> AsyncIterator[str]:
        try:
            async for event in orchestrator.subscribe(job_id):
                yield format_sse(event, job_id)
        except JobNotFound:
            logger.info("[storyboard] Job %s reaped while streaming", job_id)

    return StreamingResponse(
        body(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/storyboard/jobs/{job_id}/result", response_model=JobResultResponse)
async def get_job_result(
    job_id: str,
    principal: Principal = Depends(get_principal),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    """202 while running, 200 with scenes once completed, 400 with the error once failed."""
    _authorized_job(job_id, principal, orchestrator)
    snapshot = orchestrator.poll(job_id)
    status_code = {JobStatus.RUNNING: 202, JobStatus.COMPLETED: 200, JobStatus.FAILED: 400}[snapshot.status]
    return JSONResponse(status_code=status_code, content=_result_body(snapshot))


@router.post("/storyboard/generate", response_model=GenerateResponse)
async def generate_storyboard(
    body: GenerateRequestIn,
    principal: Principal = Depends(get_principal),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> GenerateResponse:
    """Run the whole pipeline inside the request. Prefer the job endpoints for long scripts."""
    logger.info("[storyboard] POST /storyboard/generate called by %s", principal.id)
    try:
        scenes = await orchestrator.pipeline().run(body.to_request())
    except SegmentationEmpty as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ExternalCallFailed as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except StoryboardError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return GenerateResponse(scenes=[SceneOut(**s) for s in scenes_to_dicts(scenes)])


@router.post("/storyboard/regenerate-image", response_model=RegenerateImageResponse)
async def regenerate_image(
    body: RegenerateImageIn,
    principal: Principal = Depends(get_principal),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> RegenerateImageResponse:
    logger.info("[storyboard] POST /storyboard/regenerate-image called by %s", principal.id)
    await asyncio.sleep(REGENERATE_PAUSE_SECONDS)
    try:
        image_url = await orchestrator.pipeline().enricher.regenerate_image(body.visual_description, body.to_visual())
    except ExternalCallFailed as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return RegenerateImageResponse(image_url=image_url)
