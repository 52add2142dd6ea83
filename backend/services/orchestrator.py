"""
Background storyboard jobs: start, stream progress, poll, reap.

One asyncio task runs per job. All job mutations go through ``JobHub.update``
so the event each subscriber sees always matches the state a concurrent
snapshot would return.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime
from typing import AsyncIterator, Callable

from models.generation import GenerationRequest
from models.job import Job, JobEvent, JobSnapshot, scenes_to_dicts
from models.project import ProjectStatus
from models.scene import Scene
from services import config, store
from services.auth import Principal
from services.errors import JobAccessDenied, JobNotFound
from services.gemini_client import create_storyboard_model
from services.job_hub import CLOSED, JobHub
from services.pipeline import COMPLETED_MESSAGE, StoryboardPipeline
from services.store import InMemoryJobRegistry, JobRegistry, ProjectStore

logger = logging.getLogger(__name__)

PREPARING_MESSAGE = "Preparing storyboard generation..."
UNKNOWN_FAILURE_MESSAGE = "Unknown error during storyboard generation."


def default_pipeline_factory() -> StoryboardPipeline:
    return StoryboardPipeline(create_storyboard_model())


class JobOrchestrator:
    def __init__(
        self,
        *,
        registry: JobRegistry | None = None,
        projects: ProjectStore | None = None,
        hub: JobHub | None = None,
        pipeline_factory: Callable[[], StoryboardPipeline] = default_pipeline_factory,
    ) -> None:
        self.registry = registry if registry is not None else InMemoryJobRegistry()
        self.projects = projects if projects is not None else ProjectStore()
        self.hub = hub or JobHub()
        self._pipeline_factory = pipeline_factory
        self._tasks: set[asyncio.Task[None]] = set()

    async def start(self, request: GenerationRequest, owner_id: str) -> tuple[str, str]:
        """
        Register a running job and launch its background task.

        An existing ``request.project_id`` is moved to ``processing`` with the
        new input; otherwise a project is created. Returns immediately with
        ``(job_id, project_id)``. Raises ``ProjectNotFound`` for an unknown project.
        """
        snapshot = request.input_snapshot()
        if request.project_id:
            changes: dict[str, object] = {
                "status": ProjectStatus.PROCESSING,
                "input": snapshot,
                "last_error": None,
            }
            if request.title:
                changes["title"] = request.title
            project = self.projects.update(request.project_id, **changes)
        else:
            project = self.projects.create(
                owner_id, title=request.title, status=ProjectStatus.PROCESSING, input=snapshot
            )

        job = Job(id=uuid.uuid4().hex, owner_id=owner_id, project_id=project.id)
        self.registry.put(job)
        task = asyncio.create_task(self._run(job, request), name=f"storyboard-job-{job.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("[orchestrator] Job %s started for project %s (owner=%s)", job.id, project.id, owner_id)
        return job.id, project.id

    def pipeline(self) -> StoryboardPipeline:
        return self._pipeline_factory()

    async def _progress(self, job: Job, message: str) -> None:
        def change() -> JobEvent:
            job.touch(message)
            return JobEvent.progress(job)

        await self.hub.update(job.id, change)

    async def _run(self, job: Job, request: GenerationRequest) -> None:
        await self._progress(job, PREPARING_MESSAGE)

        async def on_progress(message: str) -> None:
            await self._progress(job, message)

        try:
            pipeline = self.pipeline()
            scenes = await pipeline.run(request, on_progress=on_progress)
        except Exception as exc:  # noqa: BLE001
            logger.exception("[orchestrator] Job %s failed", job.id)
            await self._finish_failed(job, str(exc) or UNKNOWN_FAILURE_MESSAGE)
            return
        await self._finish_completed(job, scenes)

    async def _finish_completed(self, job: Job, scenes: list[Scene]) -> None:
        def change() -> JobEvent:
            job.complete(scenes, COMPLETED_MESSAGE)
            return JobEvent.terminal(job)

        await self.hub.update(job.id, change)
        logger.info("[orchestrator] Job %s completed with %d scenes", job.id, len(scenes))
        self._persist(
            job,
            status=ProjectStatus.COMPLETED,
            result={"scenes": scenes_to_dicts(job.scenes or [])},
            last_error=None,
        )

    async def _finish_failed(self, job: Job, error: str) -> None:
        def change() -> JobEvent:
            job.fail(error)
            return JobEvent.terminal(job)

        await self.hub.update(job.id, change)
        self._persist(job, status=ProjectStatus.FAILED, last_error=error)

    def _persist(self, job: Job, **changes: object) -> None:
        try:
            self.projects.update(job.project_id, **changes)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "[orchestrator] Could not persist project %s for job %s: %s",
                job.project_id,
                job.id,
                exc,
                exc_info=True,
            )

    def get_job(self, job_id: str) -> Job:
        job = self.registry.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    @staticmethod
    def check_access(job: Job, principal: Principal) -> None:
        if job.owner_id != principal.id and not principal.is_admin:
            raise JobAccessDenied(job.id)

    def poll(self, job_id: str) -> JobSnapshot:
        """Current state; scenes only once completed, error only once failed."""
        return self.get_job(job_id).snapshot()

    async def subscribe(
        self,
        job_id: str,
        *,
        heartbeat_seconds: float | None = None,
    ) -> AsyncIterator[JobEvent]:
        """
        Yield the current snapshot, every later progress event, then the terminal event.

        A heartbeat event is yielded whenever nothing arrives for
        ``heartbeat_seconds``. Raises ``JobNotFound`` on first iteration for an
        unknown or reaped job.
        """
        job = self.get_job(job_id)
        heartbeat = heartbeat_seconds if heartbeat_seconds is not None else config.get_heartbeat_seconds()

        def initial() -> list[JobEvent]:
            events = [JobEvent.progress(job)]
            if job.status.is_terminal:
                events.append(JobEvent.terminal(job))
            return events

        q = await self.hub.subscribe(job_id, initial)
        last_revision = -1
        try:
            while True:
                try:
                    event = await asyncio.wait_for(q.get(), timeout=heartbeat)
                except asyncio.TimeoutError:
                    yield JobEvent.heartbeat(last_revision)
                    continue
                if event is CLOSED:
                    return
                if not event.is_terminal and event.revision <= last_revision:
                    continue
                last_revision = event.revision
                yield event
                if event.is_terminal:
                    return
        finally:
            await self.hub.unsubscribe(job_id, q)

    async def wait(self, job_id: str) -> JobSnapshot:
        """Block until the job is terminal and return its final snapshot."""
        async for _event in self.subscribe(job_id, heartbeat_seconds=3600):
            pass
        return self.poll(job_id)

    def sweep(self, now: datetime | None = None) -> list[str]:
        removed = self.registry.sweep(now=now)
        if removed:
            logger.info("[orchestrator] Reaped %d finished job(s)", len(removed))
        return removed

    async def run_sweeper(self, interval_seconds: float | None = None) -> None:
        """Periodic retention sweep; runs until cancelled."""
        interval = interval_seconds or config.get_sweep_interval_seconds()
        while True:
            await asyncio.sleep(interval)
            try:
                self.sweep()
            except Exception:  # noqa: BLE001
                logger.exception("[orchestrator] Retention sweep failed")

    def running_jobs(self) -> int:
        return sum(1 for t in self._tasks if not t.done())

    async def drain(self) -> None:
        """Wait for every in-flight job task to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


orchestrator = JobOrchestrator(registry=store.jobs, projects=store.projects)


def get_orchestrator() -> JobOrchestrator:
    """FastAPI dependency; overridden in tests."""
    return orchestrator
