"""In-memory job registry and project store. Keyed by job ID / project ID."""

from __future__ import annotations

import abc
import copy
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from models.job import Job
from models.project import DEFAULT_PROJECT_TITLE, Project, ProjectStatus
from services import config
from services.errors import ProjectNotFound


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobRegistry(abc.ABC):
    """Storage seam for live jobs. Single writer per job, many readers."""

    @abc.abstractmethod
    def get(self, job_id: str, *, now: datetime | None = None) -> Job | None: ...

    @abc.abstractmethod
    def put(self, job: Job) -> None: ...

    @abc.abstractmethod
    def delete(self, job_id: str) -> Job | None: ...

    @abc.abstractmethod
    def sweep(self, *, now: datetime | None = None) -> list[str]:
        """Drop terminal jobs past their retention window; return the removed IDs."""


class InMemoryJobRegistry(JobRegistry):
    def __init__(self, ttl_seconds: float | None = None) -> None:
        self._ttl = timedelta(seconds=ttl_seconds if ttl_seconds is not None else config.get_job_ttl_seconds())
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()

    def _expired(self, job: Job, now: datetime) -> bool:
        return job.finished_at is not None and job.finished_at + self._ttl <= now

    def get(self, job_id: str, *, now: datetime | None = None) -> Job | None:
        now = now or _utcnow()
        with self._lock:
            job = self._jobs.get(job_id)
            if job is not None and self._expired(job, now):
                del self._jobs[job_id]
                return None
            return job

    def put(self, job: Job) -> None:
        with self._lock:
            self._jobs[job.id] = job

    def delete(self, job_id: str) -> Job | None:
        with self._lock:
            return self._jobs.pop(job_id, None)

    def sweep(self, *, now: datetime | None = None) -> list[str]:
        now = now or _utcnow()
        with self._lock:
            stale = [job_id for job_id, job in self._jobs.items() if self._expired(job, now)]
            for job_id in stale:
                del self._jobs[job_id]
        return stale

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def clear(self) -> None:
        with self._lock:
            self._jobs.clear()


class ProjectStore:
    """Persisted project records. Callers receive copies, never the stored objects."""

    def __init__(self) -> None:
        self._projects: dict[str, Project] = {}
        self._lock = threading.Lock()

    def create(
        self,
        owner_id: str,
        *,
        title: str | None = None,
        status: ProjectStatus = ProjectStatus.DRAFT,
        input: dict[str, Any] | None = None,
    ) -> Project:
        project = Project(
            id=uuid.uuid4().hex,
            owner_id=owner_id,
            title=title or DEFAULT_PROJECT_TITLE,
            status=status,
            input=copy.deepcopy(input),
        )
        with self._lock:
            self._projects[project.id] = project
            return copy.deepcopy(project)

    def get(self, project_id: str) -> Project:
        with self._lock:
            project = self._projects.get(project_id)
            if project is None:
                raise ProjectNotFound(project_id)
            return copy.deepcopy(project)

    def update(self, project_id: str, **changes: Any) -> Project:
        with self._lock:
            project = self._projects.get(project_id)
            if project is None:
                raise ProjectNotFound(project_id)
            for name, value in changes.items():
                if not hasattr(project, name) or name in ("id", "owner_id", "created_at"):
                    raise AttributeError(f"Project has no writable field {name!r}")
                setattr(project, name, copy.deepcopy(value))
            project.updated_at = _utcnow()
            return copy.deepcopy(project)

    def clear(self) -> None:
        with self._lock:
            self._projects.clear()


jobs = InMemoryJobRegistry()
projects = ProjectStore()
