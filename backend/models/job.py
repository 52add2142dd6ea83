from __future__ import annotations

import copy
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .scene import Scene


class JobStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.RUNNING


class JobEventKind(str, Enum):
    PROGRESS = "progress"
    COMPLETED = "completed"
    FAILED = "failed"
    HEARTBEAT = "heartbeat"    # keep-alive only, never sent as a data record


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Job:
    id: str
    owner_id: str
    project_id: str
    status: JobStatus = JobStatus.RUNNING
    message: str = "Job created. Starting..."
    scenes: list[Scene] | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    finished_at: datetime | None = None
    revision: int = 0          # bumped on every mutation; orders events

    def touch(self, message: str) -> None:
        self.message = message
        self.updated_at = _utcnow()
        self.revision += 1

    def complete(self, scenes: list[Scene], message: str) -> None:
        if self.status.is_terminal:
            raise RuntimeError(f"job {self.id} already {self.status.value}")
        # status is assigned last: readers on other threads must never see a
        # terminal status without its scenes or error
        self.scenes = copy.deepcopy(scenes)
        self.finished_at = _utcnow()
        self.touch(message)
        self.status = JobStatus.COMPLETED

    def fail(self, error: str) -> None:
        if self.status.is_terminal:
            raise RuntimeError(f"job {self.id} already {self.status.value}")
        self.error = error
        self.finished_at = _utcnow()
        self.touch(error)
        self.status = JobStatus.FAILED

    def snapshot(self) -> JobSnapshot:
        return JobSnapshot(
            job_id=self.id,
            project_id=self.project_id,
            status=self.status,
            message=self.message,
            updated_at=self.updated_at,
            revision=self.revision,
            scenes=copy.deepcopy(self.scenes) if self.scenes is not None else None,
            error=self.error,
        )


@dataclass(frozen=True)
class JobSnapshot:
    job_id: str
    project_id: str
    status: JobStatus
    message: str
    updated_at: datetime
    revision: int
    scenes: list[Scene] | None = None
    error: str | None = None


@dataclass(frozen=True)
class JobEvent:
    kind: JobEventKind
    revision: int
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.kind in (JobEventKind.COMPLETED, JobEventKind.FAILED)

    @classmethod
    def progress(cls, job: Job | JobSnapshot) -> JobEvent:
        return cls(
            kind=JobEventKind.PROGRESS,
            revision=job.revision,
            payload={
                "project_id": job.project_id,
                "status": job.status.value,
                "message": job.message,
                "updated_at": job.updated_at.isoformat(),
            },
        )

    @classmethod
    def terminal(cls, job: Job | JobSnapshot) -> JobEvent:
        payload: dict[str, Any] = {
            "project_id": job.project_id,
            "status": job.status.value,
            "message": job.message,
            "updated_at": job.updated_at.isoformat(),
        }
        if job.status is JobStatus.COMPLETED:
            payload["scene_count"] = len(job.scenes or [])
            return cls(kind=JobEventKind.COMPLETED, revision=job.revision, payload=payload)
        if job.status is JobStatus.FAILED:
            payload["error"] = job.error
            return cls(kind=JobEventKind.FAILED, revision=job.revision, payload=payload)
        raise ValueError(f"job {job.project_id} is still running")

    @classmethod
    def heartbeat(cls, revision: int) -> JobEvent:
        return cls(kind=JobEventKind.HEARTBEAT, revision=revision)


def scenes_to_dicts(scenes: list[Scene]) -> list[dict[str, Any]]:
    return [asdict(scene) for scene in scenes]
