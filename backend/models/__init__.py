from .generation import (
    CharacterInfo,
    CharacterReference,
    GenerationRequest,
    PacingParams,
    VisualParams,
)
from .job import Job, JobEvent, JobEventKind, JobSnapshot, JobStatus
from .project import Project, ProjectStatus
from .scene import READING_WORDS_PER_MINUTE, Scene, SceneGroup, TimedLine

__all__ = [
    "Scene",
    "SceneGroup",
    "TimedLine",
    "READING_WORDS_PER_MINUTE",
    "Job",
    "JobEvent",
    "JobEventKind",
    "JobSnapshot",
    "JobStatus",
    "Project",
    "ProjectStatus",
    "CharacterInfo",
    "CharacterReference",
    "GenerationRequest",
    "PacingParams",
    "VisualParams",
]
