"""Domain errors raised by the storyboard pipeline and the video compositor."""


class StoryboardError(Exception):
    """Base class for every error the pipeline raises on purpose."""


class SegmentationEmpty(StoryboardError):
    """No scene could be derived from the input. Fatal for the whole job."""


# Name used by the narrative segmenter contract.
EmptySegmentation = SegmentationEmpty


class EnrichmentDegraded(StoryboardError):
    """A single scene's description or image failed and was replaced by a fallback."""

    def __init__(self, scene_number: int, stage: str, reason: str) -> None:
        super().__init__(f"scene {scene_number}: {stage} degraded ({reason})")
        self.scene_number = scene_number
        self.stage = stage
        self.reason = reason


class ExternalCallFailed(StoryboardError):
    """The external text/image model failed or returned nothing usable."""


class JobNotFound(StoryboardError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class JobAccessDenied(StoryboardError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Access denied to job: {job_id}")
        self.job_id = job_id


class ProjectNotFound(StoryboardError):
    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project not found: {project_id}")
        self.project_id = project_id


class CompositionAborted(StoryboardError):
    """Image/audio decode or encoder failure. Fatal to one composition only."""


class CodecUnavailable(CompositionAborted):
    """No supported container/codec pair could be opened."""


class NoDataCaptured(CompositionAborted):
    """The encoder ran but produced no output."""


class PollTimeout(StoryboardError):
    """A remote caller waited past the absolute ceiling for a job result."""
