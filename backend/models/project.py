from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

DEFAULT_PROJECT_TITLE = "Untitled project"


class ProjectStatus(str, Enum):
    DRAFT = "draft"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Project:
    id: str                                # uuid4 hex
    owner_id: str
    title: str = DEFAULT_PROJECT_TITLE
    status: ProjectStatus = ProjectStatus.DRAFT
    input: dict[str, Any] | None = None    # GenerationRequest.input_snapshot()
    result: dict[str, Any] | None = None   # {"scenes": [...]}
    last_error: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def scenes(self) -> list[dict[str, Any]]:
        if not self.result:
            return []
        return list(self.result.get("scenes") or [])
