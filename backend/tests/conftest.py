from __future__ import annotations

import pytest

from models.generation import CharacterInfo, GenerationRequest, PacingParams, VisualParams
from services.errors import ExternalCallFailed
from services.images import mock_image_url


class FakeStoryboardModel:
    """Scriptable stand-in for the external text/image model."""

    is_mock = False

    def __init__(
        self,
        narrations: list[str] | None = None,
        *,
        fail_describe: set[str] | None = None,
        fail_image: set[str] | None = None,
        split_error: Exception | None = None,
    ) -> None:
        self.narrations = narrations if narrations is not None else ["The hero wakes up.", "The hero leaves home."]
        self.fail_describe = fail_describe or set()
        self.fail_image = fail_image or set()
        self.split_error = split_error
        self.calls: list[tuple[str, str]] = []

    async def split_script(self, script: str, target_words: int) -> list[str]:
        self.calls.append(("split", script))
        if self.split_error is not None:
            raise self.split_error
        return list(self.narrations)

    async def describe_scene(self, narration: str, characters: list[CharacterInfo]) -> str:
        self.calls.append(("describe", narration))
        if narration in self.fail_describe:
            raise ExternalCallFailed("description quota exceeded")
        return f"Visual for: {narration}"

    async def generate_image(self, visual_description: str, visual: VisualParams) -> str:
        self.calls.append(("image", visual_description))
        if any(marker in visual_description for marker in self.fail_image):
            raise ExternalCallFailed("image safety filter")
        return mock_image_url()


def make_request(
    content: str = "The hero wakes up. The hero leaves home.",
    *,
    is_srt: bool = False,
    delay_ms: int = 0,
    pacing: int = 35,
    project_id: str | None = None,
) -> GenerationRequest:
    return GenerationRequest(
        script_or_srt_content=content,
        is_srt=is_srt,
        visual=VisualParams(image_style="ink sketch"),
        pacing=PacingParams(pacing=pacing, delay_between_scenes_ms=delay_ms),
        project_id=project_id,
    )


@pytest.fixture
def fake_model() -> FakeStoryboardModel:
    return FakeStoryboardModel()


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
