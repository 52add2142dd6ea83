"""Turn free-form script text into timed scenes via the external model."""

from __future__ import annotations

import logging

from models.scene import Scene, display_duration, reading_duration
from services.errors import EmptySegmentation
from services.gemini_client import StoryboardModel

logger = logging.getLogger(__name__)


def scenes_from_narrations(narrations: list[str]) -> list[Scene]:
    scenes: list[Scene] = []
    for narration in (n.strip() for n in narrations):
        if not narration:
            continue
        seconds = reading_duration(narration)
        scenes.append(
            Scene(
                scene_number=len(scenes) + 1,
                narration=narration,
                duration_seconds=float(seconds),
                duration=display_duration(seconds),
            )
        )
    return scenes


async def segment(script: str, target_words: int, model: StoryboardModel) -> list[Scene]:
    """
    Ask the model to cut ``script`` into scene narrations and time them at the reading rate.

    Raises ``EmptySegmentation`` when the model yields no scene; model errors
    propagate as ``ExternalCallFailed``.
    """
    narrations = await model.split_script(script, target_words)
    scenes = scenes_from_narrations(narrations)
    if not scenes:
        raise EmptySegmentation(
            "No scene could be identified in the script. The model may have failed to process the text."
        )
    logger.info("[narrative_segmenter] %d scenes at target %d words/scene", len(scenes), target_words)
    return scenes
