"""The multi-step storyboard generation run shared by background jobs and the synchronous route."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Awaitable, Callable

from models.generation import GenerationRequest
from models.scene import Scene, round_half_up
from services import narrative_segmenter, subtitle_segmenter
from services.errors import EnrichmentDegraded, SegmentationEmpty, StoryboardError
from services.gemini_client import StoryboardModel
from services.visual_enrichment import VisualEnricher

logger = logging.getLogger(__name__)

FAILURE_SENTINEL = "__MOCK_FAIL__"
COMPLETED_MESSAGE = "Storyboard complete!"

ProgressCallback = Callable[[str], Awaitable[None]]


async def _ignore_progress(_message: str) -> None:
    return None


class StoryboardPipeline:
    def __init__(
        self,
        model: StoryboardModel,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._model = model
        self._enricher = VisualEnricher(model)
        self._sleep = sleep

    @property
    def enricher(self) -> VisualEnricher:
        return self._enricher

    async def segment(self, request: GenerationRequest, on_progress: ProgressCallback) -> list[Scene]:
        if request.is_srt:
            await on_progress("Parsing and grouping scenes from the subtitle file with the selected pacing...")
            scenes = subtitle_segmenter.segment(request.script_or_srt_content, request.pacing.pacing)
            if not scenes:
                raise SegmentationEmpty("No valid scene was found in the subtitle file. Check the file format.")
            return scenes
        await on_progress("Splitting the script into scenes with the selected pacing...")
        return await narrative_segmenter.segment(request.script_or_srt_content, request.pacing.pacing, self._model)

    async def run(self, request: GenerationRequest, on_progress: ProgressCallback | None = None) -> list[Scene]:
        """
        Segment the input, then describe and illustrate every scene in order.

        Scenes are processed strictly one after another with the configured
        pause between them. Description and image failures degrade a single
        scene; segmentation failures propagate and end the run.
        """
        emit = on_progress or _ignore_progress
        if self._model.is_mock and FAILURE_SENTINEL in request.script_or_srt_content:
            raise StoryboardError("Simulated generation failure (mock).")

        pending = await self.segment(request, emit)
        total = len(pending)
        delay_seconds = request.pacing.delay_between_scenes_ms / 1000
        degraded: list[EnrichmentDegraded] = []
        completed: list[Scene] = []

        for index, scene in enumerate(pending):
            await emit(f"Writing the description for scene {index + 1} of {total}...")
            description, problem = await self._enricher.describe(scene, request.visual)
            if problem:
                degraded.append(problem)
            scene = replace(scene, visual_description=description)

            await emit(f"Generating the image for scene {index + 1} of {total}...")
            image_url, problem = await self._enricher.render(scene, request.visual)
            if problem:
                degraded.append(problem)
                await emit(f"Image generation failed for scene {scene.scene_number}. Using a placeholder.")
            completed.append(replace(scene, image_url=image_url))

            if index < total - 1 and delay_seconds > 0:
                await emit(
                    f"Scene {index + 1} done. Pausing {round_half_up(delay_seconds)}s to stay within the API quota..."
                )
                await self._sleep(delay_seconds)
                await emit(f"Resuming with scene {index + 2} of {total}...")

        if degraded:
            logger.warning(
                "[pipeline] Storyboard finished with %d degraded step(s): %s",
                len(degraded),
                "; ".join(str(d) for d in degraded),
            )
        await emit(COMPLETED_MESSAGE)
        return completed
