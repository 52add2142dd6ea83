"""Per-scene visual enrichment with local fallbacks so one bad scene never aborts a batch."""

from __future__ import annotations

import logging

from models.generation import VisualParams
from models.scene import Scene
from services.errors import EnrichmentDegraded
from services.gemini_client import StoryboardModel
from services.images import placeholder_image_url

logger = logging.getLogger(__name__)


def fallback_description(narration: str) -> str:
    return f"A cinematic scene showing: {narration}"


class VisualEnricher:
    """
    Wraps the external model for the two enrichment stages of a scene.

    ``describe`` and ``render`` never raise for model failures: they return a
    fallback value together with the ``EnrichmentDegraded`` that explains it.
    """

    def __init__(self, model: StoryboardModel) -> None:
        self._model = model

    async def describe(self, scene: Scene, visual: VisualParams) -> tuple[str, EnrichmentDegraded | None]:
        try:
            return await self._model.describe_scene(scene.narration, visual.all_characters_info), None
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "[visual_enrichment] Description failed for scene %d; using narration fallback: %s",
                scene.scene_number,
                exc,
                exc_info=True,
            )
            return fallback_description(scene.narration), EnrichmentDegraded(scene.scene_number, "description", str(exc))

    async def render(self, scene: Scene, visual: VisualParams) -> tuple[str, EnrichmentDegraded | None]:
        try:
            return await self._model.generate_image(scene.visual_description, visual), None
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "[visual_enrichment] Image failed for scene %d; using placeholder: %s",
                scene.scene_number,
                exc,
                exc_info=True,
            )
            return placeholder_image_url(), EnrichmentDegraded(scene.scene_number, "image", str(exc))

    async def regenerate_image(self, visual_description: str, visual: VisualParams) -> str:
        """Single-image regeneration; errors propagate to the caller."""
        return await self._model.generate_image(visual_description, visual)
