"""
External text/image model used for narrative segmentation and visual enrichment.

``GeminiStoryboardModel`` talks to Google Gemini/Imagen through ``google-genai``.
``MockStoryboardModel`` answers instantly with canned output; it is selected
with ``STORYBOARD_MOCK_MODE=1`` and used by the test-suite.
"""

from __future__ import annotations

import base64
import json
import logging
import re
from typing import Any, Protocol

from models.generation import CharacterInfo, CharacterReference, VisualParams
from services import config
from services.errors import ExternalCallFailed
from services.images import mock_image_url, to_data_url

logger = logging.getLogger(__name__)

FAST_PACING_MAX_WORDS = 25
DOCUMENTARY_PACING_MIN_WORDS = 50
MOCK_SCENE_LIMIT = 4
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")


class StoryboardModel(Protocol):
    is_mock: bool

    async def split_script(self, script: str, target_words: int) -> list[str]: ...

    async def describe_scene(self, narration: str, characters: list[CharacterInfo]) -> str: ...

    async def generate_image(self, visual_description: str, visual: VisualParams) -> str: ...


def mentions(name: str, text: str) -> bool:
    """Whole-word, case-insensitive match of a character name."""
    if not name.strip():
        return False
    return re.search(rf"\b{re.escape(name.strip())}\b", text, flags=re.IGNORECASE) is not None


def _pacing_rules(target_words: int) -> str:
    if target_words <= FAST_PACING_MAX_WORDS:
        return (
            "1. FAST PACE (shorts): scenes must be very short.\n"
            "2. Start a new scene at almost every sentence.\n"
            "3. Only merge fragments shorter than 5 words."
        )
    if target_words >= DOCUMENTARY_PACING_MIN_WORDS:
        return (
            "1. DOCUMENTARY PACE: long, contemplative scenes.\n"
            "2. Group sentences that form one complete thought or paragraph.\n"
            f"3. Aim for about {target_words} words per scene; never cut into loose sentences."
        )
    return (
        "1. STANDARD PACE: balance rhythm and comprehension.\n"
        "2. Group 2 or 3 short sentences that share the same visual topic.\n"
        f"3. Aim for about {target_words} words per scene."
    )


def build_split_prompt(script: str, target_words: int) -> str:
    return (
        "You are an experienced video script editor. Split the script below into scenes "
        "for a storyboard, following the requested pace strictly.\n\n"
        f"PACE RULES:\n{_pacing_rules(target_words)}\n\n"
        "ABSOLUTE RULE: do not summarize or rewrite. Use the original text exactly; only cut and group.\n\n"
        'Return only JSON: {"scenes": ["scene 1 text", "scene 2 text"]}\n'
        f"---\n{script}\n---"
    )


def build_description_prompt(narration: str, characters: list[CharacterInfo]) -> str:
    roster = "\n".join(
        f"- {c.name}{f': {c.characteristic}' if c.characteristic else ''}" for c in characters
    ) or "None"
    must_show = " ".join(
        f'When describing {c.name}, you MUST include: "{c.characteristic}".'
        for c in characters
        if c.characteristic and mentions(c.name, narration)
    )
    prompt = (
        "Write an objective, concrete visual description (40 to 70 words) of one storyboard "
        "scene inspired by the narration. Cover framing, lighting, colors, action or expression "
        "and setting. Avoid subjective words such as epic or dramatic. Use the exact names of "
        "defined characters. Answer with the description only.\n\n"
        f"Defined characters:\n{roster}\n"
    )
    if must_show:
        prompt += f"\nADDITIONAL RULES:\n{must_show}\n"
    return prompt + f'\nNarration:\n---\n"{narration}"\n---'


def build_image_prompt(visual_description: str, visual: VisualParams) -> str:
    traits = " ".join(
        f"For {c.name}:"
        + (f' required physical trait "{c.characteristic}".' if c.characteristic else "")
        + (f' role "{c.context}".' if c.context else "")
        for c in visual.all_characters_info
        if (c.characteristic or c.context) and mentions(c.name, visual_description)
    )
    prompt = f"STYLE: {visual.image_style}. SCENE: {visual_description}."
    if traits:
        prompt += f" DETAILS: {traits}"
    if visual.restriction_prompt.strip():
        prompt += f" NEGATIVE RULES / RESTRICTIONS: {visual.restriction_prompt.strip()}"
    return prompt


def build_reference_image_prompt(
    visual_description: str, visual: VisualParams, references: list[CharacterReference]
) -> str:
    identity = "\n".join(
        f"[IDENTITY REFERENCE: {c.name}] Use the image only for face, hair, clothing and identity; "
        "ignore its pose, background, lighting and camera angle."
        + (f' Visual detail: "{c.characteristic}".' if c.characteristic else "")
        + (f' Context: "{c.context}".' if c.context else "")
        for c in references
    )
    restriction = visual.restriction_prompt.strip()
    return (
        "TASK: generate a new cinematic 16:9 image.\n"
        f'1. SCENE (highest priority for composition and action): "{visual_description}"\n'
        f"2. CHARACTERS (keep identity, change the pose):\n{identity}\n"
        f"3. STYLE: {visual.image_style}. Do not copy the static composition of the references."
        + (f"\nNEGATIVE RULES / RESTRICTIONS: {restriction}" if restriction else "")
    )


class GeminiStoryboardModel:
    is_mock = False

    def __init__(
        self,
        api_key: str | None = None,
        *,
        client: Any | None = None,
        text_model: str | None = None,
        image_model: str | None = None,
        reference_image_model: str | None = None,
    ) -> None:
        if client is None:
            api_key = api_key or config.get_gemini_api_key()
            if not api_key:
                raise ExternalCallFailed("GEMINI_API_KEY is not set; cannot reach the generation model.")
            from google import genai  # noqa: PLC0415

            client = genai.Client(api_key=api_key)
        self._client = client
        self._text_model = text_model or config.get_text_model()
        self._image_model = image_model or config.get_image_model()
        self._reference_image_model = reference_image_model or config.get_reference_image_model()

    async def split_script(self, script: str, target_words: int) -> list[str]:
        from google.genai import types  # noqa: PLC0415

        schema = types.Schema(
            type=types.Type.OBJECT,
            properties={"scenes": types.Schema(type=types.Type.ARRAY, items=types.Schema(type=types.Type.STRING))},
            required=["scenes"],
        )
        try:
            response = await self._client.aio.models.generate_content(
                model=self._text_model,
                contents=build_split_prompt(script, target_words),
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=schema,
                ),
            )
        except Exception as exc:  # noqa: BLE001
            raise ExternalCallFailed(f"Script segmentation call failed: {exc}") from exc

        raw = (response.text or "").strip()
        if not raw:
            raise ExternalCallFailed("Empty response while splitting the script into scenes.")
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ExternalCallFailed(f"Segmentation response is not valid JSON: {exc}") from exc
        scenes = data.get("scenes") if isinstance(data, dict) else None
        return [s for s in (scenes or []) if isinstance(s, str) and s.strip()]

    async def describe_scene(self, narration: str, characters: list[CharacterInfo]) -> str:
        try:
            response = await self._client.aio.models.generate_content(
                model=self._text_model,
                contents=build_description_prompt(narration, characters),
            )
        except Exception as exc:  # noqa: BLE001
            raise ExternalCallFailed(f"Description call failed: {exc}") from exc
        text = (response.text or "").strip()
        if not text:
            raise ExternalCallFailed("Description call returned no text.")
        return text

    async def generate_image(self, visual_description: str, visual: VisualParams) -> str:
        references = [c for c in visual.character_references if mentions(c.name, visual_description)]
        if not references:
            return await self._generate_plain_image(visual_description, visual)
        return await self._generate_reference_image(visual_description, visual, references)

    async def _generate_plain_image(self, visual_description: str, visual: VisualParams) -> str:
        from google.genai import types  # noqa: PLC0415

        try:
            response = await self._client.aio.models.generate_images(
                model=self._image_model,
                prompt=f"Cinematic, high quality. {build_image_prompt(visual_description, visual)}",
                config=types.GenerateImagesConfig(
                    number_of_images=1,
                    output_mime_type="image/jpeg",
                    aspect_ratio="16:9",
                ),
            )
        except Exception as exc:  # noqa: BLE001
            raise ExternalCallFailed(f"Image call failed: {exc}") from exc

        for generated in response.generated_images or []:
            image = getattr(generated, "image", None)
            if image is not None and image.image_bytes:
                return to_data_url(image.image_bytes, "image/jpeg")
        raise ExternalCallFailed("Image generation returned no image.")

    async def _generate_reference_image(
        self, visual_description: str, visual: VisualParams, references: list[CharacterReference]
    ) -> str:
        from google.genai import types  # noqa: PLC0415

        parts = [
            types.Part.from_bytes(data=base64.b64decode(c.base64_image), mime_type=c.mime_type)
            for c in references
        ]
        parts.append(types.Part.from_text(text=build_reference_image_prompt(visual_description, visual, references)))
        try:
            response = await self._client.aio.models.generate_content(
                model=self._reference_image_model,
                contents=parts,
                config=types.GenerateContentConfig(response_modalities=["IMAGE", "TEXT"]),
            )
        except Exception as exc:  # noqa: BLE001
            raise ExternalCallFailed(f"Reference image call failed: {exc}") from exc

        candidates = response.candidates or []
        content_parts = (candidates[0].content.parts or []) if candidates and candidates[0].content else []
        for part in content_parts:
            if part.inline_data is not None and part.inline_data.data:
                return to_data_url(part.inline_data.data, part.inline_data.mime_type or "image/png")
        reason = next((p.text for p in content_parts if p.text), None)
        raise ExternalCallFailed(
            f"Image generation failed. Model said: {reason!r}" if reason else "Image generation failed: no image returned."
        )


class MockStoryboardModel:
    """Deterministic stand-in for the external model."""

    is_mock = True

    async def split_script(self, script: str, target_words: int) -> list[str]:
        parts = [p.strip() for p in _SENTENCE_SPLIT_RE.split(script) if p.strip()]
        return parts[:MOCK_SCENE_LIMIT]

    async def describe_scene(self, narration: str, characters: list[CharacterInfo]) -> str:
        return f"Mock visual: {narration[:80]}"

    async def generate_image(self, visual_description: str, visual: VisualParams) -> str:
        return mock_image_url()


def create_storyboard_model() -> StoryboardModel:
    if config.is_mock_mode():
        logger.info("[gemini_client] STORYBOARD_MOCK_MODE=1; using mock model.")
        return MockStoryboardModel()
    return GeminiStoryboardModel()
