from dataclasses import dataclass, field
from typing import Any

DEFAULT_DELAY_BETWEEN_SCENES_MS = 30_000
DEFAULT_PACING = 35            # target words per scene
MIN_PACING = 10
MAX_PACING = 120


@dataclass
class CharacterInfo:
    name: str
    characteristic: str | None = None   # physical trait the image must show
    context: str | None = None          # role in the story


@dataclass
class CharacterReference(CharacterInfo):
    base64_image: str = ""
    mime_type: str = "image/png"


@dataclass
class VisualParams:
    image_style: str
    restriction_prompt: str = ""
    character_references: list[CharacterReference] = field(default_factory=list)
    all_characters_info: list[CharacterInfo] = field(default_factory=list)


@dataclass
class PacingParams:
    pacing: int = DEFAULT_PACING
    delay_between_scenes_ms: int = DEFAULT_DELAY_BETWEEN_SCENES_MS


@dataclass
class GenerationRequest:
    script_or_srt_content: str
    is_srt: bool
    visual: VisualParams
    pacing: PacingParams = field(default_factory=PacingParams)
    project_id: str | None = None
    title: str | None = None

    def input_snapshot(self) -> dict[str, Any]:
        """Persistable copy of the request; reference images are reduced to metadata."""
        return {
            "all_characters_info": [
                {"name": c.name, "characteristic": c.characteristic, "context": c.context}
                for c in self.visual.all_characters_info
            ],
            "character_references": [
                {
                    "name": c.name,
                    "mime_type": c.mime_type,
                    "characteristic": c.characteristic,
                    "context": c.context,
                    "has_reference_image": True,
                }
                for c in self.visual.character_references
            ],
            "script_or_srt_content": self.script_or_srt_content,
            "is_srt": self.is_srt,
            "image_style": self.visual.image_style,
            "restriction_prompt": self.visual.restriction_prompt,
            "delay_between_scenes": self.pacing.delay_between_scenes_ms,
            "pacing": self.pacing.pacing,
        }
