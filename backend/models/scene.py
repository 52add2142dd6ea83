import math
from dataclasses import dataclass

READING_WORDS_PER_MINUTE = 150
MIN_PRECISE_DURATION = 0.1     # seconds; floor for rendering durations
MIN_DISPLAY_DURATION = 1       # seconds; floor for the human-readable label


@dataclass
class TimedLine:
    start_time: float          # seconds from start of the subtitle file
    end_time: float
    text: str                  # markup stripped, lines joined with spaces


@dataclass
class SceneGroup:
    narration: str
    start_time: float
    end_time: float


@dataclass
class Scene:
    scene_number: int          # 1-based, contiguous
    narration: str
    duration_seconds: float    # precise, used for rendering
    duration: str              # display label, e.g. "3 seconds"
    visual_description: str = ""
    image_url: str = ""        # data URL or http(s) URL


def count_words(text: str) -> int:
    return len(text.split())


def round_half_up(value: float) -> int:
    """Nearest integer with halves rounded up (2.5 -> 3), unlike ``round``."""
    return math.floor(value + 0.5)


def display_duration(seconds: float) -> str:
    whole = max(MIN_DISPLAY_DURATION, round_half_up(seconds))
    return f"{whole} second{'s' if whole > 1 else ''}"


def reading_duration(narration: str) -> int:
    """Whole seconds needed to read ``narration`` aloud at the fixed reading rate."""
    words = count_words(narration)
    return max(MIN_DISPLAY_DURATION, round_half_up(words / (READING_WORDS_PER_MINUTE / 60)))
