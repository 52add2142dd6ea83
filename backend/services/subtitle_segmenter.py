"""Group timed SRT subtitle lines into storyboard scenes."""

from __future__ import annotations

import logging
import re

from models.scene import (
    MIN_PRECISE_DURATION,
    Scene,
    SceneGroup,
    TimedLine,
    count_words,
    display_duration,
)

logger = logging.getLogger(__name__)

MAX_PAUSE_SECONDS = 1.5

_TIMESTAMP_RE = re.compile(r"(\d{2}:\d{2}:\d{2},\d{3})\s*-->\s*(\d{2}:\d{2}:\d{2},\d{3})")
_TAG_RE = re.compile(r"<[^>]*>?")
_BLOCK_SPLIT_RE = re.compile(r"\n\s*\n+")


def parse_timestamp(timestamp: str) -> float:
    """``HH:MM:SS,mmm`` -> seconds."""
    hours, minutes, rest = timestamp.split(":")
    seconds, millis = rest.split(",")
    return int(hours) * 3600 + int(minutes) * 60 + int(seconds) + int(millis) / 1000


def parse_srt(content: str) -> list[TimedLine]:
    """
    Parse SRT text into timed lines.

    The timestamp is expected on the line after the cue index; a block whose
    first line already carries the timestamp (index omitted) is accepted too.
    Blocks without a timestamp or without text are dropped.
    """
    timed_lines: list[TimedLine] = []
    normalized = content.replace("\r\n", "\n").strip()
    if not normalized:
        return timed_lines

    for block in _BLOCK_SPLIT_RE.split(normalized):
        lines = block.strip().split("\n")
        match = None
        text_start = 0
        for idx in (1, 0):
            if idx < len(lines):
                match = _TIMESTAMP_RE.search(lines[idx])
                if match:
                    text_start = idx + 1
                    break
        if match is None:
            continue

        text = " ".join(line.strip() for line in lines[text_start:]).strip()
        text = _TAG_RE.sub("", text).strip()
        if not text:
            continue

        timed_lines.append(
            TimedLine(
                start_time=parse_timestamp(match.group(1)),
                end_time=parse_timestamp(match.group(2)),
                text=text,
            )
        )
    return timed_lines


def group_lines(
    timed_lines: list[TimedLine],
    max_words_per_scene: int,
    *,
    max_pause_seconds: float = MAX_PAUSE_SECONDS,
) -> list[SceneGroup]:
    if not timed_lines:
        return []

    groups: list[SceneGroup] = []
    first = timed_lines[0]
    current = SceneGroup(narration=first.text, start_time=first.start_time, end_time=first.end_time)
    current_words = count_words(first.text)

    for line in timed_lines[1:]:
        line_words = count_words(line.text)
        pause = line.start_time - current.end_time
        if pause > max_pause_seconds or current_words + line_words > max_words_per_scene:
            groups.append(current)
            current = SceneGroup(narration=line.text, start_time=line.start_time, end_time=line.end_time)
            current_words = line_words
        else:
            current.narration = f"{current.narration} {line.text}"
            current.end_time = line.end_time
            current_words += line_words

    groups.append(current)
    return groups


def finalize_groups(groups: list[SceneGroup]) -> list[Scene]:
    """
    Turn groups into numbered scenes.

    Every scene but the last runs until the next scene starts, so silence
    between groups stays with the scene that precedes it.
    """
    scenes: list[Scene] = []
    for index, group in enumerate(groups):
        if index < len(groups) - 1:
            raw = groups[index + 1].start_time - group.start_time
        else:
            raw = group.end_time - group.start_time
        scenes.append(
            Scene(
                scene_number=index + 1,
                narration=group.narration,
                duration_seconds=max(MIN_PRECISE_DURATION, raw),
                duration=display_duration(raw),
            )
        )
    return scenes


def segment(subtitle_text: str, max_words_per_scene: int) -> list[Scene]:
    """Parse, group and time an SRT file. Returns ``[]`` for empty or unparsable input."""
    timed_lines = parse_srt(subtitle_text)
    scenes = finalize_groups(group_lines(timed_lines, max_words_per_scene))
    logger.info(
        "[subtitle_segmenter] %d timed lines -> %d scenes (max_words=%d)",
        len(timed_lines),
        len(scenes),
        max_words_per_scene,
    )
    return scenes
