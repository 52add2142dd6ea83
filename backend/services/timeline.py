"""
Timeline math for video export: audio-driven duration rescaling, the fixed
frame clock, active-scene lookup and Ken Burns pan/zoom rectangles.

Pure functions and small value types only; the compositor owns all I/O.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, replace
from typing import Iterator, Sequence

from models.scene import Scene

FRAME_RATE = 30
ZOOM_FACTOR = 1.2
MIN_RESCALE_TOTAL_SECONDS = 0.1    # below this the original timing is kept as-is
RESIDUE_TOLERANCE_SECONDS = 0.001
RENDER_PROGRESS_START = 10
RENDER_PROGRESS_SPAN = 85          # render maps onto 10..95 %


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def covers(self, width: float, height: float, *, tolerance: float = 1e-6) -> bool:
        """True when this rectangle fully contains the ``width`` x ``height`` frame at the origin."""
        return (
            self.x <= tolerance
            and self.y <= tolerance
            and self.right >= width - tolerance
            and self.bottom >= height - tolerance
        )

    def lerp(self, other: Rect, t: float) -> Rect:
        return Rect(
            x=self.x + (other.x - self.x) * t,
            y=self.y + (other.y - self.y) * t,
            width=self.width + (other.width - self.width) * t,
            height=self.height + (other.height - self.height) * t,
        )


@dataclass(frozen=True)
class KenBurnsTransform:
    source: Rect      # always the full image
    start: Rect       # destination rectangle on the canvas at scene start
    end: Rect         # ... and at scene end
    zoom_in: bool

    def at(self, progress: float) -> Rect:
        if progress <= 0:
            return self.start
        if progress >= 1:
            return self.end
        return self.start.lerp(self.end, progress)


def _max_offset(scaled: float, canvas: float) -> float:
    return max(0.0, (scaled - canvas) / 2)


def compute_ken_burns(
    img_width: int,
    img_height: int,
    canvas_width: int,
    canvas_height: int,
    rng: random.Random | None = None,
) -> KenBurnsTransform:
    """
    Pick a random zoom direction and pan bias for one image.

    The image is cover-fit to the canvas, then zoomed between 1.0x and 1.2x
    of that fit. Pan bias is drawn in [-0.5, 0.5) per axis and mirrored
    between start and end so the motion crosses the frame centre. Both
    destination rectangles cover the canvas.
    """
    if img_width <= 0 or img_height <= 0:
        raise ValueError(f"image has no pixels ({img_width}x{img_height})")
    rng = rng or random.Random()
    img_aspect = img_width / img_height
    canvas_aspect = canvas_width / canvas_height
    fit = canvas_height / img_height if img_aspect > canvas_aspect else canvas_width / img_width

    zoom_in = rng.random() > 0.5
    start_scale = fit if zoom_in else fit * ZOOM_FACTOR
    end_scale = fit * ZOOM_FACTOR if zoom_in else fit
    pan_x = rng.random() - 0.5
    pan_y = rng.random() - 0.5

    start_w, start_h = img_width * start_scale, img_height * start_scale
    off_x, off_y = _max_offset(start_w, canvas_width), _max_offset(start_h, canvas_height)
    start = Rect(-(off_x + pan_x * off_x), -(off_y + pan_y * off_y), start_w, start_h)

    end_w, end_h = img_width * end_scale, img_height * end_scale
    off_x, off_y = _max_offset(end_w, canvas_width), _max_offset(end_h, canvas_height)
    end = Rect(-(off_x - pan_x * off_x), -(off_y - pan_y * off_y), end_w, end_h)

    return KenBurnsTransform(
        source=Rect(0, 0, img_width, img_height),
        start=start,
        end=end,
        zoom_in=zoom_in,
    )


def rescale_durations(durations: Sequence[float], audio_seconds: float) -> list[float]:
    """
    Stretch ``durations`` so they sum to ``audio_seconds``.

    Rounding residue goes to the last entry. Totals of 0.1 s or less are
    returned unchanged.
    """
    scaled = list(durations)
    original_total = sum(scaled)
    if not scaled or original_total <= MIN_RESCALE_TOTAL_SECONDS:
        return scaled
    factor = audio_seconds / original_total
    scaled = [d * factor for d in scaled]
    residue = audio_seconds - sum(scaled)
    if abs(residue) > RESIDUE_TOLERANCE_SECONDS:
        scaled[-1] += residue
    return scaled


def rescale_to_audio(scenes: Sequence[Scene], audio_seconds: float) -> list[Scene]:
    durations = rescale_durations([s.duration_seconds for s in scenes], audio_seconds)
    return [replace(scene, duration_seconds=d) for scene, d in zip(scenes, durations)]


def scene_start_times(durations: Sequence[float]) -> list[float]:
    starts: list[float] = []
    elapsed = 0.0
    for d in durations:
        starts.append(elapsed)
        elapsed += d
    return starts


def frame_times(total_seconds: float, fps: int = FRAME_RATE) -> Iterator[float]:
    """Frame ``i`` lands at ``i / fps``; the clock stops once it reaches ``total_seconds``."""
    i = 0
    while True:
        t = i / fps
        if t >= total_seconds:
            return
        yield t
        i += 1


def frame_count(total_seconds: float, fps: int = FRAME_RATE) -> int:
    return max(0, math.ceil(total_seconds * fps - 1e-9))


def scene_progress(elapsed: float, scene_start: float, duration: float) -> float:
    if duration <= RESIDUE_TOLERANCE_SECONDS:
        return 1.0
    return min(1.0, max(0.0, (elapsed - scene_start) / duration))


def render_percent(elapsed: float, total_seconds: float) -> int:
    return RENDER_PROGRESS_START + math.floor((elapsed / total_seconds) * RENDER_PROGRESS_SPAN)


class ActiveSceneCursor:
    """Tracks the scene on screen for a non-decreasing clock. The index never moves backwards."""

    def __init__(self, start_times: Sequence[float]) -> None:
        if not start_times:
            raise ValueError("timeline has no scenes")
        self._starts = list(start_times)
        self.index = 0

    def advance(self, elapsed: float) -> int:
        while self.index < len(self._starts) - 1 and elapsed >= self._starts[self.index + 1]:
            self.index += 1
        return self.index
