import random

import pytest

from models.scene import Scene
from services import timeline
from services.timeline import (
    ActiveSceneCursor,
    Rect,
    compute_ken_burns,
    frame_count,
    frame_times,
    render_percent,
    rescale_durations,
    rescale_to_audio,
    scene_progress,
    scene_start_times,
)


def _scene(n: int, seconds: float) -> Scene:
    return Scene(scene_number=n, narration=f"s{n}", duration_seconds=seconds, duration="")


def test_rescale_ten_seconds_to_five_second_audio() -> None:
    scenes = [_scene(1, 3.0), _scene(2, 3.0), _scene(3, 4.0)]
    scaled = rescale_to_audio(scenes, 5.0)
    assert [s.duration_seconds for s in scaled] == pytest.approx([1.5, 1.5, 2.0])
    assert sum(s.duration_seconds for s in scaled) == pytest.approx(5.0, abs=1e-9)
    # originals untouched
    assert scenes[0].duration_seconds == 3.0


def test_rescale_sum_matches_audio_for_awkward_ratios() -> None:
    durations = [1 / 3, 2 / 7, 5.123, 0.1]
    scaled = rescale_durations(durations, 7.77)
    assert sum(scaled) == pytest.approx(7.77, abs=1e-3)


def test_tiny_totals_are_not_rescaled() -> None:
    assert rescale_durations([0.05, 0.05], 10.0) == [0.05, 0.05]
    assert rescale_durations([], 10.0) == []


def test_scene_start_times() -> None:
    assert scene_start_times([1.0, 2.5, 0.5]) == pytest.approx([0.0, 1.0, 3.5])


def test_frame_clock_is_thirty_fps_and_stops_at_total() -> None:
    times = list(frame_times(1.0))
    assert len(times) == 30
    assert times[0] == 0.0
    assert times[1] == pytest.approx(1 / 30)
    assert times[-1] < 1.0
    assert frame_count(1.0) == 30
    assert list(frame_times(0.01)) == [0.0]


def test_cursor_only_moves_forward() -> None:
    cursor = ActiveSceneCursor([0.0, 1.0, 2.0])
    assert cursor.advance(0.5) == 0
    assert cursor.advance(1.0) == 1
    assert cursor.advance(2.7) == 2
    assert cursor.advance(0.2) == 2


def test_cursor_skips_scenes_shorter_than_a_frame() -> None:
    cursor = ActiveSceneCursor(scene_start_times([1.0, 0.01, 1.0]))
    assert cursor.advance(1.02) == 2


def test_cursor_requires_scenes() -> None:
    with pytest.raises(ValueError):
        ActiveSceneCursor([])


def test_scene_progress_clamps_and_handles_zero_duration() -> None:
    assert scene_progress(1.5, 1.0, 1.0) == pytest.approx(0.5)
    assert scene_progress(5.0, 1.0, 1.0) == 1.0
    assert scene_progress(1.0, 1.0, 0.0) == 1.0


def test_render_percent_spans_10_to_95() -> None:
    assert render_percent(0.0, 10.0) == 10
    assert render_percent(5.0, 10.0) == 52
    assert render_percent(9.99, 10.0) <= 95


@pytest.mark.parametrize("seed", range(25))
@pytest.mark.parametrize("image_size", [(1024, 576), (800, 1200), (4000, 1000), (300, 300)])
def test_ken_burns_rectangles_cover_frame_and_stay_in_zoom_bounds(seed: int, image_size: tuple[int, int]) -> None:
    img_w, img_h = image_size
    canvas_w, canvas_h = 1280, 720
    kb = compute_ken_burns(img_w, img_h, canvas_w, canvas_h, random.Random(seed))

    fit = canvas_h / img_h if img_w / img_h > canvas_w / canvas_h else canvas_w / img_w
    for rect in (kb.start, kb.end):
        scale = rect.width / img_w
        assert fit - 1e-9 <= scale <= fit * timeline.ZOOM_FACTOR + 1e-9
        assert rect.height / img_h == pytest.approx(scale)
        assert rect.covers(canvas_w, canvas_h)

    start_scale, end_scale = kb.start.width / img_w, kb.end.width / img_w
    if kb.zoom_in:
        assert end_scale > start_scale
    else:
        assert start_scale > end_scale
    assert kb.source == Rect(0, 0, img_w, img_h)


@pytest.mark.parametrize("seed", range(10))
def test_ken_burns_interpolation_is_continuous_and_covering(seed: int) -> None:
    kb = compute_ken_burns(1920, 1080, 1280, 720, random.Random(seed))
    assert kb.at(0.0) == kb.start
    assert kb.at(1.0) == kb.end
    assert kb.at(2.0) == kb.end

    previous = kb.at(0.0)
    steps = 100
    for i in range(1, steps + 1):
        rect = kb.at(i / steps)
        assert rect.covers(1280, 720)
        assert abs(rect.width - previous.width) <= abs(kb.end.width - kb.start.width) / steps + 1e-6
        assert abs(rect.x - previous.x) <= abs(kb.end.x - kb.start.x) / steps + 1e-6
        previous = rect


def test_ken_burns_rejects_empty_image() -> None:
    with pytest.raises(ValueError):
        compute_ken_burns(0, 100, 1280, 720)
