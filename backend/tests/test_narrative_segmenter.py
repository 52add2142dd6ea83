import pytest

from conftest import FakeStoryboardModel
from services import narrative_segmenter
from services.errors import EmptySegmentation, ExternalCallFailed, SegmentationEmpty
from services.gemini_client import MockStoryboardModel, build_split_prompt, mentions


@pytest.mark.asyncio
async def test_segment_times_scenes_at_reading_rate() -> None:
    model = FakeStoryboardModel([" ".join(["word"] * 25), "short one", "   "])
    scenes = await narrative_segmenter.segment("ignored", 35, model)
    assert [s.scene_number for s in scenes] == [1, 2]
    assert scenes[0].duration_seconds == 10.0
    assert scenes[0].duration == "10 seconds"
    assert scenes[1].duration_seconds == 1.0
    assert scenes[1].duration == "1 second"


@pytest.mark.asyncio
async def test_zero_scenes_raises_empty_segmentation() -> None:
    with pytest.raises(EmptySegmentation):
        await narrative_segmenter.segment("text", 35, FakeStoryboardModel([]))
    assert EmptySegmentation is SegmentationEmpty


@pytest.mark.asyncio
async def test_external_failure_propagates() -> None:
    model = FakeStoryboardModel(split_error=ExternalCallFailed("quota"))
    with pytest.raises(ExternalCallFailed):
        await narrative_segmenter.segment("text", 35, model)


@pytest.mark.asyncio
async def test_mock_model_splits_on_sentences() -> None:
    scenes = await narrative_segmenter.segment("One. Two! Three? Four. Five.", 35, MockStoryboardModel())
    assert [s.narration for s in scenes] == ["One.", "Two!", "Three?", "Four."]


@pytest.mark.parametrize(
    ("target", "register"),
    [(15, "FAST PACE"), (25, "FAST PACE"), (35, "STANDARD"), (50, "DOCUMENTARY PACE"), (120, "DOCUMENTARY PACE")],
)
def test_split_prompt_pacing_register(target: int, register: str) -> None:
    assert register in build_split_prompt("script", target)


def test_mentions_is_whole_word_and_case_insensitive() -> None:
    assert mentions("Ana", "then ANA runs")
    assert not mentions("Ana", "Banana bread")
    assert not mentions("  ", "anything")
