"""Tests for mapping visual segments onto the narration clock."""

from __future__ import annotations

import pytest

from lessonvid.interfaces.session import RenderSetupError, VisualSegment
from lessonvid.steps.timeline import allocate, caption_weights, even_index


def _segments(*texts: str) -> list[VisualSegment]:
    return [VisualSegment(image_payload=f"img{i}", caption_text=t) for i, t in enumerate(texts)]


def _assert_covers(intervals: list[tuple[float, float]], total: float) -> None:
    assert intervals[0][0] == 0.0
    assert intervals[-1][1] == total
    for (_, prev_end), (start, end) in zip(intervals, intervals[1:]):
        assert start == prev_end
        assert end >= start


def test_weighted_by_caption_length() -> None:
    timeline = allocate(_segments("a" * 10, "b" * 30, "c" * 10), 10.0)
    durations = [end - start for start, end in timeline.intervals()]
    assert durations == pytest.approx([2.0, 6.0, 2.0])
    _assert_covers(timeline.intervals(), 10.0)
    assert not timeline.stored_timing


def test_equal_captions_split_evenly() -> None:
    timeline = allocate(_segments("x" * 12, "y" * 12, "z" * 12), 9.0)
    assert timeline.intervals() == [(0.0, 3.0), (3.0, 6.0), (6.0, 9.0)]
    assert timeline.active_index(4.9) == 1
    assert timeline.active_index(5.1) == 1
    assert timeline.active_index(6.0) == 2


def test_boundary_belongs_to_next_segment() -> None:
    timeline = allocate(_segments("x" * 12, "y" * 12), 4.0)
    assert timeline.active_index(0.0) == 0
    assert timeline.active_index(2.0) == 1
    assert timeline.active_index(3.999) == 1


def test_tail_falls_back_to_last_segment() -> None:
    timeline = allocate(_segments("x", "y"), 4.0)
    assert timeline.active_index(4.0) == 1
    assert timeline.active_index(100.0) == 1


def test_allocation_is_idempotent() -> None:
    segments = _segments("first caption", "second", "", "a much longer third caption text")
    first = allocate(segments, 17.3)
    second = allocate(segments, 17.3)
    assert first.intervals() == second.intervals()
    _assert_covers(first.intervals(), 17.3)


def test_short_captions_get_minimum_weight() -> None:
    assert caption_weights(_segments("ab", "", "abcdefgh")) == [5.0, 5.0, 8.0]


def test_no_captions_means_equal_slices() -> None:
    timeline = allocate(_segments("", "  ", ""), 6.0)
    assert timeline.intervals() == [(0.0, 2.0), (2.0, 4.0), (4.0, 6.0)]


def test_stored_timing_is_taken_verbatim() -> None:
    segments = [
        VisualSegment(image_payload="a", caption_text="a" * 50),
        VisualSegment(image_payload="b", caption_text="b", start_time=2.0, end_time=5.0),
        VisualSegment(image_payload="c", caption_text="c" * 80),
    ]
    timeline = allocate(segments, 12.0)
    assert timeline.stored_timing
    assert timeline.intervals() == [(0.0, 0.0), (2.0, 5.0), (0.0, 12.0)]


def test_stored_last_end_stretches_to_duration() -> None:
    segments = [
        VisualSegment(image_payload="a", start_time=0.0, end_time=3.0),
        VisualSegment(image_payload="b", start_time=3.0, end_time=7.5),
    ]
    timeline = allocate(segments, 9.0)
    assert timeline.intervals() == [(0.0, 3.0), (3.0, 9.0)]
    longer = allocate(segments, 6.0)
    assert longer.intervals()[-1] == (3.0, 7.5)


def test_gap_in_stored_timing_uses_even_estimate() -> None:
    segments = [
        VisualSegment(image_payload="a", start_time=0.0, end_time=2.0),
        VisualSegment(image_payload="b", start_time=3.0, end_time=10.0),
    ]
    timeline = allocate(segments, 10.0)
    assert timeline.active_index(2.5) == 0
    assert timeline.active_index(3.0) == 1


def test_zero_segments_use_placeholder() -> None:
    timeline = allocate([], 5.0, placeholder="placeholder.png")
    assert timeline.intervals() == [(0.0, 5.0)]
    assert timeline.active_slot(2.0).segment.image_payload == "placeholder.png"


def test_zero_segments_without_placeholder_is_fatal() -> None:
    with pytest.raises(RenderSetupError):
        allocate([], 5.0)


@pytest.mark.parametrize("duration", [0.0, -1.0])
def test_duration_must_be_positive(duration: float) -> None:
    with pytest.raises(RenderSetupError):
        allocate(_segments("a"), duration)


def test_even_index_clamps() -> None:
    assert even_index(0.0, 9.0, 3) == 0
    assert even_index(3.0, 9.0, 3) == 1
    assert even_index(9.0, 9.0, 3) == 2
    assert even_index(-1.0, 9.0, 3) == 0
