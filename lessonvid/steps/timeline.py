"""Timeline allocation: map visual segments onto the narration clock.

Two modes exist. When any segment carries a stored ``start_time`` or
``end_time`` every stored value is used verbatim (the last end is stretched
to cover the narration). Otherwise the narration is split in proportion to
each segment's caption length, or evenly when no segment has caption text.

Intervals are half-open: ``t == end`` belongs to the next segment.
"""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass
from functools import cached_property
from typing import Any, List, Optional, Sequence, Tuple

from ..config import MIN_CAPTION_WEIGHT
from ..interfaces.session import RenderSetupError, VisualSegment


@dataclass(frozen=True, slots=True)
class TimelineSlot:
    index: int
    start: float
    end: float
    segment: VisualSegment

    @property
    def duration(self) -> float:
        return self.end - self.start

    def contains(self, t: float) -> bool:
        return self.start <= t < self.end


@dataclass(frozen=True)
class Timeline:
    slots: Tuple[TimelineSlot, ...]
    total_duration: float
    stored_timing: bool = False

    def __len__(self) -> int:
        return len(self.slots)

    def intervals(self) -> List[Tuple[float, float]]:
        return [(slot.start, slot.end) for slot in self.slots]

    def active_index(self, t: float) -> int:
        """Return the index of the slot shown at ``t``.

        Falls back to an even-distribution estimate when no interval matches,
        which happens at the tail through float rounding or in gaps left by
        stored timings.
        """
        count = len(self.slots)
        if count == 0:
            raise IndexError("timeline has no slots")
        idx = bisect_right(self._starts, t) - 1
        if 0 <= idx < count and self.slots[idx].contains(t):
            return idx
        # Unordered or zero-length stored timings
        for slot in self.slots:
            if slot.contains(t):
                return slot.index
        return even_index(t, self.total_duration, count)

    @cached_property
    def _starts(self) -> List[float]:
        return [slot.start for slot in self.slots]

    def active_slot(self, t: float) -> TimelineSlot:
        return self.slots[self.active_index(t)]


def even_index(t: float, total_duration: float, count: int) -> int:
    """Index an evenly split timeline of ``count`` slots would show at ``t``."""
    if count <= 0:
        raise IndexError("count must be positive")
    if total_duration <= 0:
        return 0
    per_slot = total_duration / count
    return max(0, min(int(t // per_slot), count - 1))


def caption_weights(segments: Sequence[VisualSegment], floor: int = MIN_CAPTION_WEIGHT) -> Optional[List[float]]:
    """Return per-segment weights, or ``None`` when no segment has caption text."""
    lengths = [len((seg.caption_text or "").strip()) for seg in segments]
    if not any(lengths):
        return None
    return [float(max(length, floor)) for length in lengths]


def _stored_slots(segments: Sequence[VisualSegment], total_duration: float) -> List[TimelineSlot]:
    slots = [
        TimelineSlot(index=i, start=float(seg.start_time), end=float(seg.end_time), segment=seg)
        for i, seg in enumerate(segments)
    ]
    last = slots[-1]
    slots[-1] = TimelineSlot(
        index=last.index,
        start=last.start,
        end=max(last.end, total_duration),
        segment=last.segment,
    )
    return slots


def _distributed_slots(segments: Sequence[VisualSegment], total_duration: float) -> List[TimelineSlot]:
    weights = caption_weights(segments)
    if weights is None:
        weights = [1.0] * len(segments)
    total_weight = sum(weights)
    slots: List[TimelineSlot] = []
    cursor = 0.0
    acc = 0.0
    for i, (seg, weight) in enumerate(zip(segments, weights)):
        acc += weight
        # Last end is pinned so rounding never leaves a gap at the tail
        end = total_duration if i == len(segments) - 1 else (acc * total_duration) / total_weight
        slots.append(TimelineSlot(index=i, start=cursor, end=end, segment=seg))
        cursor = end
    return slots


def allocate(
    segments: Sequence[VisualSegment],
    total_duration: float,
    *,
    placeholder: Any = None,
) -> Timeline:
    """Resolve ``segments`` into ordered ``[start, end)`` slots over the narration.

    With no segments the whole duration is bound to ``placeholder``; a missing
    placeholder in that case is a setup error.
    """
    if total_duration is None or total_duration <= 0:
        raise RenderSetupError(f"total duration must be positive, got {total_duration!r}")
    total_duration = float(total_duration)

    if not segments:
        if placeholder is None:
            raise RenderSetupError("no visual segments and no placeholder to show")
        seg = VisualSegment(image_payload=placeholder)
        return Timeline(
            slots=(TimelineSlot(index=0, start=0.0, end=total_duration, segment=seg),),
            total_duration=total_duration,
        )

    stored = any(seg.has_stored_timing for seg in segments)
    if stored:
        slots = _stored_slots(segments, total_duration)
    else:
        slots = _distributed_slots(segments, total_duration)
    return Timeline(slots=tuple(slots), total_duration=total_duration, stored_timing=stored)


__all__ = [
    "TimelineSlot",
    "Timeline",
    "allocate",
    "caption_weights",
    "even_index",
]
