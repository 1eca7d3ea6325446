"""Value types shared by every stage of a lesson render."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Sequence

import numpy as np

from ..config import (
    CAPTION_FONT_PX,
    CAPTION_TEXT_HEX,
    DEFAULT_SETTINGS,
    MUSIC_VOLUME,
    RenderSettings,
)

if TYPE_CHECKING:
    from ..steps.timeline import Timeline


class RenderError(Exception):
    """Base class for compositor failures surfaced to the caller."""


class RenderSetupError(RenderError):
    """Raised before encoding starts when the inputs cannot produce a video."""


class EncoderError(RenderError):
    """Raised when no video writer backend can be opened."""


class RenderCancelled(RenderError):
    """Raised after a caller-driven cancellation has torn the render down."""


class ZoomDirection(str, Enum):
    IN = "in"
    OUT = "out"


class CaptionPosition(str, Enum):
    TOP = "Top"
    CENTER = "Center"
    BOTTOM = "Bottom"


class CaptionSize(str, Enum):
    SMALL = "Small"
    MEDIUM = "Medium"
    LARGE = "Large"


class CaptionMode(str, Enum):
    OVERLAY = "Overlay"
    SUBTITLE_BAR = "Subtitle Bar"


class CaptionStyle(str, Enum):
    """Caption looks offered by the authoring app."""

    NONE = "None"
    VIRAL_STRIKE = "Viral (Strike)"
    VIRAL_CLEAN = "Viral (Clean)"
    VIRAL_BOX = "Viral (Box)"
    VIRAL_POP = "Viral (Pop)"
    OUTLINE = "Outline"
    CINEMATIC = "Cinematic"
    MODERN = "Modern"
    KARAOKE = "Karaoke"
    MINIMALIST = "Minimalist"
    NEWS_TICKER = "News Ticker"
    TYPEWRITER = "Typewriter"
    COMIC_BOOK = "Comic Book"
    NEON_GLOW = "Neon Glow"
    SUBTITLE = "Subtitle"
    HANDWRITTEN = "Handwritten"

    @classmethod
    def parse(cls, value: "str | CaptionStyle | None") -> "CaptionStyle":
        if isinstance(value, cls):
            return value
        try:
            return cls(value or cls.MODERN.value)
        except ValueError:
            return cls.MODERN


class MusicMode(str, Enum):
    CONTINUOUS = "Continuous"
    INTRO_OUTRO = "IntroOutro"


@dataclass(frozen=True, slots=True)
class VisualSegment:
    """One still image shown for an interval of the video.

    ``start_time`` and ``end_time`` of ``0`` mean the timing is unset.
    """

    image_payload: Any
    caption_text: str = ""
    start_time: float = 0.0
    end_time: float = 0.0
    zoom_direction: ZoomDirection = ZoomDirection.IN

    @property
    def has_stored_timing(self) -> bool:
        return self.start_time > 0 or self.end_time > 0


@dataclass(frozen=True, slots=True)
class WordTimestamp:
    word: str
    start_ms: float
    end_ms: float


@dataclass(frozen=True, slots=True)
class CaptionStyleConfig:
    style: CaptionStyle = CaptionStyle.MODERN
    position: CaptionPosition = CaptionPosition.BOTTOM
    size: CaptionSize = CaptionSize.MEDIUM
    text_color: str = CAPTION_TEXT_HEX
    background_color: str | None = None
    outline_color: str | None = None
    mode: CaptionMode = CaptionMode.OVERLAY

    @property
    def font_px(self) -> int:
        return CAPTION_FONT_PX.get(self.size.value, CAPTION_FONT_PX["Medium"])

    @property
    def effective_position(self) -> CaptionPosition:
        """Return the position, coercing Center to Bottom for the subtitle bar."""

        if self.mode is CaptionMode.SUBTITLE_BAR and self.position is CaptionPosition.CENTER:
            return CaptionPosition.BOTTOM
        return self.position


@dataclass(frozen=True, slots=True)
class MusicConfig:
    """Background music bed.

    ``track`` is a URL, a filesystem path or already-decoded float PCM.
    """

    track: Any = None
    mode: MusicMode = MusicMode.CONTINUOUS
    volume: float = MUSIC_VOLUME


@dataclass(frozen=True, eq=False)
class VoiceTrack:
    """Decoded narration as mono float32 samples in ``[-1, 1]``."""

    samples: np.ndarray
    sample_rate: int

    @property
    def duration(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return len(self.samples) / float(self.sample_rate)


@dataclass(frozen=True, eq=False)
class RenderSession:
    """Immutable inputs of one render, resolved once before encoding."""

    timeline: "Timeline"
    voice: VoiceTrack
    caption_style: CaptionStyleConfig = field(default_factory=CaptionStyleConfig)
    music: MusicConfig = field(default_factory=MusicConfig)
    word_timestamps: Sequence[WordTimestamp] = field(default_factory=tuple)
    settings: RenderSettings = DEFAULT_SETTINGS
    placeholder: Any = None

    @property
    def total_duration(self) -> float:
        return self.voice.duration

    @property
    def segments(self) -> Sequence[VisualSegment]:
        return tuple(slot.segment for slot in self.timeline.slots)


@dataclass(slots=True)
class RenderProgress:
    """Mutable cursor owned by the capture loop of a single render."""

    total_duration: float
    current_time: float = 0.0
    frames_written: int = 0
    degraded_frames: int = 0
    is_done: bool = False

    @property
    def fraction(self) -> float:
        if self.total_duration <= 0:
            return 1.0
        return min(1.0, max(0.0, self.current_time / self.total_duration))


__all__ = [
    "RenderError",
    "RenderSetupError",
    "EncoderError",
    "RenderCancelled",
    "ZoomDirection",
    "CaptionPosition",
    "CaptionSize",
    "CaptionMode",
    "CaptionStyle",
    "MusicMode",
    "VisualSegment",
    "WordTimestamp",
    "CaptionStyleConfig",
    "MusicConfig",
    "VoiceTrack",
    "RenderSession",
    "RenderProgress",
]
