"""Value types, events and payload parsing for lesson renders."""

from .progress import ProgressCallback, RenderEvent, RenderEventType, RenderObserver
from .session import (
    CaptionMode,
    CaptionPosition,
    CaptionSize,
    CaptionStyle,
    CaptionStyleConfig,
    EncoderError,
    MusicConfig,
    MusicMode,
    RenderCancelled,
    RenderError,
    RenderProgress,
    RenderSession,
    RenderSetupError,
    VisualSegment,
    VoiceTrack,
    WordTimestamp,
    ZoomDirection,
)
from .lesson import LessonInputs, lesson_from_payload, voice_from_lesson

__all__ = [
    "ProgressCallback",
    "RenderEvent",
    "RenderEventType",
    "RenderObserver",
    "CaptionMode",
    "CaptionPosition",
    "CaptionSize",
    "CaptionStyle",
    "CaptionStyleConfig",
    "EncoderError",
    "MusicConfig",
    "MusicMode",
    "RenderCancelled",
    "RenderError",
    "RenderProgress",
    "RenderSession",
    "RenderSetupError",
    "VisualSegment",
    "VoiceTrack",
    "WordTimestamp",
    "ZoomDirection",
    "LessonInputs",
    "lesson_from_payload",
    "voice_from_lesson",
]
