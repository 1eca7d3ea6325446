"""Offline compositor that turns narrated slide lessons into MP4 videos."""

from .config import RenderSettings
from .interfaces import (
    CaptionMode,
    CaptionPosition,
    CaptionSize,
    CaptionStyle,
    CaptionStyleConfig,
    MusicConfig,
    MusicMode,
    RenderCancelled,
    RenderError,
    RenderSetupError,
    VisualSegment,
    VoiceTrack,
    WordTimestamp,
    lesson_from_payload,
    voice_from_lesson,
)
from .steps import CapturePipeline, RenderResult, allocate, build_session, render_lesson

__version__ = "0.1.0"

__all__ = [
    "RenderSettings",
    "CaptionMode",
    "CaptionPosition",
    "CaptionSize",
    "CaptionStyle",
    "CaptionStyleConfig",
    "MusicConfig",
    "MusicMode",
    "RenderCancelled",
    "RenderError",
    "RenderSetupError",
    "VisualSegment",
    "VoiceTrack",
    "WordTimestamp",
    "lesson_from_payload",
    "voice_from_lesson",
    "CapturePipeline",
    "RenderResult",
    "allocate",
    "build_session",
    "render_lesson",
]
