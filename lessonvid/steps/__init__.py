from __future__ import annotations

from .audio_mix import AudioMixer, GainEnvelope, intro_outro_envelope
from .captions import CaptionEngine, subtitle_band, word_window
from .compose import FrameCompositor, contain_fit
from .render import CapturePipeline, RenderResult, build_session, render_lesson
from .timeline import Timeline, TimelineSlot, allocate

__all__ = [
    "AudioMixer",
    "GainEnvelope",
    "intro_outro_envelope",
    "CaptionEngine",
    "subtitle_band",
    "word_window",
    "FrameCompositor",
    "contain_fit",
    "CapturePipeline",
    "RenderResult",
    "build_session",
    "render_lesson",
    "Timeline",
    "TimelineSlot",
    "allocate",
]
