"""Test configuration helpers for import path setup and shared fixtures."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Sequence

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]

root_path = str(ROOT)

if root_path not in sys.path:
    sys.path.insert(0, root_path)

from lessonvid.config import RenderSettings  # noqa: E402
from lessonvid.interfaces.session import (  # noqa: E402
    CaptionStyleConfig,
    MusicConfig,
    RenderSession,
    VisualSegment,
    WordTimestamp,
)
from lessonvid.steps.render import build_session  # noqa: E402

SAMPLE_RATE = 8000


@pytest.fixture
def small_settings() -> RenderSettings:
    return RenderSettings(width=320, height=240, fps=10)


def solid_image(bgr: tuple[int, int, int], width: int = 100, height: int = 100) -> np.ndarray:
    img = np.zeros((height, width, 3), dtype=np.uint8)
    img[:] = bgr
    return img


def make_session(
    segments: Sequence[VisualSegment],
    *,
    duration: float = 1.0,
    settings: RenderSettings | None = None,
    caption_style: CaptionStyleConfig | None = None,
    music: MusicConfig | None = None,
    word_timestamps: Sequence[WordTimestamp] = (),
    placeholder: Any = None,
) -> RenderSession:
    voice = np.zeros(int(round(duration * SAMPLE_RATE)), dtype=np.float32)
    return build_session(
        segments,
        voice,
        sample_rate=SAMPLE_RATE,
        caption_style=caption_style,
        music=music,
        word_timestamps=word_timestamps,
        settings=settings or RenderSettings(width=320, height=240, fps=10),
        placeholder=placeholder,
    )
