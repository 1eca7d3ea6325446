"""Central configuration for the lesson video compositor.

Sections are grouped by feature for easier editing.
"""

import os
from dataclasses import dataclass

# ---------------------------------------
# Output canvas
# ---------------------------------------
VIDEO_WIDTH = int(os.environ.get("LESSONVID_WIDTH", "1920"))
VIDEO_HEIGHT = int(os.environ.get("LESSONVID_HEIGHT", "1080"))
# Constant frame-rate output; the audio clock decides which frame is drawn
OUTPUT_FPS: float = float(os.environ.get("LESSONVID_FPS", "30"))
BACKGROUND_BGR = (0, 0, 0)
# Solid placeholder used when a segment image is not available yet (hex 4f46e5)
PLACEHOLDER_HEX = "#4f46e5"
# Per-request timeout for images stored behind a URL
IMAGE_FETCH_TIMEOUT = float(os.environ.get("LESSONVID_IMAGE_TIMEOUT", "15"))

# ---------------------------------------
# Captions
# ---------------------------------------
CAPTION_FONT_PX = {"Small": 36, "Medium": 48, "Large": 64}
CAPTION_LINE_HEIGHT = 1.3
# Horizontal room left free on both sides of a caption line, in total
CAPTION_SIDE_MARGIN_PX = 200
CAPTION_TOP_Y = 100
CAPTION_BOTTOM_OFFSET = 80
CAPTION_TEXT_HEX = "#ffffff"
CAPTION_HIGHLIGHT_HEX = "#facc15"
# Number of words visible around the active word in word-synced mode
WORD_WINDOW_SIZE = 5
# Only tokens longer than this are considered for dictionary re-spacing
CONCATENATED_MIN_LENGTH = 12

# ---------------------------------------
# Subtitle bar
# ---------------------------------------
SUBTITLE_BAR_HEIGHT = 120
SUBTITLE_BAR_DIVIDER_PX = 1
SUBTITLE_BAR_HEX = "#1a1a2e"
SUBTITLE_BAR_DIVIDER_HEX = "#ffffff"

# ---------------------------------------
# Timeline
# ---------------------------------------
# Floor on the caption weight so short captions still get a visible slice
MIN_CAPTION_WEIGHT = 5

# ---------------------------------------
# Music bed
# ---------------------------------------
MUSIC_VOLUME = 0.15
MUSIC_INTRO_SECONDS = 10.0
MUSIC_OUTRO_SECONDS = 10.0
MUSIC_FADE_SECONDS = 0.5
MUSIC_FETCH_TIMEOUT = float(os.environ.get("LESSONVID_MUSIC_TIMEOUT", "10"))
VOICE_GAIN = 1.0

# ---------------------------------------
# Encoding
# ---------------------------------------
AUDIO_BITRATE = "192k"
FFMPEG_BIN = os.environ.get("LESSONVID_FFMPEG", "ffmpeg")
FFPROBE_BIN = os.environ.get("LESSONVID_FFPROBE", "ffprobe")
# Speech provider emits raw 16-bit mono PCM at this rate
DEFAULT_PCM_SAMPLE_RATE = 24000


@dataclass(frozen=True)
class RenderSettings:
    width: int = VIDEO_WIDTH
    height: int = VIDEO_HEIGHT
    fps: float = OUTPUT_FPS
    captions_enabled: bool = True
    # 0.0 disables the slow zoom so images are never cropped
    zoom_strength: float = 0.0


DEFAULT_SETTINGS = RenderSettings()

__all__ = [
    "VIDEO_WIDTH",
    "VIDEO_HEIGHT",
    "OUTPUT_FPS",
    "BACKGROUND_BGR",
    "PLACEHOLDER_HEX",
    "IMAGE_FETCH_TIMEOUT",
    "CAPTION_FONT_PX",
    "CAPTION_LINE_HEIGHT",
    "CAPTION_SIDE_MARGIN_PX",
    "CAPTION_TOP_Y",
    "CAPTION_BOTTOM_OFFSET",
    "CAPTION_TEXT_HEX",
    "CAPTION_HIGHLIGHT_HEX",
    "WORD_WINDOW_SIZE",
    "CONCATENATED_MIN_LENGTH",
    "SUBTITLE_BAR_HEIGHT",
    "SUBTITLE_BAR_DIVIDER_PX",
    "SUBTITLE_BAR_HEX",
    "SUBTITLE_BAR_DIVIDER_HEX",
    "MIN_CAPTION_WEIGHT",
    "MUSIC_VOLUME",
    "MUSIC_INTRO_SECONDS",
    "MUSIC_OUTRO_SECONDS",
    "MUSIC_FADE_SECONDS",
    "MUSIC_FETCH_TIMEOUT",
    "VOICE_GAIN",
    "AUDIO_BITRATE",
    "FFMPEG_BIN",
    "FFPROBE_BIN",
    "DEFAULT_PCM_SAMPLE_RATE",
    "RenderSettings",
    "DEFAULT_SETTINGS",
]
