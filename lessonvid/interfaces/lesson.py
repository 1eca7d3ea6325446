"""Parsing of the authoring app's lesson JSON into render inputs."""

from __future__ import annotations

import base64
import binascii
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Literal, Optional
from urllib.parse import urljoin

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..config import DEFAULT_PCM_SAMPLE_RATE, IMAGE_FETCH_TIMEOUT
from ..helpers.media import as_voice_track, decode_audio, fetch_bytes, pcm16_to_track
from .session import (
    CaptionMode,
    CaptionPosition,
    CaptionSize,
    CaptionStyle,
    CaptionStyleConfig,
    MusicConfig,
    MusicMode,
    RenderSetupError,
    VisualSegment,
    VoiceTrack,
    WordTimestamp,
    ZoomDirection,
)


class VisualAssetModel(BaseModel):
    """One entry of ``lesson.visuals``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    image_data: Optional[str] = Field(default=None, alias="imageData")
    script_text: Optional[str] = Field(default=None, alias="scriptText")
    overlay_text: Optional[str] = Field(default=None, alias="overlayText")
    start_time: float = Field(default=0.0, alias="startTime")
    end_time: float = Field(default=0.0, alias="endTime")
    zoom_direction: ZoomDirection = Field(default=ZoomDirection.IN, alias="zoomDirection")

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _none_is_zero(cls, value: Any) -> Any:
        return 0.0 if value is None else value

    @field_validator("zoom_direction", mode="before")
    @classmethod
    def _zoom_default(cls, value: Any) -> Any:
        return ZoomDirection.IN if value in (None, "") else value


class WordTimestampModel(BaseModel):
    word: str
    start: float = Field(..., ge=0.0)
    end: float = Field(..., ge=0.0)


class LessonModel(BaseModel):
    """The subset of a lesson record the renderer reads."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    visuals: list[VisualAssetModel] = Field(default_factory=list)
    word_timestamps: list[WordTimestampModel] = Field(default_factory=list, alias="wordTimestamps")
    audio_data: Optional[str] = Field(default=None, alias="audioData")
    audio_mime_type: Optional[str] = Field(default=None, alias="audioMimeType")
    caption_style: Optional[str] = Field(default=None, alias="captionStyle")
    caption_text_source: Literal["overlay", "script"] = Field(default="script", alias="captionTextSource")
    caption_position: CaptionPosition = Field(default=CaptionPosition.BOTTOM, alias="captionPosition")
    caption_size: CaptionSize = Field(default=CaptionSize.MEDIUM, alias="captionSize")
    caption_mode: CaptionMode = Field(default=CaptionMode.OVERLAY, alias="captionMode")
    caption_color: Optional[str] = Field(default=None, alias="captionColor")
    caption_bg_color: Optional[str] = Field(default=None, alias="captionBgColor")
    caption_outline_color: Optional[str] = Field(default=None, alias="captionOutlineColor")
    background_music_url: Optional[str] = Field(default=None, alias="backgroundMusicUrl")
    music_mode: MusicMode = Field(default=MusicMode.CONTINUOUS, alias="musicMode")

    @field_validator(
        "caption_position", "caption_size", "caption_mode", "music_mode", "caption_text_source",
        mode="before",
    )
    @classmethod
    def _empty_is_default(cls, value: Any, info) -> Any:
        if value in (None, ""):
            return cls.model_fields[info.field_name].default
        return value

    @field_validator("word_timestamps", "visuals", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value


@dataclass(frozen=True)
class LessonInputs:
    """Render inputs read from a lesson record, minus the decoded voice."""

    segments: tuple[VisualSegment, ...]
    caption_style: CaptionStyleConfig
    music: MusicConfig
    word_timestamps: tuple[WordTimestamp, ...]
    audio_data: Optional[str] = None
    audio_mime_type: Optional[str] = None


def decode_data_uri(value: str) -> Optional[bytes]:
    """Return the bytes of a ``data:`` URI or bare base64 string, else ``None``."""
    if value.startswith("data:"):
        _, _, value = value.partition(",")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return None


class RemoteImage:
    """Lazy handle for an image stored behind a URL.

    The first call starts the download on a worker thread. Calls return
    ``None`` until the bytes arrive, so the compositor shows the placeholder
    meanwhile. A failed download raises on every later call.
    """

    def __init__(self, url: str, timeout: float = IMAGE_FETCH_TIMEOUT) -> None:
        self.url = url
        self.timeout = timeout
        self._future: Optional[Future] = None

    def __call__(self) -> Optional[bytes]:
        if self._future is None:
            executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="lessonvid-image")
            self._future = executor.submit(fetch_bytes, self.url, self.timeout)
            executor.shutdown(wait=False)
        if not self._future.done():
            return None
        return self._future.result()

    def __repr__(self) -> str:
        return f"RemoteImage({self.url!r})"


def image_payload(value: str, media_base_url: Optional[str] = None) -> Any:
    """Turn a stored ``imageData`` string into something the compositor decodes.

    URLs become :class:`RemoteImage` handles. Server-relative paths such as
    ``/media/slide.png`` are joined onto ``media_base_url`` when one is given,
    otherwise they are read as local paths. Inline base64 becomes bytes.
    """
    if value.startswith(("http://", "https://")):
        return RemoteImage(value)
    if value.startswith("/"):
        data = decode_data_uri(value)
        # Bare base64 JPEG also starts with "/" ("/9j/")
        if data is not None and data.startswith(b"\xff\xd8"):
            return data
        if media_base_url:
            return RemoteImage(urljoin(media_base_url, value))
        return value
    data = decode_data_uri(value)
    return data if data is not None else value


def lesson_from_payload(payload: dict[str, Any], media_base_url: Optional[str] = None) -> LessonInputs:
    """Validate a lesson dict and map it onto the render value types.

    Visuals without image data are dropped. ``media_base_url`` resolves
    server-relative image paths. Raises ``RenderSetupError`` when the payload
    does not validate.
    """
    try:
        lesson = LessonModel.model_validate(payload)
    except Exception as exc:
        raise RenderSetupError(f"invalid lesson payload: {exc}") from exc

    segments = []
    for visual in lesson.visuals:
        if not visual.image_data:
            continue
        if lesson.caption_text_source == "overlay":
            text = visual.overlay_text or ""
        else:
            text = visual.script_text or ""
        segments.append(
            VisualSegment(
                image_payload=image_payload(visual.image_data, media_base_url),
                caption_text=text,
                start_time=visual.start_time,
                end_time=visual.end_time,
                zoom_direction=visual.zoom_direction,
            )
        )

    caption_kwargs: dict[str, Any] = {
        "style": CaptionStyle.parse(lesson.caption_style),
        "position": lesson.caption_position,
        "size": lesson.caption_size,
        "mode": lesson.caption_mode,
        "background_color": lesson.caption_bg_color or None,
        "outline_color": lesson.caption_outline_color or None,
    }
    if lesson.caption_color:
        caption_kwargs["text_color"] = lesson.caption_color

    return LessonInputs(
        segments=tuple(segments),
        caption_style=CaptionStyleConfig(**caption_kwargs),
        music=MusicConfig(track=lesson.background_music_url or None, mode=lesson.music_mode),
        word_timestamps=tuple(
            WordTimestamp(word=w.word, start_ms=w.start, end_ms=w.end) for w in lesson.word_timestamps
        ),
        audio_data=lesson.audio_data,
        audio_mime_type=lesson.audio_mime_type,
    )


def voice_from_lesson(inputs: LessonInputs, sample_rate: int = 48000) -> VoiceTrack:
    """Decode the inline narration of a lesson.

    ``audio/pcm`` data is raw 16-bit mono at 24 kHz; anything else is handed
    to ``ffmpeg``. Paths and URLs are the caller's to resolve.
    """
    raw = inputs.audio_data
    if not raw:
        raise RenderSetupError("lesson has no narration audio")
    if raw.startswith(("/", "http://", "https://")):
        raise RenderSetupError("narration is stored remotely; decode it before rendering")
    is_pcm = raw.startswith("data:audio/pcm") or (
        not raw.startswith("data:") and inputs.audio_mime_type == "audio/pcm"
    )
    data = decode_data_uri(raw)
    if not data:
        raise RenderSetupError("narration audio is not valid base64")
    if is_pcm:
        return as_voice_track(pcm16_to_track(data, DEFAULT_PCM_SAMPLE_RATE).samples, DEFAULT_PCM_SAMPLE_RATE)
    try:
        samples = decode_audio(data, sample_rate)
    except RuntimeError as exc:
        raise RenderSetupError(f"cannot decode narration audio: {exc}") from exc
    return as_voice_track(samples, sample_rate)


__all__ = [
    "VisualAssetModel",
    "WordTimestampModel",
    "LessonModel",
    "LessonInputs",
    "decode_data_uri",
    "RemoteImage",
    "image_payload",
    "lesson_from_payload",
    "voice_from_lesson",
]
