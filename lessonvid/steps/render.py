from __future__ import annotations

import asyncio
import logging
import math
import os
import shutil
import subprocess
import tempfile
import threading
import wave
from contextvars import Token
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, Sequence

import cv2
import numpy as np

from ..config import AUDIO_BITRATE, DEFAULT_SETTINGS, FFMPEG_BIN, MUSIC_FETCH_TIMEOUT, RenderSettings
from ..helpers.formatting import Fore, Style, format_seconds
from ..helpers.logging import current_observer, emit_event, log_timing, push_observer, reset_observer, run_step
from ..helpers.media import as_voice_track, load_voice_track
from ..interfaces.progress import ProgressCallback, RenderEvent, RenderEventType, RenderObserver
from ..interfaces.session import (
    CaptionStyleConfig,
    EncoderError,
    MusicConfig,
    RenderCancelled,
    RenderError,
    RenderProgress,
    RenderSession,
    RenderSetupError,
    VisualSegment,
    VoiceTrack,
    WordTimestamp,
)
from .audio_mix import AudioMixer, MusicLoader, build_mixer, to_pcm16
from .compose import FrameCompositor
from .timeline import allocate

LOGGER = logging.getLogger(__name__)


def _open_writer(path: Path, fps: float, size):
    """Open the first working ``VideoWriter`` backend; returns ``(writer, path)``."""
    w, h = size
    trials = [
        (cv2.CAP_FFMPEG, cv2.VideoWriter_fourcc(*"mp4v"), path),
        (cv2.CAP_FFMPEG, cv2.VideoWriter_fourcc(*"avc1"), path),
        (cv2.CAP_ANY, cv2.VideoWriter_fourcc(*"mp4v"), path),
        # Last resort: MJPG in .avi (huge files, but always muxable)
        (cv2.CAP_ANY, cv2.VideoWriter_fourcc(*"MJPG"), path.with_suffix(".avi")),
    ]
    for api, fourcc, target in trials:
        try:
            vw = cv2.VideoWriter(str(target), api, fourcc, fps, (w, h))
            if vw.isOpened():
                LOGGER.info("VideoWriter OK -> api=%s fourcc=%s", api, fourcc)
                return vw, target
            vw.release()
        except Exception as exc:
            LOGGER.debug("VideoWriter api=%s fourcc=%s failed: %s", api, fourcc, exc)
    return None, None


def _mux_cmd(video: Path, audio: Path, output: Path, fps: float) -> list[str]:
    gop = max(1, int(round(fps)) * 2)
    return [
        FFMPEG_BIN, "-y",
        "-i", str(video),
        "-i", str(audio),
        "-map", "0:v:0", "-map", "1:a:0",
        "-c:v", "libx264",
        "-pix_fmt", "yuv420p",
        "-r", f"{fps}",
        "-g", str(gop),
        "-movflags", "+faststart",
        "-c:a", "aac", "-b:a", AUDIO_BITRATE,
        str(output),
    ]


class MediaEncoder:
    """Frame/audio sink for one render.

    Video goes through OpenCV, audio into a WAV file; :meth:`finalize` muxes
    both into a ``*.partial`` file that is renamed onto the output path.
    Nothing exists at the output path until that rename.
    """

    def __init__(self, output_path: str | Path, settings: RenderSettings, sample_rate: int) -> None:
        self.output_path = Path(output_path)
        self.fps = settings.fps
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        # Same filesystem as the output so the final rename is atomic
        self.workdir = Path(tempfile.mkdtemp(prefix=".lessonvid-", dir=self.output_path.parent))
        self.audio_path = self.workdir / "audio.wav"
        self.partial_path = self.workdir / f"{self.output_path.stem}.partial{self.output_path.suffix or '.mp4'}"
        writer, video_path = _open_writer(self.workdir / "video.mp4", settings.fps, (settings.width, settings.height))
        if writer is None:
            self._cleanup()
            raise EncoderError("Cannot create VideoWriter (failed all backends/fourcc).")
        self._writer = writer
        self.video_path: Path = video_path
        self._wav = wave.open(str(self.audio_path), "wb")
        self._wav.setnchannels(1)
        self._wav.setsampwidth(2)
        self._wav.setframerate(int(sample_rate))
        self._closed = False

    def write(self, frame: np.ndarray, audio: np.ndarray) -> None:
        self._writer.write(frame)
        if audio.size:
            self._wav.writeframes(to_pcm16(audio))

    def _release(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.release()
        self._wav.close()

    def _cleanup(self) -> None:
        shutil.rmtree(self.workdir, ignore_errors=True)

    def finalize(self, is_cancelled: Optional[Callable[[], bool]] = None) -> bool:
        """Publish the output file; returns ``False`` when it is video-only.

        ``is_cancelled`` is checked right before the rename; a cancelled render
        raises :class:`RenderCancelled` and publishes nothing.
        """
        self._release()
        muxed = False
        try:
            if shutil.which(FFMPEG_BIN) is None:
                LOGGER.warning("%s not found; writing video-only output", FFMPEG_BIN)
            else:
                cmd = _mux_cmd(self.video_path, self.audio_path, self.partial_path, self.fps)
                try:
                    subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, check=True)
                    muxed = True
                except subprocess.CalledProcessError as e:
                    head = e.stderr.decode(errors="ignore")[:800] if e.stderr else ""
                    LOGGER.warning("Audio mux/transcode failed; writing video-only. STDERR head:\n%s", head)
            if is_cancelled is not None and is_cancelled():
                raise RenderCancelled("render cancelled before publish")
            source = self.partial_path if muxed else self.video_path
            os.replace(source, self.output_path)
        finally:
            self._cleanup()
        return muxed

    def abort(self) -> None:
        """Release everything and delete temporaries without publishing."""
        try:
            self._release()
        finally:
            self._cleanup()


@dataclass(frozen=True, slots=True)
class RenderResult:
    output_path: Path
    frames_written: int
    degraded_frames: int
    duration: float
    muxed: bool
    music: bool


def frame_span(k: int, sample_rate: int, fps: float) -> tuple[int, int]:
    """Sample span ``[start, end)`` covered by output frame ``k``."""
    return int(round(k * sample_rate / fps)), int(round((k + 1) * sample_rate / fps))


def frame_count(total_samples: int, sample_rate: int, fps: float) -> int:
    """Number of frames whose span starts before the end of the audio.

    That is the smallest ``k`` with ``round(k * sr / fps) >= total_samples``.
    """
    if total_samples <= 0:
        return 0
    k = max(0, math.ceil((total_samples - 0.5) * fps / sample_rate))
    # round() ties go to even, so settle the boundary against frame_span itself
    while k > 0 and frame_span(k - 1, sample_rate, fps)[0] >= total_samples:
        k -= 1
    while frame_span(k, sample_rate, fps)[0] < total_samples:
        k += 1
    return k


class _GuardedObserver:
    """Forwards events to ``observer``; its failures are logged once and dropped."""

    def __init__(self, observer: RenderObserver) -> None:
        self._observer = observer
        self._warned = False

    def handle_event(self, event: RenderEvent) -> None:
        try:
            self._observer.handle_event(event)
        except Exception as exc:
            if not self._warned:
                self._warned = True
                LOGGER.warning("render observer raised, ignoring: %s", exc)


class CapturePipeline:
    """Drives compositor, mixer and encoder for one :class:`RenderSession`.

    The audio sample cursor is the only clock: frame ``k`` is drawn at the
    start of its sample span and written together with that span's audio.
    A pipeline renders once.

    The observer (``observer`` or the one already in the context) is pushed
    into the context for the whole render. Neither it nor ``on_progress`` can
    fail a render.
    """

    def __init__(
        self,
        session: RenderSession,
        output_path: str | Path,
        *,
        on_progress: Optional[ProgressCallback] = None,
        observer: Optional[RenderObserver] = None,
        music_timeout: float = MUSIC_FETCH_TIMEOUT,
    ) -> None:
        if session.voice is None or session.total_duration <= 0:
            raise RenderSetupError("voice track is missing or empty")
        if session.settings.fps <= 0:
            raise RenderSetupError("fps must be positive")
        self.session = session
        self.output_path = Path(output_path)
        self.on_progress = on_progress
        self.observer = observer
        self.progress = RenderProgress(total_duration=session.total_duration)
        self._cancelled = threading.Event()
        self._started = False
        self._progress_warned = False
        # The music fetch overlaps the rest of setup
        self._music = MusicLoader(session.music, session.voice.sample_rate, timeout=music_timeout)

    # -----------------------------
    # Control
    # -----------------------------

    def cancel(self) -> None:
        """Ask the loop to stop; the output path is never created."""
        self._cancelled.set()
        self._music.cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _observe(self) -> Token:
        obs = self.observer if self.observer is not None else current_observer()
        return push_observer(_GuardedObserver(obs) if obs is not None else None)

    def _emit(self, type_: RenderEventType, message: str | None = None, **data: Any) -> None:
        emit_event(RenderEvent(type=type_, message=message, data=data or None))

    def _report(self) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(self.progress.fraction)
        except Exception as exc:
            if not self._progress_warned:
                self._progress_warned = True
                LOGGER.warning("progress callback raised, ignoring: %s", exc)

    # -----------------------------
    # Stages
    # -----------------------------

    def _setup(self) -> tuple[FrameCompositor, AudioMixer, MediaEncoder]:
        if self._started:
            raise RenderError("pipeline has already rendered")
        self._started = True
        if self.cancelled:
            raise RenderCancelled("render cancelled before start")
        session = self.session
        self._emit(
            RenderEventType.RENDER_STARTED,
            "render started",
            duration=session.total_duration,
            segments=len(session.timeline),
        )
        try:
            compositor = run_step("Preparing compositor", FrameCompositor, session, step_id="compose")
            mixer = run_step("Loading music bed", build_mixer, session.voice, session.music, self._music,
                             step_id="music")
            encoder = run_step("Opening encoder", MediaEncoder, self.output_path, session.settings,
                               session.voice.sample_rate, step_id="encoder")
        except Exception:
            self._music.cancel()
            raise
        if self.cancelled:
            encoder.abort()
            raise RenderCancelled("render cancelled during setup")
        return compositor, mixer, encoder

    def _frame(self, compositor: FrameCompositor, t: float) -> tuple[np.ndarray, bool]:
        try:
            return compositor.compose(t)
        except Exception as exc:
            LOGGER.warning("frame at %.3fs failed, writing blank frame: %s", t, exc)
            s = self.session.settings
            return np.zeros((s.height, s.width, 3), dtype=np.uint8), True

    def _abort(self, encoder: MediaEncoder) -> None:
        encoder.abort()
        if self.cancelled:
            self._emit(RenderEventType.RENDER_CANCELLED, "render cancelled",
                       frames=self.progress.frames_written)

    def _capture(self, compositor: FrameCompositor, mixer: AudioMixer, encoder: MediaEncoder) -> Iterator[None]:
        """Encode every frame, yielding after each one."""
        sr = mixer.sample_rate
        fps = self.session.settings.fps
        total = mixer.total_samples
        try:
            total_frames = frame_count(total, sr, fps)
            print(
                f"{Fore.CYAN}Encoding {total_frames} frames "
                f"({format_seconds(self.session.total_duration)} @ {fps:g} fps){Style.RESET_ALL}"
            )
            with log_timing("Capturing frames"):
                for k in range(total_frames):
                    if self.cancelled:
                        raise RenderCancelled("render cancelled")
                    start, end = frame_span(k, sr, fps)
                    t = start / sr
                    self.progress.current_time = t
                    frame, degraded = self._frame(compositor, t)
                    encoder.write(frame, mixer.mix(start, end - start))
                    self.progress.frames_written += 1
                    if degraded:
                        self.progress.degraded_frames += 1
                        self._emit(RenderEventType.FRAME_DEGRADED, frame=k, time=t)
                    self._report()
                    if k % max(1, int(round(fps))) == 0:
                        self._emit(RenderEventType.FRAME_PROGRESS, frame=k, fraction=self.progress.fraction)
                    yield
        except BaseException:
            self._abort(encoder)
            raise
        self.progress.current_time = self.session.total_duration

    def _publish(self, encoder: MediaEncoder) -> bool:
        try:
            return run_step("Muxing audio and video", encoder.finalize,
                            step_id="mux", is_cancelled=self._cancelled.is_set)
        except BaseException:
            self._abort(encoder)
            raise

    def _finish(self, mixer: AudioMixer, muxed: bool) -> RenderResult:
        self.progress.is_done = True
        self._report()
        result = RenderResult(
            output_path=self.output_path,
            frames_written=self.progress.frames_written,
            degraded_frames=self.progress.degraded_frames,
            duration=self.session.total_duration,
            muxed=muxed,
            music=mixer.has_music,
        )
        self._emit(
            RenderEventType.RENDER_COMPLETED,
            str(self.output_path),
            frames=result.frames_written,
            degraded=result.degraded_frames,
            muxed=muxed,
        )
        return result

    # -----------------------------
    # Entry points
    # -----------------------------

    def render(self) -> RenderResult:
        """Render synchronously on the calling thread."""
        token = self._observe()
        try:
            compositor, mixer, encoder = self._setup()
            for _ in self._capture(compositor, mixer, encoder):
                pass
            muxed = self._publish(encoder)
            return self._finish(mixer, muxed)
        finally:
            reset_observer(token)

    async def _off_loop(self, func: Callable[..., Any], *args: Any,
                        discard: Optional[Callable[[Any], None]] = None) -> Any:
        """Run a blocking stage on a worker thread.

        When the awaiting task is cancelled the render is cancelled, the stage
        is allowed to unwind, and a result it still produced goes to ``discard``.
        """
        future = asyncio.ensure_future(asyncio.to_thread(func, *args))
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            self.cancel()
            try:
                result = await future
            except Exception as exc:
                LOGGER.debug("stage unwound after cancellation: %s", exc)
            else:
                if discard is not None:
                    discard(result)
            raise

    async def render_async(self) -> RenderResult:
        """Render on the running loop, yielding control after every frame.

        Setup (which joins the music fetch) and the final mux run on worker
        threads. Cancelling the awaiting task tears the render down like
        :meth:`cancel`.
        """
        token = self._observe()
        try:
            compositor, mixer, encoder = await self._off_loop(
                self._setup, discard=lambda stages: stages[2].abort()
            )
            frames = self._capture(compositor, mixer, encoder)
            try:
                for _ in frames:
                    await asyncio.sleep(0)
            except asyncio.CancelledError:
                self.cancel()
                frames.close()
                raise
            muxed = await self._off_loop(self._publish, encoder)
            return self._finish(mixer, muxed)
        finally:
            reset_observer(token)


# -----------------------------
# Session assembly
# -----------------------------


def _resolve_voice(voice: Any, sample_rate: Optional[int]) -> VoiceTrack:
    if isinstance(voice, VoiceTrack):
        return as_voice_track(voice.samples, voice.sample_rate)
    if isinstance(voice, (str, Path)):
        return load_voice_track(voice) if sample_rate is None else load_voice_track(voice, sample_rate)
    if sample_rate is None:
        raise RenderSetupError("sample_rate is required for raw PCM voice data")
    return as_voice_track(voice, sample_rate)


def build_session(
    segments: Sequence[VisualSegment],
    voice: Any,
    *,
    sample_rate: Optional[int] = None,
    caption_style: Optional[CaptionStyleConfig] = None,
    music: Optional[MusicConfig] = None,
    word_timestamps: Sequence[WordTimestamp] = (),
    settings: RenderSettings = DEFAULT_SETTINGS,
    placeholder: Any = None,
) -> RenderSession:
    """Validate the inputs of a render and resolve its timeline.

    ``voice`` is a :class:`VoiceTrack`, a path to decode, or raw PCM with
    ``sample_rate``. Every failure here is a :class:`RenderSetupError`.
    """
    track = _resolve_voice(voice, sample_rate)
    timeline = allocate(list(segments), track.duration, placeholder=placeholder)
    return RenderSession(
        timeline=timeline,
        voice=track,
        caption_style=caption_style or CaptionStyleConfig(),
        music=music or MusicConfig(),
        word_timestamps=tuple(word_timestamps),
        settings=settings,
        placeholder=placeholder,
    )


def render_lesson(
    session: RenderSession,
    output_path: str | Path,
    *,
    on_progress: Optional[ProgressCallback] = None,
    observer: Optional[RenderObserver] = None,
) -> RenderResult:
    """Render ``session`` to ``output_path`` and return a summary."""
    pipeline = CapturePipeline(session, output_path, on_progress=on_progress, observer=observer)
    return pipeline.render()


__all__ = [
    "MediaEncoder",
    "RenderResult",
    "frame_span",
    "frame_count",
    "CapturePipeline",
    "build_session",
    "render_lesson",
]
