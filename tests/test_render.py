from __future__ import annotations

import asyncio
import logging
import shutil
import subprocess
import time
from pathlib import Path
from typing import List

import numpy as np
import pytest

from conftest import SAMPLE_RATE, make_session, solid_image
from lessonvid.config import RenderSettings
from lessonvid.helpers.logging import push_observer, reset_observer
from lessonvid.helpers.media import probe_media_duration
from lessonvid.interfaces.progress import RenderEvent, RenderEventType
from lessonvid.interfaces.session import (
    MusicConfig,
    RenderCancelled,
    RenderError,
    RenderSetupError,
    VisualSegment,
)
from lessonvid.steps import audio_mix, render
from lessonvid.steps.render import CapturePipeline, build_session, frame_count, frame_span, render_lesson

RED = (0, 0, 255)

requires_ffmpeg = pytest.mark.skipif(shutil.which("ffmpeg") is None, reason="ffmpeg not installed")


class _FakeEncoder:
    instances: List["_FakeEncoder"] = []

    def __init__(self, output_path, settings, sample_rate) -> None:
        self.output_path = Path(output_path)
        self.frames: list[np.ndarray] = []
        self.samples = 0
        self.finalized = False
        self.aborted = False
        _FakeEncoder.instances.append(self)

    def write(self, frame: np.ndarray, audio: np.ndarray) -> None:
        self.frames.append(frame)
        self.samples += len(audio)

    def finalize(self, is_cancelled=None) -> bool:
        if is_cancelled is not None and is_cancelled():
            raise RenderCancelled("cancelled before publish")
        self.finalized = True
        self.output_path.write_bytes(b"video")
        return True

    def abort(self) -> None:
        self.aborted = True


class _Recorder:
    def __init__(self) -> None:
        self.events: list[RenderEvent] = []

    def handle_event(self, event: RenderEvent) -> None:
        self.events.append(event)

    def types(self) -> list[RenderEventType]:
        return [event.type for event in self.events]


@pytest.fixture
def fake_encoder(monkeypatch: pytest.MonkeyPatch):
    _FakeEncoder.instances = []
    monkeypatch.setattr(render, "MediaEncoder", _FakeEncoder)
    return _FakeEncoder


def _segments(count: int = 3) -> list[VisualSegment]:
    return [VisualSegment(image_payload=solid_image(RED), caption_text=f"slide {i}") for i in range(count)]


def test_frame_spans_follow_audio_clock() -> None:
    assert frame_span(0, 48000, 30) == (0, 1600)
    assert frame_span(1, 44100, 30) == (1470, 2940)
    assert frame_count(48000, 48000, 30) == 30
    assert frame_count(8000, 8000, 30) == 30
    assert frame_count(8001, 8000, 30) == 31


def test_render_writes_every_frame(fake_encoder, tmp_path: Path) -> None:
    session = make_session(_segments(), duration=1.0)
    progress: list[float] = []
    recorder = _Recorder()
    result = render_lesson(session, tmp_path / "out.mp4", on_progress=progress.append, observer=recorder)

    enc = fake_encoder.instances[0]
    assert result.frames_written == 10 == len(enc.frames)
    assert enc.samples == SAMPLE_RATE
    assert enc.finalized and not enc.aborted
    assert result.degraded_frames == 0
    assert result.muxed
    assert progress == sorted(progress)
    assert progress[0] == 0.0 and progress[-1] == 1.0
    types = recorder.types()
    assert types[0] is RenderEventType.RENDER_STARTED
    assert types[-1] is RenderEventType.RENDER_COMPLETED
    assert RenderEventType.STEP_COMPLETED in types


def test_broken_segment_degrades_without_abort(fake_encoder, tmp_path: Path) -> None:
    segments = [
        VisualSegment(image_payload=solid_image(RED)),
        VisualSegment(image_payload=b"\x00garbage"),
        VisualSegment(image_payload=solid_image(RED)),
    ]
    session = make_session(segments, duration=3.0)
    recorder = _Recorder()
    result = render_lesson(session, tmp_path / "out.mp4", observer=recorder)

    enc = fake_encoder.instances[0]
    assert result.frames_written == 30
    assert result.degraded_frames == 10
    assert not enc.frames[15].any()
    assert enc.frames[5][120, 160].tolist() == list(RED)
    assert recorder.types().count(RenderEventType.FRAME_DEGRADED) == 10


def test_progress_callback_errors_are_ignored(fake_encoder, tmp_path: Path) -> None:
    def _bad(_fraction: float) -> None:
        raise ValueError("ui went away")

    result = render_lesson(make_session(_segments(), duration=0.5), tmp_path / "out.mp4", on_progress=_bad)
    assert result.frames_written == 5


def test_observer_errors_do_not_abort_render(
    fake_encoder, tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    class _FlakyObserver(_Recorder):
        def handle_event(self, event: RenderEvent) -> None:
            super().handle_event(event)
            if RenderEventType.FRAME_PROGRESS in self.types():
                raise RuntimeError("ui socket closed")

    out = tmp_path / "out.mp4"
    observer = _FlakyObserver()
    with caplog.at_level(logging.WARNING, logger="lessonvid.steps.render"):
        result = render_lesson(make_session(_segments(), duration=3.0), out, observer=observer)

    enc = fake_encoder.instances[0]
    assert out.exists()
    assert enc.finalized and not enc.aborted
    assert result.frames_written == 30
    assert observer.types()[-1] is RenderEventType.RENDER_COMPLETED
    assert len([r for r in caplog.records if "observer raised" in r.getMessage()]) == 1


def test_context_observer_receives_render_events(fake_encoder, tmp_path: Path) -> None:
    recorder = _Recorder()
    token = push_observer(recorder)
    try:
        render_lesson(make_session(_segments(), duration=0.5), tmp_path / "out.mp4")
    finally:
        reset_observer(token)
    types = recorder.types()
    assert types[0] is RenderEventType.RENDER_STARTED
    assert types[-1] is RenderEventType.RENDER_COMPLETED
    assert [e.step for e in recorder.events if e.type is RenderEventType.STEP_COMPLETED] == [
        "compose",
        "music",
        "encoder",
        "mux",
    ]


def test_cancel_mid_render(fake_encoder, tmp_path: Path) -> None:
    out = tmp_path / "out.mp4"
    recorder = _Recorder()
    pipeline = CapturePipeline(make_session(_segments(), duration=2.0), out, observer=recorder)

    def _progress(fraction: float) -> None:
        if fraction >= 0.25:
            pipeline.cancel()

    pipeline.on_progress = _progress
    with pytest.raises(RenderCancelled):
        pipeline.render()
    enc = fake_encoder.instances[0]
    assert enc.aborted and not enc.finalized
    assert 0 < len(enc.frames) < 20
    assert not out.exists()
    assert RenderEventType.RENDER_CANCELLED in recorder.types()


def test_cancel_before_start(fake_encoder, tmp_path: Path) -> None:
    pipeline = CapturePipeline(make_session(_segments(), duration=1.0), tmp_path / "out.mp4")
    pipeline.cancel()
    with pytest.raises(RenderCancelled):
        pipeline.render()
    assert fake_encoder.instances == []


def test_pipeline_renders_once(fake_encoder, tmp_path: Path) -> None:
    pipeline = CapturePipeline(make_session(_segments(), duration=0.5), tmp_path / "out.mp4")
    pipeline.render()
    with pytest.raises(RenderError):
        pipeline.render()


def test_render_async(fake_encoder, tmp_path: Path) -> None:
    pipeline = CapturePipeline(make_session(_segments(), duration=1.0), tmp_path / "out.mp4")
    result = asyncio.run(pipeline.render_async())
    assert result.frames_written == 10
    assert fake_encoder.instances[0].finalized


def test_render_async_task_cancellation(fake_encoder, tmp_path: Path) -> None:
    out = tmp_path / "out.mp4"
    pipeline = CapturePipeline(make_session(_segments(), duration=10.0), out)

    async def _main() -> None:
        task = asyncio.create_task(pipeline.render_async())
        while pipeline.progress.frames_written < 2:
            await asyncio.sleep(0.001)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(_main())
    enc = fake_encoder.instances[0]
    assert enc.aborted and not enc.finalized
    assert pipeline.cancelled
    assert not out.exists()


def test_build_session_validates_voice() -> None:
    with pytest.raises(RenderSetupError):
        build_session(_segments(), None, sample_rate=SAMPLE_RATE)
    with pytest.raises(RenderSetupError):
        build_session(_segments(), np.zeros(0, dtype=np.float32), sample_rate=SAMPLE_RATE)
    with pytest.raises(RenderSetupError):
        build_session(_segments(), np.array([0.0, np.nan], dtype=np.float32), sample_rate=SAMPLE_RATE)
    with pytest.raises(RenderSetupError):
        build_session(_segments(), np.zeros(10, dtype=np.float32))


def test_build_session_without_visuals_needs_placeholder() -> None:
    voice = np.zeros(SAMPLE_RATE, dtype=np.float32)
    with pytest.raises(RenderSetupError):
        build_session([], voice, sample_rate=SAMPLE_RATE)
    session = build_session([], voice, sample_rate=SAMPLE_RATE, placeholder=solid_image(RED))
    assert len(session.timeline) == 1


def test_encoder_setup_failure_is_reported(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(render, "_open_writer", lambda *args, **kwargs: (None, None))
    out = tmp_path / "out.mp4"
    with pytest.raises(render.EncoderError):
        render_lesson(make_session(_segments(), duration=0.5), out)
    assert not out.exists()
    assert list(tmp_path.iterdir()) == []


@requires_ffmpeg
def test_render_end_to_end(tmp_path: Path) -> None:
    segments = _segments()
    segments[1] = VisualSegment(image_payload=b"not an image", caption_text="slide 1")
    t = np.arange(3 * SAMPLE_RATE) / SAMPLE_RATE
    voice = (0.2 * np.sin(2 * np.pi * 220 * t)).astype(np.float32)
    session = build_session(
        segments,
        voice,
        sample_rate=SAMPLE_RATE,
        settings=RenderSettings(width=320, height=240, fps=10),
    )
    out = tmp_path / "lesson.mp4"
    result = render_lesson(session, out)

    assert out.exists()
    assert result.muxed
    assert result.degraded_frames == 10
    assert [p.name for p in tmp_path.iterdir()] == ["lesson.mp4"]
    duration = probe_media_duration(out)
    if duration is not None:
        assert duration == pytest.approx(3.0, abs=0.3)

    probe = subprocess.run(
        ["ffprobe", "-v", "error", "-show_entries", "stream=codec_type", "-of", "csv=p=0", str(out)],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )
    if probe.returncode == 0:
        assert sorted(probe.stdout.decode().split()) == ["audio", "video"]


@requires_ffmpeg
def test_real_encoder_abort_leaves_nothing(tmp_path: Path) -> None:
    settings = RenderSettings(width=320, height=240, fps=10)
    out = tmp_path / "out.mp4"
    encoder = render.MediaEncoder(out, settings, SAMPLE_RATE)
    encoder.write(np.zeros((240, 320, 3), dtype=np.uint8), np.zeros(800, dtype=np.float32))
    encoder.abort()
    assert list(tmp_path.iterdir()) == []


def test_frame_count_matches_frame_spans() -> None:
    def _scan(total: int, sr: int, fps: float) -> int:
        k = 0
        while frame_span(k, sr, fps)[0] < total:
            k += 1
        return k

    for sr in (8000, 22050, 44100, 48000):
        for fps in (10, 24, 25, 29.97, 30, 60):
            for total in (1, 2, 799, 800, 801, sr - 1, sr, sr + 1, 3 * sr + 17):
                assert frame_count(total, sr, fps) == _scan(total, sr, fps), (total, sr, fps)
    assert frame_count(0, 48000, 30) == 0


def _slow_music(delay: float):
    def _load(track, sample_rate, timeout):
        time.sleep(delay)
        return np.full(16, 0.1, dtype=np.float32)

    return _load


def test_render_async_keeps_event_loop_responsive(
    fake_encoder, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setattr(audio_mix, "load_music", _slow_music(0.5))
    session = make_session(_segments(), duration=1.0, music=MusicConfig(track="https://cdn.example/bed.mp3"))
    pipeline = CapturePipeline(session, tmp_path / "out.mp4")

    async def _main():
        gaps: list[float] = []
        done = asyncio.Event()

        async def _heartbeat() -> None:
            last = time.perf_counter()
            while not done.is_set():
                await asyncio.sleep(0.01)
                now = time.perf_counter()
                gaps.append(now - last)
                last = now

        beat = asyncio.create_task(_heartbeat())
        try:
            result = await pipeline.render_async()
        finally:
            done.set()
            await beat
        return result, max(gaps)

    result, worst_gap = asyncio.run(_main())
    assert result.music
    assert result.frames_written == 10
    assert worst_gap < 0.25


def test_render_async_cancelled_during_setup(
    fake_encoder, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setattr(audio_mix, "load_music", _slow_music(0.3))
    out = tmp_path / "out.mp4"
    session = make_session(_segments(), duration=1.0, music=MusicConfig(track="https://cdn.example/bed.mp3"))
    pipeline = CapturePipeline(session, out)

    async def _main() -> None:
        task = asyncio.create_task(pipeline.render_async())
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(_main())
    assert pipeline.cancelled
    assert all(enc.aborted and not enc.finalized for enc in fake_encoder.instances)
    assert not out.exists()


@requires_ffmpeg
def test_real_encoder_cancelled_at_publish_leaves_nothing(tmp_path: Path) -> None:
    settings = RenderSettings(width=320, height=240, fps=10)
    encoder = render.MediaEncoder(tmp_path / "out.mp4", settings, SAMPLE_RATE)
    encoder.write(np.zeros((240, 320, 3), dtype=np.uint8), np.zeros(800, dtype=np.float32))
    with pytest.raises(RenderCancelled):
        encoder.finalize(is_cancelled=lambda: True)
    assert list(tmp_path.iterdir()) == []
