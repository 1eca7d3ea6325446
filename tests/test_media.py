from __future__ import annotations

import io
import subprocess
import wave

import cv2
import numpy as np
import pytest

from lessonvid.helpers import media
from lessonvid.helpers.media import (
    as_voice_track,
    decode_audio,
    decode_image,
    pcm16_to_track,
    pcm_to_wav,
    probe_media_duration,
)
from lessonvid.interfaces.session import RenderSetupError


def test_pcm16_to_track_drops_partial_sample() -> None:
    data = np.array([0, 32767, -32768], dtype="<i2").tobytes() + b"\x01"
    track = pcm16_to_track(data, sample_rate=24000)
    assert track.sample_rate == 24000
    assert track.samples.tolist() == pytest.approx([0.0, 32767 / 32768, -1.0])


def test_pcm16_to_track_downmixes_stereo() -> None:
    data = np.array([16384, 0, -16384, 0], dtype="<i2").tobytes()
    track = pcm16_to_track(data, sample_rate=1000, channels=2)
    assert track.samples.tolist() == pytest.approx([0.25, -0.25])


def test_pcm_to_wav_roundtrip_header() -> None:
    data = np.zeros(100, dtype="<i2").tobytes()
    with wave.open(io.BytesIO(pcm_to_wav(data, 24000)), "rb") as wav:
        assert wav.getframerate() == 24000
        assert wav.getnchannels() == 1
        assert wav.getnframes() == 100


def test_as_voice_track_scales_integers() -> None:
    track = as_voice_track(np.array([0, 16384], dtype=np.int16), 8000)
    assert track.samples.dtype == np.float32
    assert track.samples.tolist() == pytest.approx([0.0, 0.5])
    assert track.duration == pytest.approx(2 / 8000)


def test_as_voice_track_averages_channels() -> None:
    track = as_voice_track(np.array([[0.5, -0.5], [1.0, 0.0]], dtype=np.float32), 8000)
    assert track.samples.tolist() == pytest.approx([0.0, 0.5])


@pytest.mark.parametrize(
    "samples, rate",
    [
        (None, 8000),
        (np.zeros(0, dtype=np.float32), 8000),
        (np.array(["a", "b"]), 8000),
        (np.zeros((2, 2, 2), dtype=np.float32), 8000),
        (np.array([np.inf], dtype=np.float32), 8000),
        (np.zeros(4, dtype=np.float32), 0),
    ],
)
def test_as_voice_track_rejects_bad_input(samples, rate) -> None:
    with pytest.raises(RenderSetupError):
        as_voice_track(samples, rate)


def test_decode_image_formats() -> None:
    gray = np.full((4, 6), 200, dtype=np.uint8)
    assert decode_image(gray).shape == (4, 6, 3)
    bgra = np.zeros((4, 6, 4), dtype=np.uint8)
    assert decode_image(bgra).shape == (4, 6, 3)
    ok, png = cv2.imencode(".png", np.full((5, 7, 3), 9, dtype=np.uint8))
    assert ok
    decoded = decode_image(png.tobytes())
    assert decoded.shape == (5, 7, 3)
    assert int(decoded[0, 0, 0]) == 9


def test_decode_image_from_path(tmp_path) -> None:
    path = tmp_path / "slide.png"
    cv2.imwrite(str(path), np.zeros((3, 3, 3), dtype=np.uint8))
    assert decode_image(path).shape == (3, 3, 3)
    assert decode_image(str(path)).shape == (3, 3, 3)


@pytest.mark.parametrize("payload", [b"garbage", b"", "missing-file.png", 42])
def test_decode_image_rejects_bad_payload(payload) -> None:
    with pytest.raises(ValueError):
        decode_image(payload)


def test_decode_audio_reports_missing_binary(monkeypatch: pytest.MonkeyPatch) -> None:
    def _missing(*args, **kwargs):
        raise FileNotFoundError("ffmpeg")

    monkeypatch.setattr(media.subprocess, "run", _missing)
    with pytest.raises(RuntimeError):
        decode_audio(b"bytes", 8000)


def test_decode_audio_parses_float_pcm(monkeypatch: pytest.MonkeyPatch) -> None:
    pcm = np.array([0.25, -0.5], dtype=np.float32).tobytes()

    def _run(cmd, **kwargs):
        assert "-ar" in cmd and "8000" in cmd
        return subprocess.CompletedProcess(cmd, 0, stdout=pcm, stderr=b"")

    monkeypatch.setattr(media.subprocess, "run", _run)
    assert decode_audio(b"encoded", 8000).tolist() == [0.25, -0.5]


def test_probe_duration_without_ffprobe(monkeypatch: pytest.MonkeyPatch) -> None:
    def _missing(*args, **kwargs):
        raise FileNotFoundError("ffprobe")

    monkeypatch.setattr(media.subprocess, "run", _missing)
    assert probe_media_duration("clip.mp4") is None
