"""Media helper utilities for probing and decoding lesson assets."""

from __future__ import annotations

import io
import subprocess
import wave
from pathlib import Path
from typing import Any, Optional

import cv2
import numpy as np
import requests

from ..config import DEFAULT_PCM_SAMPLE_RATE, FFMPEG_BIN, FFPROBE_BIN
from ..interfaces.session import RenderSetupError, VoiceTrack


def probe_media_duration(path: str | Path) -> Optional[float]:
    """Return the duration of ``path`` in seconds using ``ffprobe`` when available."""

    try:
        result = subprocess.run(
            [
                FFPROBE_BIN,
                "-v",
                "error",
                "-show_entries",
                "format=duration",
                "-of",
                "default=noprint_wrappers=1:nokey=1",
                str(path),
            ],
            check=True,
            text=True,
            capture_output=True,
        )
    except (FileNotFoundError, subprocess.CalledProcessError):
        return None

    output = (result.stdout or "").strip()
    if not output:
        return None

    try:
        return float(output)
    except ValueError:
        return None


def fetch_bytes(url: str, timeout: float) -> bytes:
    """Download ``url`` and return the body; HTTP errors raise."""

    resp = requests.get(url, timeout=timeout)
    resp.raise_for_status()
    return resp.content


def decode_audio(source: str | Path | bytes, sample_rate: int, *, timeout: float | None = None) -> np.ndarray:
    """Decode any container ``ffmpeg`` understands into mono float32 PCM.

    ``source`` is a path or the encoded bytes. Raises ``RuntimeError`` when
    ``ffmpeg`` is missing or rejects the input.
    """

    data: bytes | None = None
    if isinstance(source, (bytes, bytearray)):
        data = bytes(source)
        input_arg = "pipe:0"
    else:
        input_arg = str(source)
    cmd = [
        FFMPEG_BIN,
        "-v", "error",
        "-i", input_arg,
        "-f", "f32le",
        "-acodec", "pcm_f32le",
        "-ac", "1",
        "-ar", str(int(sample_rate)),
        "pipe:1",
    ]
    try:
        res = subprocess.run(
            cmd,
            input=data,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            check=True,
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        raise RuntimeError(f"{FFMPEG_BIN} not found") from exc
    except subprocess.CalledProcessError as exc:
        head = exc.stderr.decode(errors="ignore")[:400] if exc.stderr else ""
        raise RuntimeError(f"ffmpeg could not decode audio: {head}") from exc
    return np.frombuffer(res.stdout, dtype=np.float32).copy()


def pcm16_to_track(
    data: bytes,
    sample_rate: int = DEFAULT_PCM_SAMPLE_RATE,
    channels: int = 1,
) -> VoiceTrack:
    """Wrap raw little-endian 16-bit PCM as a mono :class:`VoiceTrack`."""

    usable = len(data) - (len(data) % (2 * max(1, channels)))
    pcm = np.frombuffer(data[:usable], dtype="<i2").astype(np.float32) / 32768.0
    if channels > 1:
        pcm = pcm.reshape(-1, channels).mean(axis=1)
    return VoiceTrack(samples=pcm, sample_rate=int(sample_rate))


def pcm_to_wav(data: bytes, sample_rate: int = DEFAULT_PCM_SAMPLE_RATE, channels: int = 1) -> bytes:
    """Return raw 16-bit PCM ``data`` wrapped in a WAV container."""

    buf = io.BytesIO()
    with wave.open(buf, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(data)
    return buf.getvalue()


def as_voice_track(samples: Any, sample_rate: int) -> VoiceTrack:
    """Normalise caller-supplied PCM into a mono float32 :class:`VoiceTrack`.

    Integer arrays are scaled by their dtype range; multi-channel input of
    shape ``(n, channels)`` is averaged down to mono.
    """

    if samples is None:
        raise RenderSetupError("voice track is missing")
    try:
        arr = np.asarray(samples)
    except Exception as exc:
        raise RenderSetupError(f"voice track is not PCM data: {exc}") from exc
    if arr.dtype.kind not in "iuf" or arr.size == 0:
        raise RenderSetupError("voice track is empty or not numeric PCM")
    if arr.dtype.kind in "iu":
        info = np.iinfo(arr.dtype)
        scale = float(max(abs(info.min), info.max))
        arr = arr.astype(np.float32) / scale
    else:
        arr = arr.astype(np.float32)
    if arr.ndim == 2:
        arr = arr.mean(axis=1)
    elif arr.ndim != 1:
        raise RenderSetupError(f"voice track has unsupported shape {arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise RenderSetupError("voice track contains non-finite samples")
    if sample_rate is None or int(sample_rate) <= 0:
        raise RenderSetupError("voice track sample rate must be positive")
    return VoiceTrack(samples=np.clip(arr, -1.0, 1.0), sample_rate=int(sample_rate))


def load_voice_track(path: str | Path, sample_rate: int = 48000) -> VoiceTrack:
    """Decode the narration at ``path``; failures are fatal setup errors."""

    try:
        samples = decode_audio(path, sample_rate)
    except RuntimeError as exc:
        raise RenderSetupError(f"cannot decode voice track {path}: {exc}") from exc
    return as_voice_track(samples, sample_rate)


def decode_image(payload: Any) -> np.ndarray:
    """Return ``payload`` as a 3-channel BGR ``uint8`` image.

    Accepts decoded arrays (gray, BGR or BGRA), encoded bytes or a path.
    Raises ``ValueError`` when nothing decodable is found.
    """

    if isinstance(payload, np.ndarray):
        img = payload
    elif isinstance(payload, (bytes, bytearray, memoryview)):
        buf = np.frombuffer(bytes(payload), dtype=np.uint8)
        img = cv2.imdecode(buf, cv2.IMREAD_UNCHANGED) if buf.size else None
    elif isinstance(payload, (str, Path)):
        img = cv2.imread(str(payload), cv2.IMREAD_UNCHANGED)
    else:
        raise ValueError(f"unsupported image payload {type(payload).__name__}")

    if img is None or img.size == 0 or img.ndim not in (2, 3):
        raise ValueError("image payload could not be decoded")
    if img.dtype != np.uint8:
        img = np.clip(img, 0, 255).astype(np.uint8)
    if img.ndim == 2:
        return cv2.cvtColor(img, cv2.COLOR_GRAY2BGR)
    if img.shape[2] == 4:
        return cv2.cvtColor(img, cv2.COLOR_BGRA2BGR)
    if img.shape[2] == 3:
        return img
    raise ValueError(f"unsupported channel count {img.shape[2]}")


__all__ = [
    "probe_media_duration",
    "fetch_bytes",
    "decode_audio",
    "pcm16_to_track",
    "pcm_to_wav",
    "as_voice_track",
    "load_voice_track",
    "decode_image",
]
