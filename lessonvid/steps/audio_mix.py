"""Audio mixing: narration at unity gain plus an optional looped music bed."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Any, Optional, Tuple

import numpy as np

from ..common.thread_pool import TimedTask
from ..config import (
    MUSIC_FADE_SECONDS,
    MUSIC_FETCH_TIMEOUT,
    MUSIC_INTRO_SECONDS,
    MUSIC_OUTRO_SECONDS,
    VOICE_GAIN,
)
from ..helpers.media import as_voice_track, decode_audio, fetch_bytes
from ..interfaces.session import MusicConfig, MusicMode, VoiceTrack

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class GainEnvelope:
    """Piecewise-linear gain schedule; held flat outside its breakpoints."""

    times: Tuple[float, ...]
    gains: Tuple[float, ...]

    def gain_at(self, t: float) -> float:
        return float(np.interp(t, self.times, self.gains))

    def gains_for(self, t: np.ndarray) -> np.ndarray:
        return np.interp(t, self.times, self.gains).astype(np.float32)


def constant_envelope(volume: float) -> GainEnvelope:
    return GainEnvelope(times=(0.0,), gains=(float(volume),))


def intro_outro_envelope(
    duration: float,
    volume: float,
    *,
    anchor: float = 0.0,
    intro: float = MUSIC_INTRO_SECONDS,
    outro: float = MUSIC_OUTRO_SECONDS,
    fade: float = MUSIC_FADE_SECONDS,
) -> GainEnvelope:
    """Music up for the intro and outro, silent in between.

    Times are measured from ``anchor``, the moment audio actually starts. The
    intro holds ``volume`` until ``intro`` seconds and fades out over ``fade``;
    the outro fades back in from ``outro`` seconds before the end and holds to
    the end. A track too short to fit both leaves the music at full volume.
    """
    intro_end = anchor + intro
    outro_start = anchor + duration - outro
    if outro_start <= intro_end + fade:
        return constant_envelope(volume)
    v = float(volume)
    return GainEnvelope(
        times=(anchor, intro_end, intro_end + fade, outro_start, outro_start + fade, anchor + duration),
        gains=(v, v, 0.0, 0.0, v, v),
    )


def envelope_for(config: MusicConfig, duration: float, anchor: float = 0.0) -> GainEnvelope:
    if config.mode is MusicMode.INTRO_OUTRO:
        return intro_outro_envelope(duration, config.volume, anchor=anchor)
    return constant_envelope(config.volume)


# -----------------------------
# Music bed loading
# -----------------------------


def load_music(track: Any, sample_rate: int, timeout: float = MUSIC_FETCH_TIMEOUT) -> np.ndarray:
    """Return the music bed as mono float32 PCM at ``sample_rate``.

    ``track`` is a URL, a path, encoded bytes or decoded PCM already at
    ``sample_rate``. Raises on any failure; callers degrade to voice only.
    """
    if isinstance(track, np.ndarray):
        samples = as_voice_track(track, sample_rate).samples
    elif isinstance(track, str) and track.startswith(("http://", "https://")):
        samples = decode_audio(fetch_bytes(track, timeout), sample_rate, timeout=timeout)
    elif isinstance(track, (str, Path, bytes, bytearray)):
        samples = decode_audio(track, sample_rate, timeout=timeout)
    else:
        raise ValueError(f"unsupported music track {type(track).__name__}")
    if samples.size == 0:
        raise ValueError("music track decoded to no samples")
    return samples.astype(np.float32, copy=False)


class MusicLoader:
    """Loads the music bed on a worker thread while the session is set up.

    :meth:`result` waits at most until the deadline fixed at construction and
    returns ``None`` when there is no music or it could not be loaded in time.
    """

    def __init__(self, config: MusicConfig, sample_rate: int, timeout: float = MUSIC_FETCH_TIMEOUT) -> None:
        self.config = config
        self.error: Optional[Exception] = None
        self._task: Optional[TimedTask[Optional[np.ndarray]]] = None
        if config.track is not None:
            self._task = TimedTask.submit(
                partial(load_music, config.track, sample_rate, timeout),
                timeout=timeout,
            )

    def _failed(self, exc: Exception) -> None:
        self.error = exc
        reason = "timed out" if not str(exc) else str(exc)
        LOGGER.warning("music bed unavailable, continuing with voice only: %s", reason)
        return None

    def result(self) -> Optional[np.ndarray]:
        if self._task is None:
            return None
        return self._task.result(on_error=self._failed)

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()


# -----------------------------
# Mixer
# -----------------------------


class AudioMixer:
    """Mixes sample spans of the narration and the looped music bed."""

    def __init__(
        self,
        voice: VoiceTrack,
        music: Optional[np.ndarray] = None,
        envelope: Optional[GainEnvelope] = None,
        voice_gain: float = VOICE_GAIN,
    ) -> None:
        self.voice = voice
        self.music = music if music is not None and music.size else None
        self.envelope = envelope
        self.voice_gain = voice_gain

    @property
    def sample_rate(self) -> int:
        return self.voice.sample_rate

    @property
    def total_samples(self) -> int:
        return len(self.voice.samples)

    @property
    def has_music(self) -> bool:
        return self.music is not None and self.envelope is not None

    def mix(self, start: int, count: int) -> np.ndarray:
        """Return mixed float32 samples ``[start, start + count)``, cut at the voice end."""
        start = max(0, int(start))
        end = min(start + max(0, int(count)), self.total_samples)
        if end <= start:
            return np.zeros(0, dtype=np.float32)
        out = self.voice.samples[start:end].astype(np.float32) * self.voice_gain
        if self.has_music:
            positions = np.arange(start, end)
            bed = self.music[positions % len(self.music)]
            out += bed * self.envelope.gains_for(positions / float(self.sample_rate))
        return np.clip(out, -1.0, 1.0)


def to_pcm16(samples: np.ndarray) -> bytes:
    return (np.clip(samples, -1.0, 1.0) * 32767.0).astype("<i2").tobytes()


def build_mixer(voice: VoiceTrack, config: MusicConfig, loader: Optional[MusicLoader] = None) -> AudioMixer:
    """Join the music load (if any) and return a mixer for ``voice``."""
    music = loader.result() if loader is not None else None
    if music is None:
        return AudioMixer(voice)
    return AudioMixer(voice, music, envelope_for(config, voice.duration))


__all__ = [
    "GainEnvelope",
    "constant_envelope",
    "intro_outro_envelope",
    "envelope_for",
    "load_music",
    "MusicLoader",
    "AudioMixer",
    "to_pcm16",
    "build_mixer",
]
