"""Per-frame compositing: clear, subtitle band, active image, caption overlay."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Set, Tuple

import cv2
import numpy as np

from ..config import (
    BACKGROUND_BGR,
    PLACEHOLDER_HEX,
    SUBTITLE_BAR_DIVIDER_HEX,
    SUBTITLE_BAR_DIVIDER_PX,
    SUBTITLE_BAR_HEX,
)
from ..helpers.formatting import hex_to_bgr
from ..helpers.media import decode_image
from ..interfaces.session import RenderSession, ZoomDirection
from .captions import CaptionEngine, SubtitleBand
from .timeline import TimelineSlot

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Placement:
    """Where a fitted image lands inside the content area."""

    x: int
    y: int
    width: int
    height: int


def contain_fit(img_w: int, img_h: int, area_w: int, area_h: int) -> Placement:
    """Fit an ``img_w`` x ``img_h`` image inside the area without cropping.

    A relatively wider image fills the width and is letterboxed; otherwise it
    fills the height and is pillarboxed. Offsets are relative to the area.
    """
    if img_w <= 0 or img_h <= 0 or area_w <= 0 or area_h <= 0:
        raise ValueError("contain_fit needs positive dimensions")
    img_ratio = img_w / img_h
    area_ratio = area_w / area_h
    if img_ratio > area_ratio:
        width = area_w
        height = max(1, min(area_h, int(round(area_w / img_ratio))))
        return Placement(0, (area_h - height) // 2, width, height)
    height = area_h
    width = max(1, min(area_w, int(round(area_h * img_ratio))))
    return Placement((area_w - width) // 2, 0, width, height)


def zoom_scale(direction: ZoomDirection, progress: float, strength: float) -> float:
    """Scale factor of the slow zoom at ``progress`` in ``[0, 1]`` of a segment."""
    if strength <= 0:
        return 1.0
    progress = min(1.0, max(0.0, progress))
    if direction is ZoomDirection.OUT:
        return 1.0 + strength * (1.0 - progress)
    return 1.0 + strength * progress


def _paste(dst: np.ndarray, img: np.ndarray, x: int, y: int) -> None:
    """Copy ``img`` into ``dst`` at ``(x, y)``, clipped to ``dst``."""
    dh, dw = dst.shape[:2]
    ih, iw = img.shape[:2]
    x0, y0 = max(0, x), max(0, y)
    x1, y1 = min(dw, x + iw), min(dh, y + ih)
    if x1 <= x0 or y1 <= y0:
        return
    dst[y0:y1, x0:x1] = img[y0 - y:y1 - y, x0 - x:x1 - x]


class FrameCompositor:
    """Builds output frames for one :class:`RenderSession`.

    Holds the per-session image cache and the caption engine. Frames are new
    arrays so callers may keep them.
    """

    def __init__(self, session: RenderSession) -> None:
        self.session = session
        self.settings = session.settings
        self.captions = CaptionEngine(session.caption_style, self.settings, session.word_timestamps)
        self.band: Optional[SubtitleBand] = self.captions.band
        self.width = self.settings.width
        self.height = self.settings.height
        band_h = self.band.height if self.band else 0
        self.content_y = self.band.height if self.band and self.band.y == 0 else 0
        self.content_h = max(1, self.height - band_h)
        self._fitted: Dict[int, Tuple[np.ndarray, Placement]] = {}
        self._failed: Set[int] = set()
        self._warned: Set[Tuple[int, str]] = set()
        self._placeholder_img: Optional[Tuple[np.ndarray, Placement]] = None
        self._placeholder_bgr = hex_to_bgr(PLACEHOLDER_HEX)

    # -----------------------------
    # Logging
    # -----------------------------

    def _warn_once(self, index: int, kind: str, exc: Any) -> None:
        key = (index, kind)
        if key in self._warned:
            return
        self._warned.add(key)
        LOGGER.warning("segment %d: %s failed, frame degraded: %s", index, kind, exc)

    # -----------------------------
    # Images
    # -----------------------------

    def _fit(self, img: np.ndarray) -> Tuple[np.ndarray, Placement]:
        h, w = img.shape[:2]
        place = contain_fit(w, h, self.width, self.content_h)
        interp = cv2.INTER_AREA if place.width < w else cv2.INTER_LINEAR
        fitted = cv2.resize(img, (place.width, place.height), interpolation=interp)
        return fitted, place

    def _resolve_payload(self, slot: TimelineSlot) -> Any:
        payload = slot.segment.image_payload
        if callable(payload):
            # Lazy loader handle; polled until the asset is ready
            payload = payload()
        return payload

    def fitted_image(self, slot: TimelineSlot) -> Optional[Tuple[np.ndarray, Placement]]:
        """Return the cached fitted image of ``slot``.

        ``None`` means the payload is not available yet. Raises ``ValueError``
        when the payload cannot be decoded; the failure is remembered.
        """
        cached = self._fitted.get(slot.index)
        if cached is not None:
            return cached
        if slot.index in self._failed:
            raise ValueError("image payload could not be decoded")
        try:
            payload = self._resolve_payload(slot)
            if payload is None:
                return None
            fitted = self._fit(decode_image(payload))
        except Exception:
            self._failed.add(slot.index)
            raise
        self._fitted[slot.index] = fitted
        return fitted

    def _placeholder(self) -> Optional[Tuple[np.ndarray, Placement]]:
        if self.session.placeholder is None:
            return None
        if self._placeholder_img is None:
            payload = self.session.placeholder
            if callable(payload):
                payload = payload()
            self._placeholder_img = self._fit(decode_image(payload))
        return self._placeholder_img

    def _draw_fitted(self, canvas: np.ndarray, fitted: Tuple[np.ndarray, Placement],
                     slot: TimelineSlot, t: float) -> None:
        img, place = fitted
        content = canvas[self.content_y:self.content_y + self.content_h, :]
        scale = 1.0
        if self.settings.zoom_strength > 0 and slot.duration > 0:
            progress = (t - slot.start) / slot.duration
            scale = zoom_scale(slot.segment.zoom_direction, progress, self.settings.zoom_strength)
        if scale == 1.0:
            _paste(content, img, place.x, place.y)
            return
        zw = max(1, int(round(place.width * scale)))
        zh = max(1, int(round(place.height * scale)))
        zoomed = cv2.resize(img, (zw, zh), interpolation=cv2.INTER_LINEAR)
        x = place.x + (place.width - zw) // 2
        y = place.y + (place.height - zh) // 2
        _paste(content, zoomed, x, y)

    def _draw_placeholder(self, canvas: np.ndarray, slot: TimelineSlot, t: float) -> None:
        try:
            fitted = self._placeholder()
        except Exception as exc:
            self._warn_once(slot.index, "placeholder", exc)
            fitted = None
        if fitted is not None:
            self._draw_fitted(canvas, fitted, slot, t)
            return
        content = canvas[self.content_y:self.content_y + self.content_h, :]
        content[:] = self._placeholder_bgr

    # -----------------------------
    # Frame
    # -----------------------------

    def _draw_band(self, canvas: np.ndarray) -> None:
        band = self.band
        if band is None:
            return
        color = hex_to_bgr(self.session.caption_style.background_color, hex_to_bgr(SUBTITLE_BAR_HEX))
        canvas[band.y:band.y + band.height, :] = color
        # Divider sits on the first row of the band
        canvas[band.y:band.y + SUBTITLE_BAR_DIVIDER_PX, :] = hex_to_bgr(SUBTITLE_BAR_DIVIDER_HEX)

    def compose(self, t: float) -> Tuple[np.ndarray, bool]:
        """Return the frame for ``t`` and whether it had to be degraded."""
        canvas = np.empty((self.height, self.width, 3), dtype=np.uint8)
        canvas[:] = BACKGROUND_BGR
        self._draw_band(canvas)
        slot = self.session.timeline.active_slot(t)
        degraded = False

        try:
            fitted = self.fitted_image(slot)
            if fitted is None:
                self._draw_placeholder(canvas, slot, t)
            else:
                self._draw_fitted(canvas, fitted, slot, t)
        except Exception as exc:
            # Content region stays black
            self._warn_once(slot.index, "image", exc)
            degraded = True

        try:
            self.captions.draw(canvas, t, slot)
        except Exception as exc:
            self._warn_once(slot.index, "caption", exc)
            degraded = True

        return canvas, degraded


__all__ = ["Placement", "contain_fit", "zoom_scale", "FrameCompositor"]
