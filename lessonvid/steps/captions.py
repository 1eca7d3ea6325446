"""Caption engine: pick the caption text for a moment, lay it out and paint it.

The engine is a pure function of ``(config, word timestamps, slot, t)`` apart
from a one-entry layout cache, so the same frame always draws the same pixels.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from ..common.caption_utils import normalize_caption_text
from ..config import (
    CAPTION_BOTTOM_OFFSET,
    CAPTION_LINE_HEIGHT,
    CAPTION_SIDE_MARGIN_PX,
    CAPTION_TOP_Y,
    SUBTITLE_BAR_HEIGHT,
    WORD_WINDOW_SIZE,
    RenderSettings,
)
from ..helpers.formatting import hex_to_bgr
from ..interfaces.session import (
    CaptionMode,
    CaptionPosition,
    CaptionStyleConfig,
    WordTimestamp,
)
from .caption_styles import CaptionPaint, Shadow, get_paint
from .timeline import TimelineSlot

LOGGER = logging.getLogger(__name__)

# Average advance of a glyph relative to the font size, used without metrics
ESTIMATED_CHAR_WIDTH = 0.6
CAPTION_BG_PADDING = 16


@dataclass(frozen=True, slots=True)
class SubtitleBand:
    """Reserved horizontal band that shrinks the video content area."""

    y: int
    height: int
    position: CaptionPosition

    @property
    def center_y(self) -> float:
        return self.y + self.height / 2.0


def subtitle_band(config: CaptionStyleConfig, settings: RenderSettings) -> Optional[SubtitleBand]:
    """Return the band reserved by ``config``, or ``None`` in overlay mode."""
    if config.mode is not CaptionMode.SUBTITLE_BAR or not settings.captions_enabled:
        return None
    if not get_paint(config).draws:
        return None
    height = min(SUBTITLE_BAR_HEIGHT, settings.height)
    position = config.effective_position
    y = 0 if position is CaptionPosition.TOP else settings.height - height
    return SubtitleBand(y=y, height=height, position=position)


# -----------------------------
# Caption text selection
# -----------------------------


@dataclass(frozen=True, slots=True)
class CaptionToken:
    text: str
    highlighted: bool = False


@dataclass(frozen=True, slots=True)
class CaptionText:
    tokens: Tuple[CaptionToken, ...]
    word_synced: bool = False

    @property
    def text(self) -> str:
        return " ".join(tok.text for tok in self.tokens)


def active_word_index(words: Sequence[WordTimestamp], t_ms: float) -> Optional[int]:
    """Index of the word spoken at ``t_ms``, else of the last finished word."""
    for idx, word in enumerate(words):
        if word.start_ms <= t_ms < word.end_ms:
            return idx
    for idx in range(len(words) - 1, -1, -1):
        if words[idx].end_ms <= t_ms:
            return idx
    return None


def word_window(
    words: Sequence[WordTimestamp],
    t_ms: float,
    size: int = WORD_WINDOW_SIZE,
) -> Optional[Tuple[Sequence[WordTimestamp], int]]:
    """Return the words around the active one and its position in that window."""
    idx = active_word_index(words, t_ms)
    if idx is None:
        return None
    start = max(0, idx - size // 2)
    end = min(len(words), start + size)
    return words[start:end], idx - start


def _spread_index(slot: TimelineSlot, t: float, count: int) -> int:
    """Word a karaoke highlight sits on when words are spread over the slot."""
    if count <= 0 or slot.duration <= 0:
        return 0
    step = slot.duration / count
    return max(0, min(int((t - slot.start) // step), count - 1))


def caption_text_at(
    t: float,
    slot: TimelineSlot,
    words: Sequence[WordTimestamp],
    paint: CaptionPaint,
) -> Optional[CaptionText]:
    """Select what to show at ``t``: the word window if timestamps cover it, else the slot text."""
    window = word_window(words, t * 1000.0) if words else None
    if window is not None:
        shown, active = window
        tokens: List[CaptionToken] = []
        for idx, word in enumerate(shown):
            for piece in normalize_caption_text(word.word).split():
                if idx == active:
                    tokens.append(CaptionToken(piece.upper(), True))
                else:
                    tokens.append(CaptionToken(piece.lower(), False))
        if tokens:
            return CaptionText(tuple(tokens), word_synced=True)

    text = normalize_caption_text(slot.segment.caption_text)
    if not text:
        return None
    pieces = text.split(" ")
    highlight = _spread_index(slot, t, len(pieces)) if paint.highlight else None
    return CaptionText(tuple(CaptionToken(p, i == highlight) for i, p in enumerate(pieces)))


# -----------------------------
# Measurement and layout
# -----------------------------


def _font_scale(face: int, font_px: int, thickness: int) -> float:
    try:
        return float(cv2.getFontScaleFromHeight(face, int(font_px), int(thickness)))
    except Exception:
        return font_px / 30.0


class TextMeasurer:
    """Width/height of caption runs for one font setting.

    Falls back to equal per-character widths when OpenCV cannot measure, and
    stays on the estimate for the rest of the render so lines stay stable.
    """

    def __init__(self, paint: CaptionPaint, font_px: int) -> None:
        self.face = paint.font_face
        self.font_px = font_px
        self.thickness = max(1, int(round(paint.weight * font_px / 48.0)))
        self.scale = _font_scale(self.face, font_px, self.thickness)
        self.monospace = paint.monospace
        self.estimated = False
        self.cell = self._raw_width("M", self.thickness) if paint.monospace else 0

    def _raw_width(self, text: str, thickness: int) -> int:
        if not self.estimated:
            try:
                (w, _), _ = cv2.getTextSize(text, self.face, self.scale, thickness)
                return int(w)
            except Exception as exc:
                LOGGER.warning("font metrics unavailable, estimating widths: %s", exc)
                self.estimated = True
        return int(round(len(text) * self.font_px * ESTIMATED_CHAR_WIDTH))

    def thickness_for(self, token: CaptionToken) -> int:
        return self.thickness + (1 if token.highlighted else 0)

    def token_width(self, token: CaptionToken) -> int:
        if self.monospace:
            return len(token.text) * self.cell
        return self._raw_width(token.text, self.thickness_for(token))

    @property
    def space_width(self) -> int:
        if self.monospace:
            return self.cell
        return self._raw_width(" ", self.thickness)

    def run_width(self, tokens: Sequence[CaptionToken]) -> int:
        if not tokens:
            return 0
        return sum(self.token_width(tok) for tok in tokens) + self.space_width * (len(tokens) - 1)

    def text_height(self) -> int:
        if not self.estimated:
            try:
                (_, h), _ = cv2.getTextSize("Hg", self.face, self.scale, self.thickness)
                return int(h)
            except Exception:
                self.estimated = True
        return int(round(self.font_px * 0.7))


def wrap_tokens(
    tokens: Sequence[CaptionToken],
    max_width: int,
    measurer: TextMeasurer,
) -> List[Tuple[CaptionToken, ...]]:
    """Greedy word wrap; a word wider than ``max_width`` gets a line of its own."""
    lines: List[Tuple[CaptionToken, ...]] = []
    cur: List[CaptionToken] = []
    for tok in tokens:
        test = cur + [tok]
        if cur and measurer.run_width(test) > max_width:
            lines.append(tuple(cur))
            cur = [tok]
        else:
            cur = test
    if cur:
        lines.append(tuple(cur))
    return lines


@dataclass(frozen=True, slots=True)
class CaptionLine:
    tokens: Tuple[CaptionToken, ...]
    x: int
    center_y: float
    width: int

    @property
    def text(self) -> str:
        return " ".join(tok.text for tok in self.tokens)


@dataclass(frozen=True)
class CaptionLayout:
    lines: Tuple[CaptionLine, ...]
    font_px: int
    line_height: float
    text_height: int
    paint: CaptionPaint
    measurer: TextMeasurer

    def baseline(self, line: CaptionLine) -> int:
        return int(round(line.center_y + self.text_height / 2.0))


def _anchor_y(config: CaptionStyleConfig, settings: RenderSettings, band: Optional[SubtitleBand]) -> float:
    if band is not None:
        return band.center_y
    if config.position is CaptionPosition.TOP:
        return float(CAPTION_TOP_Y)
    if config.position is CaptionPosition.CENTER:
        return settings.height / 2.0
    return float(settings.height - CAPTION_BOTTOM_OFFSET)


def layout_caption(
    caption: CaptionText,
    config: CaptionStyleConfig,
    settings: RenderSettings,
    paint: CaptionPaint,
    band: Optional[SubtitleBand] = None,
    measurer: Optional[TextMeasurer] = None,
) -> Optional[CaptionLayout]:
    """Wrap ``caption`` and place every line on the frame.

    Overlay captions hang from an anchor: Top lines start below it, Bottom
    lines end on it and Center lines straddle it. Captions in a subtitle band
    are centred in the band.
    """
    if paint.uppercase:
        caption = CaptionText(
            tuple(CaptionToken(tok.text.upper(), tok.highlighted) for tok in caption.tokens),
            caption.word_synced,
        )
    if not caption.tokens:
        return None
    font_px = max(8, int(round(config.font_px * paint.size_scale)))
    if measurer is None:
        measurer = TextMeasurer(paint, font_px)
    max_width = max(1, settings.width - CAPTION_SIDE_MARGIN_PX)
    wrapped = wrap_tokens(caption.tokens, max_width, measurer)
    if not wrapped:
        return None

    line_height = font_px * CAPTION_LINE_HEIGHT
    total_height = len(wrapped) * line_height
    anchor = _anchor_y(config, settings, band)
    if band is not None or config.position is CaptionPosition.CENTER:
        first_center = anchor - total_height / 2.0 + line_height / 2.0
    elif config.position is CaptionPosition.TOP:
        first_center = anchor + font_px / 2.0
    else:
        first_center = anchor - total_height + line_height - font_px / 2.0

    lines = []
    for idx, toks in enumerate(wrapped):
        width = measurer.run_width(toks)
        lines.append(
            CaptionLine(
                tokens=toks,
                x=int(round((settings.width - width) / 2.0)),
                center_y=first_center + idx * line_height,
                width=width,
            )
        )
    return CaptionLayout(
        lines=tuple(lines),
        font_px=font_px,
        line_height=line_height,
        text_height=measurer.text_height(),
        paint=paint,
        measurer=measurer,
    )


# -----------------------------
# Painting
# -----------------------------


def _blend(roi: np.ndarray, mask: np.ndarray, color: Tuple[int, int, int], alpha: float) -> None:
    if alpha <= 0 or not mask.any():
        return
    a = (mask.astype(np.float32) * (min(alpha, 1.0) / 255.0))[..., None]
    colored = np.empty_like(roi, dtype=np.float32)
    colored[:] = color
    mixed = roi.astype(np.float32) * (1.0 - a) + colored * a
    roi[:] = np.clip(mixed + 0.5, 0, 255).astype(np.uint8)


def _rounded_rect(mask: np.ndarray, x0: int, y0: int, x1: int, y1: int, radius: int) -> None:
    radius = max(0, min(radius, (x1 - x0) // 2, (y1 - y0) // 2))
    if radius == 0:
        cv2.rectangle(mask, (x0, y0), (x1, y1), 255, -1)
        return
    cv2.rectangle(mask, (x0 + radius, y0), (x1 - radius, y1), 255, -1)
    cv2.rectangle(mask, (x0, y0 + radius), (x1, y1 - radius), 255, -1)
    for cx, cy in ((x0 + radius, y0 + radius), (x1 - radius, y0 + radius),
                   (x0 + radius, y1 - radius), (x1 - radius, y1 - radius)):
        cv2.circle(mask, (cx, cy), radius, 255, -1, cv2.LINE_AA)


class CaptionPainter:
    """Draws a :class:`CaptionLayout` onto a BGR canvas in place."""

    def __init__(self, config: CaptionStyleConfig, band: Optional[SubtitleBand] = None) -> None:
        self.config = config
        self.band = band
        self.fill_bgr = hex_to_bgr(config.text_color, (255, 255, 255))

    def _margin(self, layout: CaptionLayout) -> int:
        paint = layout.paint
        extra = CAPTION_BG_PADDING
        if paint.box:
            extra = max(extra, paint.box.pad_x, paint.box.pad_y) + paint.box.border_px
        for fx in (paint.shadow, paint.glow):
            if fx:
                extra = max(extra, fx.blur * 3 + abs(fx.offset_x) + abs(fx.offset_y))
        for stroke in paint.strokes:
            extra = max(extra, stroke.width)
        return extra + paint.outline_px + 4

    def _text_mask(self, shape, layout: CaptionLayout, origin: Tuple[int, int], *,
                   dx: int = 0, dy: int = 0, extra: int = 0, only=None) -> np.ndarray:
        mask = np.zeros(shape[:2], dtype=np.uint8)
        m = layout.measurer
        ox, oy = origin
        for line in layout.lines:
            x_cursor = line.x - ox + dx
            y = layout.baseline(line) - oy + dy
            for tok in line.tokens:
                width = m.token_width(tok)
                if only is None or only(tok):
                    thickness = m.thickness_for(tok) + extra
                    if m.monospace:
                        for i, ch in enumerate(tok.text):
                            cv2.putText(mask, ch, (x_cursor + i * m.cell, y), m.face, m.scale,
                                        255, thickness, cv2.LINE_AA)
                    else:
                        cv2.putText(mask, tok.text, (x_cursor, y), m.face, m.scale,
                                    255, thickness, cv2.LINE_AA)
                x_cursor += width + m.space_width
        return mask

    def _box_mask(self, shape, layout: CaptionLayout, origin, pad_x: int, pad_y: int,
                  radius: int, grow: int = 0) -> np.ndarray:
        mask = np.zeros(shape[:2], dtype=np.uint8)
        ox, oy = origin
        half = layout.font_px / 2.0
        for line in layout.lines:
            x0 = int(line.x - pad_x - grow) - ox
            x1 = int(line.x + line.width + pad_x + grow) - ox
            y0 = int(round(line.center_y - half - pad_y - grow)) - oy
            y1 = int(round(line.center_y + half + pad_y + grow)) - oy
            _rounded_rect(mask, x0, y0, x1, y1, radius + grow)
        return mask

    def _effect(self, roi, layout, origin, fx: Shadow, extra: int) -> None:
        mask = self._text_mask(roi.shape, layout, origin, dx=fx.offset_x, dy=fx.offset_y, extra=extra)
        if fx.blur > 0:
            mask = cv2.GaussianBlur(mask, (0, 0), sigmaX=max(0.5, fx.blur / 2.0))
        _blend(roi, mask, hex_to_bgr(fx.color), fx.alpha)

    def paint(self, canvas: np.ndarray, layout: CaptionLayout) -> None:
        paint = layout.paint
        frame_h, frame_w = canvas.shape[:2]
        margin = self._margin(layout)
        top = min(line.center_y for line in layout.lines) - layout.line_height
        bottom = max(line.center_y for line in layout.lines) + layout.line_height
        y0 = max(0, int(top) - margin)
        y1 = min(frame_h, int(bottom) + margin)
        x0 = max(0, min(line.x for line in layout.lines) - margin)
        x1 = min(frame_w, max(line.x + line.width for line in layout.lines) + margin)
        if y1 <= y0 or x1 <= x0:
            return
        roi = canvas[y0:y1, x0:x1]
        origin = (x0, y0)

        # Per-line background only in overlay mode; the band has its own fill
        if self.config.background_color and self.band is None:
            mask = self._box_mask(roi.shape, layout, origin, CAPTION_BG_PADDING, CAPTION_BG_PADDING, 0)
            _blend(roi, mask, hex_to_bgr(self.config.background_color), 1.0)

        if paint.box:
            box = paint.box
            if box.border_color and box.border_px:
                border = self._box_mask(roi.shape, layout, origin, box.pad_x, box.pad_y, box.radius,
                                        grow=box.border_px)
                _blend(roi, border, hex_to_bgr(box.border_color), 1.0)
            mask = self._box_mask(roi.shape, layout, origin, box.pad_x, box.pad_y, box.radius)
            _blend(roi, mask, hex_to_bgr(box.color), box.alpha)

        if paint.glow:
            self._effect(roi, layout, origin, paint.glow, extra=2)
        if paint.shadow:
            self._effect(roi, layout, origin, paint.shadow, extra=0)

        for stroke in paint.strokes:
            mask = self._text_mask(roi.shape, layout, origin, extra=stroke.width)
            _blend(roi, mask, hex_to_bgr(stroke.color), stroke.alpha)

        if paint.outline_px:
            o = paint.outline_px
            outline = np.zeros(roi.shape[:2], dtype=np.uint8)
            for dx, dy in ((-o, -o), (o, -o), (-o, o), (o, o)):
                np.maximum(outline, self._text_mask(roi.shape, layout, origin, dx=dx, dy=dy), out=outline)
            _blend(roi, outline, hex_to_bgr(paint.outline_color), 1.0)

        fill = hex_to_bgr(paint.fill, self.fill_bgr) if paint.fill else self.fill_bgr
        if paint.highlight:
            plain = self._text_mask(roi.shape, layout, origin, only=lambda tok: not tok.highlighted)
            lit = self._text_mask(roi.shape, layout, origin, only=lambda tok: tok.highlighted)
            _blend(roi, plain, fill, paint.fill_alpha)
            _blend(roi, lit, hex_to_bgr(paint.highlight), paint.fill_alpha)
        else:
            mask = self._text_mask(roi.shape, layout, origin)
            _blend(roi, mask, fill, paint.fill_alpha)


class CaptionEngine:
    """Per-render caption state: style, band geometry and a layout cache."""

    def __init__(
        self,
        config: CaptionStyleConfig,
        settings: RenderSettings,
        word_timestamps: Sequence[WordTimestamp] = (),
    ) -> None:
        self.config = config
        self.settings = settings
        self.words = tuple(sorted(word_timestamps, key=lambda w: w.start_ms))
        self.paint_recipe = get_paint(config)
        self.band = subtitle_band(config, settings)
        self.painter = CaptionPainter(config, self.band)
        self._measurer: Optional[TextMeasurer] = None
        self._cache_key: Optional[Tuple[CaptionToken, ...]] = None
        self._cache_layout: Optional[CaptionLayout] = None

    @property
    def enabled(self) -> bool:
        return self.settings.captions_enabled and self.paint_recipe.draws

    def caption_at(self, t: float, slot: TimelineSlot) -> Optional[CaptionText]:
        if not self.enabled:
            return None
        return caption_text_at(t, slot, self.words, self.paint_recipe)

    def layout_at(self, t: float, slot: TimelineSlot) -> Optional[CaptionLayout]:
        caption = self.caption_at(t, slot)
        if caption is None:
            return None
        if caption.tokens == self._cache_key:
            return self._cache_layout
        if self._measurer is None:
            font_px = max(8, int(round(self.config.font_px * self.paint_recipe.size_scale)))
            self._measurer = TextMeasurer(self.paint_recipe, font_px)
        layout = layout_caption(caption, self.config, self.settings, self.paint_recipe,
                                self.band, self._measurer)
        self._cache_key, self._cache_layout = caption.tokens, layout
        return layout

    def draw(self, canvas: np.ndarray, t: float, slot: TimelineSlot) -> bool:
        """Paint the caption for ``t`` onto ``canvas``; returns whether anything was drawn."""
        layout = self.layout_at(t, slot)
        if layout is None:
            return False
        self.painter.paint(canvas, layout)
        return True


__all__ = [
    "SubtitleBand",
    "subtitle_band",
    "CaptionToken",
    "CaptionText",
    "active_word_index",
    "word_window",
    "caption_text_at",
    "TextMeasurer",
    "wrap_tokens",
    "CaptionLine",
    "CaptionLayout",
    "layout_caption",
    "CaptionPainter",
    "CaptionEngine",
]
