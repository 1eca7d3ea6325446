"""Paint recipes for each caption style.

Every :class:`CaptionStyle` maps to one immutable :class:`CaptionPaint`;
adding a style means adding a table entry, not another branch in the painter.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Optional, Tuple

import cv2

from ..config import CAPTION_HIGHLIGHT_HEX
from ..interfaces.session import CaptionStyle, CaptionStyleConfig


@dataclass(frozen=True, slots=True)
class Stroke:
    width: int
    color: str
    alpha: float = 1.0


@dataclass(frozen=True, slots=True)
class Shadow:
    offset_x: int
    offset_y: int
    blur: int
    color: str = "#000000"
    alpha: float = 1.0


@dataclass(frozen=True, slots=True)
class Box:
    color: str
    alpha: float = 1.0
    radius: int = 0
    pad_x: int = 20
    pad_y: int = 10
    border_color: Optional[str] = None
    border_px: int = 0


@dataclass(frozen=True, slots=True)
class CaptionPaint:
    draws: bool = True
    font: int = cv2.FONT_HERSHEY_SIMPLEX
    italic: bool = False
    # Glyph thickness at 48 px; scaled with the font size
    weight: int = 3
    size_scale: float = 1.0
    # ``None`` uses the configured caption text color
    fill: Optional[str] = None
    fill_alpha: float = 1.0
    strokes: Tuple[Stroke, ...] = ()
    # Hard outline drawn as four diagonal copies, in pixels
    outline_px: int = 0
    outline_color: str = "#000000"
    shadow: Optional[Shadow] = None
    glow: Optional[Shadow] = None
    box: Optional[Box] = None
    monospace: bool = False
    uppercase: bool = False
    highlight: Optional[str] = None

    @property
    def font_face(self) -> int:
        return self.font | cv2.FONT_ITALIC if self.italic else self.font


STYLE_PAINTS: Dict[CaptionStyle, CaptionPaint] = {
    CaptionStyle.NONE: CaptionPaint(draws=False),
    CaptionStyle.MODERN: CaptionPaint(
        weight=3,
        shadow=Shadow(0, 0, blur=6, alpha=0.8),
    ),
    CaptionStyle.OUTLINE: CaptionPaint(weight=3, outline_px=3),
    CaptionStyle.VIRAL_STRIKE: CaptionPaint(
        weight=4,
        strokes=(Stroke(18, "#ffffff", alpha=0.5), Stroke(10, "#000000")),
        uppercase=True,
    ),
    CaptionStyle.VIRAL_POP: CaptionPaint(
        weight=4,
        size_scale=1.1,
        fill="#ffff00",
        strokes=(Stroke(12, "#000000"),),
        uppercase=True,
    ),
    CaptionStyle.VIRAL_CLEAN: CaptionPaint(
        weight=3,
        shadow=Shadow(3, 3, blur=15, alpha=0.9),
    ),
    CaptionStyle.VIRAL_BOX: CaptionPaint(
        weight=3,
        box=Box("#000000", alpha=0.85, radius=8, pad_x=20, pad_y=10),
    ),
    CaptionStyle.KARAOKE: CaptionPaint(
        weight=4,
        highlight=CAPTION_HIGHLIGHT_HEX,
        shadow=Shadow(0, 2, blur=2, alpha=1.0),
    ),
    CaptionStyle.MINIMALIST: CaptionPaint(
        weight=1,
        size_scale=0.9,
        fill="#ffffff",
        fill_alpha=0.9,
    ),
    CaptionStyle.TYPEWRITER: CaptionPaint(weight=2, monospace=True),
    CaptionStyle.NEWS_TICKER: CaptionPaint(
        weight=2,
        monospace=True,
        uppercase=True,
        box=Box("#dc2626", pad_x=12, pad_y=6),
    ),
    CaptionStyle.COMIC_BOOK: CaptionPaint(
        weight=4,
        fill="#000000",
        uppercase=True,
        box=Box("#fde047", pad_x=12, pad_y=6, border_color="#000000", border_px=2),
    ),
    CaptionStyle.NEON_GLOW: CaptionPaint(
        weight=3,
        fill="#00ffff",
        glow=Shadow(0, 0, blur=20, color="#00ffff", alpha=0.9),
    ),
    CaptionStyle.CINEMATIC: CaptionPaint(
        font=cv2.FONT_HERSHEY_COMPLEX,
        weight=2,
        shadow=Shadow(0, 0, blur=8, alpha=0.6),
    ),
    CaptionStyle.SUBTITLE: CaptionPaint(
        weight=2,
        size_scale=0.9,
        box=Box("#000000", alpha=0.7, radius=4, pad_x=12, pad_y=6),
    ),
    CaptionStyle.HANDWRITTEN: CaptionPaint(
        font=cv2.FONT_HERSHEY_SCRIPT_SIMPLEX,
        italic=True,
        weight=2,
        shadow=Shadow(0, 2, blur=4, alpha=0.8),
    ),
}


def get_paint(config: CaptionStyleConfig) -> CaptionPaint:
    """Return the paint recipe for ``config``, folding in its custom colors.

    Falls back to the Modern look when the style is unknown. A custom outline
    color recolors an existing outline, or adds a 4 px stroke to styles that
    have none.
    """
    paint = STYLE_PAINTS.get(config.style, STYLE_PAINTS[CaptionStyle.MODERN])
    if not paint.draws or not config.outline_color:
        return paint
    if paint.outline_px:
        return replace(paint, outline_color=config.outline_color)
    if not paint.strokes:
        return replace(paint, strokes=(Stroke(4, config.outline_color),))
    return paint


__all__ = ["Stroke", "Shadow", "Box", "CaptionPaint", "STYLE_PAINTS", "get_paint"]
