from typing import Tuple

import colorama
from colorama import Fore, Style

colorama.init(autoreset=True)


def hex_to_bgr(value: str | None, fallback: Tuple[int, int, int] = (0, 0, 0)) -> Tuple[int, int, int]:
    """Return ``value`` (``#rgb`` or ``#rrggbb``) as a BGR tuple for OpenCV."""
    if not value:
        return fallback
    value = value.strip().lstrip('#')
    if len(value) == 3:
        value = ''.join(ch * 2 for ch in value)
    if len(value) != 6:
        return fallback
    try:
        r = int(value[0:2], 16)
        g = int(value[2:4], 16)
        b = int(value[4:6], 16)
    except ValueError:
        return fallback
    return (b, g, r)


def format_seconds(seconds: float) -> str:
    """Return ``seconds`` as ``m:ss`` for log lines."""
    seconds = max(0.0, seconds)
    return f"{int(seconds // 60)}:{int(seconds % 60):02d}"

__all__ = ["Fore", "Style", "hex_to_bgr", "format_seconds"]
