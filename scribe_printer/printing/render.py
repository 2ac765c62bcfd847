"""
Receipt content and rendering for Scribe Printer.

- Build the list job snapshot from the items of a list ("[x] text" lines)
- Resolve a TrueType font from config/env/common locations
- Word-wrap text to a pixel width and render notes into grayscale Pillow
  images suitable for ESC/POS printers
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Dict, List, Optional, Union

from PIL import Image, ImageDraw, ImageFont

logger = logging.getLogger(__name__)

CHECKED_MARK = "[x]"
UNCHECKED_MARK = "[ ]"

FontType = Union[ImageFont.FreeTypeFont, ImageFont.ImageFont]


# ----- Job content -----------------------------------------------------------


def format_item_line(item: Mapping[str, Any]) -> str:
    mark = CHECKED_MARK if item.get("checked") else UNCHECKED_MARK
    return f"{mark} {str(item.get('text') or '').strip()}"


def list_content(title: str, items: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Snapshot of a list for a print job: the title plus one pre-rendered line
    per item, in the order given.
    """
    return {"title": str(title or "").strip(), "items": [format_item_line(i) for i in items]}


def message_content(message: str) -> Dict[str, Any]:
    return {"message": str(message or "").strip()}


# ----- Fonts and wrapping ----------------------------------------------------


def _measure_text(font: FontType, text: str) -> tuple[int, int]:
    """
    Text measurement across Pillow font types: getbbox() first, getmask() as fallback.
    """
    try:
        bbox = font.getbbox(text)
        return int(bbox[2] - bbox[0]), int(bbox[3] - bbox[1])
    except AttributeError:
        mask = font.getmask(text)  # type: ignore[attr-defined]
        return int(mask.size[0]), int(mask.size[1])


def resolve_font(config: Optional[Mapping[str, Any]], font_size: int) -> FontType:
    """
    Resolve a TTF font, preferring:
    1) config["font_path"]
    2) SCRIBE_FONT_PATH
    3) common system fonts (DejaVu, FreeSans, Liberation, Noto)
    Falls back to Pillow's default font.
    """
    candidates: List[str] = []
    cfg_path = (config or {}).get("font_path")
    if isinstance(cfg_path, str) and cfg_path.strip():
        candidates.append(cfg_path.strip())
    env_path = os.environ.get("SCRIBE_FONT_PATH")
    if env_path and env_path not in candidates:
        candidates.append(env_path)

    common: Sequence[str] = (
        "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
        "/usr/share/fonts/truetype/freefont/FreeSans.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
        "/usr/share/fonts/truetype/noto/NotoSans-Regular.ttf",
        "/usr/share/fonts/dejavu/DejaVuSans.ttf",
        "/usr/share/fonts/TTF/DejaVuSans.ttf",
    )
    for pth in common:
        if pth not in candidates:
            candidates.append(pth)

    for pth in candidates:
        try:
            return ImageFont.truetype(pth, font_size)
        except OSError:
            continue

    logger.debug("No TrueType font found; using Pillow default font")
    try:
        return ImageFont.load_default(size=font_size)
    except TypeError:
        # Pillow < 10.1 has no sized default font
        return ImageFont.load_default()


def _break_long_word(word: str, font: FontType, max_width: int) -> List[str]:
    result: List[str] = []
    current = ""
    for char in word:
        test = current + char
        w, _ = _measure_text(font, test)
        if w <= max_width or not current:
            current = test
        else:
            result.append(current)
            current = char
    if current:
        result.append(current)
    return result or [""]


def wrap_text(text: str, font: FontType, max_width: int) -> List[str]:
    """
    Greedy word-wrapping to a pixel width. Words wider than a line are split
    by character. Explicit newlines are kept.
    """
    if not text:
        return [""]

    lines: List[str] = []
    for paragraph in text.splitlines() or [""]:
        current = ""
        for word in paragraph.split():
            test = current + (" " if current else "") + word
            w, _ = _measure_text(font, test)
            if w <= max_width:
                current = test
                continue
            if current:
                lines.append(current)
                current = ""
            w_word, _ = _measure_text(font, word)
            if w_word <= max_width:
                current = word
            else:
                pieces = _break_long_word(word, font, max_width)
                lines.extend(pieces[:-1])
                current = pieces[-1]
        lines.append(current)
    return lines or [""]


def render_message_image(text: str, config: Optional[Mapping[str, Any]] = None) -> Image.Image:
    """
    Render a note into an 'L' mode image (black=0, white=255).

    Config keys used (with defaults):
      - receipt_width: int (default 512)
      - message_font_size: int (default 48)
      - print_left_margin / print_right_margin / print_top_margin / print_bottom_margin
      - font_path: optional, resolved by resolve_font()
    """
    cfg = config or {}
    width = int(cfg.get("receipt_width", 512))
    font_size = int(cfg.get("message_font_size", 48))
    left_margin = int(cfg.get("print_left_margin", 16))
    right_margin = int(cfg.get("print_right_margin", 16))
    top_margin = int(cfg.get("print_top_margin", 12))
    bottom_margin = int(cfg.get("print_bottom_margin", 16))
    extra_spacing = 8

    max_text_width = max(1, width - (left_margin + right_margin))
    font = resolve_font(cfg, font_size)
    lines = wrap_text(text or "", font, max_text_width)

    _, line_height = _measure_text(font, "Ag")
    line_height = max(1, line_height)

    img_height = top_margin + bottom_margin + (line_height + extra_spacing) * len(lines)
    img = Image.new("L", (width, img_height), 255)
    draw = ImageDraw.Draw(img)

    y = top_margin
    for line in lines:
        draw.text((left_margin, y), line, font=font, fill=0)
        y += line_height + extra_spacing
    return img


__all__ = [
    "CHECKED_MARK",
    "UNCHECKED_MARK",
    "format_item_line",
    "list_content",
    "message_content",
    "render_message_image",
    "resolve_font",
    "wrap_text",
]
