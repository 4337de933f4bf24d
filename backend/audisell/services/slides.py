"""SVG slide rendering.

Slides are plain SVG documents: a solid background, the slide text word-wrapped
and vertically centred, an ``n/total`` counter in the top-right corner and,
for plans that carry it, the Audisell watermark.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Tuple
from xml.sax.saxutils import escape

from audisell.core.config import settings

DIMENSIONS: Dict[str, Tuple[int, int]] = {
    "POST_SQUARE": (1080, 1080),
    "POST_PORTRAIT": (1080, 1350),
    "STORY": (1080, 1920),
}

STYLES: Dict[str, Tuple[str, str]] = {
    # (background, text)
    "BLACK_WHITE": ("#0A0A0A", "#FFFFFF"),
    "WHITE_BLACK": ("#FFFFFF", "#0A0A0A"),
}

FONT_FAMILY = "Inter, system-ui, sans-serif"
HORIZONTAL_PADDING = 160
WATERMARK_LABEL = "Audisell"

_XML_ENTITIES = {'"': "&quot;", "'": "&apos;"}


def escape_xml(text: str) -> str:
    return escape(text, _XML_ENTITIES)


def font_size_for(text: str) -> int:
    length = len(text)
    size = 48
    if length > 150:
        size = 36
    if length > 250:
        size = 32
    if length < 50:
        size = 56
    return size


def wrap_text(text: str, font_size: int, max_width: float) -> List[str]:
    """Greedy word wrap using an average glyph width of half the font size."""
    lines: List[str] = []
    current = ""
    for word in text.split(" "):
        candidate = f"{current} {word}" if current else word
        if len(candidate) * font_size * 0.5 > max_width and current:
            lines.append(current)
            current = word
        else:
            current = candidate
    if current:
        lines.append(current)
    return lines


def _fmt(value: float) -> str:
    return f"{value:g}"


def _watermark(width: int, height: int, color: str) -> str:
    cx, cy = width / 2, height / 2
    return (
        f'<g opacity="0.15">'
        f'<text x="{_fmt(cx)}" y="{height - 40}" text-anchor="middle" fill="{color}" '
        f'font-family="{FONT_FAMILY}" font-size="24" font-weight="600">{WATERMARK_LABEL}</text>'
        f"</g>\n"
        f'  <g opacity="0.08" transform="rotate(-30 {_fmt(cx)} {_fmt(cy)})">'
        f'<text x="{_fmt(cx)}" y="{_fmt(cy - 100)}" text-anchor="middle" fill="{color}" '
        f'font-family="{FONT_FAMILY}" font-size="80" font-weight="700">DEMO</text>'
        f'<text x="{_fmt(cx)}" y="{_fmt(cy + 50)}" text-anchor="middle" fill="{color}" '
        f'font-family="{FONT_FAMILY}" font-size="40" font-weight="500">{escape_xml(settings.SITE_NAME)}</text>'
        f"</g>"
    )


def render_slide(
    text: str,
    number: int,
    total: int,
    format: str = "POST_SQUARE",
    style: str = "BLACK_WHITE",
    is_signature: bool = False,
    has_watermark: bool = False,
) -> str:
    if format not in DIMENSIONS:
        raise ValueError(f"Unknown slide format: {format}")
    if style not in STYLES:
        raise ValueError(f"Unknown slide style: {style}")
    width, height = DIMENSIONS[format]
    background, color = STYLES[style]

    font_size = font_size_for(text)
    lines = wrap_text(text, font_size, width - HORIZONTAL_PADDING)
    line_height = font_size * 1.4
    start_y = (height - len(lines) * line_height) / 2 + font_size
    weight = "700" if is_signature else "500"

    text_elements = "\n    ".join(
        f'<text x="{_fmt(width / 2)}" y="{_fmt(start_y + i * line_height)}" text-anchor="middle" '
        f'fill="{color}" font-family="{FONT_FAMILY}" font-size="{font_size}" '
        f'font-weight="{weight}">{escape_xml(line)}</text>'
        for i, line in enumerate(lines)
    )
    counter = (
        f'<text x="{width - 60}" y="60" text-anchor="end" fill="{color}" opacity="0.5" '
        f'font-family="{FONT_FAMILY}" font-size="28" font-weight="500">{number}/{total}</text>'
    )
    watermark = _watermark(width, height, color) if has_watermark else ""

    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        f'<svg width="{width}" height="{height}" viewBox="0 0 {width} {height}" '
        'xmlns="http://www.w3.org/2000/svg">\n'
        f'  <rect width="{width}" height="{height}" fill="{background}"/>\n'
        f"  {counter}\n"
        "  <g>\n"
        f"    {text_elements}\n"
        "  </g>\n"
        f"  {watermark}\n"
        "</svg>"
    )


def _value(raw: Any) -> str:
    return getattr(raw, "value", raw)


def render_carousel(
    script: Mapping[str, Any],
    format: Any = "POST_SQUARE",
    style: Any = "BLACK_WHITE",
    has_watermark: bool = False,
) -> List[str]:
    """Render every slide of ``script`` (``{"slides": [{"type", "text"}, ...]}``)."""
    slides = (script or {}).get("slides") or []
    if not slides:
        raise ValueError("No script provided")
    total = len(slides)
    return [
        render_slide(
            str(slide.get("text") or ""),
            index + 1,
            total,
            format=_value(format),
            style=_value(style),
            is_signature=slide.get("type") == "SIGNATURE",
            has_watermark=has_watermark,
        )
        for index, slide in enumerate(slides)
    ]
