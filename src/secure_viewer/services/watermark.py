# src/secure_viewer/services/watermark.py
"""Forensic watermarking of rendered pages.

The overlay text identifies the viewing session. It is tiled diagonally over
the whole page at low opacity so a cropped screenshot still carries it.
"""

from __future__ import annotations

import io
import math
import os
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache

from PIL import Image, ImageColor, ImageDraw, ImageFont

from secure_viewer.core.settings import settings
from secure_viewer.db.time import as_utc
from secure_viewer.schemas.document import WatermarkPolicy

FALLBACK_TEXT = "CONFIDENTIAL"
SEPARATOR = " | "
SESSION_PREFIX_CHARS = 8
OUTPUT_FORMAT = "PNG"

_FONT_CANDIDATES = (
    "/usr/share/fonts/truetype/dejavu/DejaVuSansMono.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationMono-Regular.ttf",
    "/System/Library/Fonts/Menlo.ttc",
    r"C:\Windows\Fonts\consola.ttf",
)


@dataclass(frozen=True)
class SessionFacts:
    """Facts about the viewing session that may be stamped on a page."""

    ip: str | None = None
    timestamp: datetime | None = None
    session_id: str | None = None


def format_timestamp(value: datetime) -> str:
    return as_utc(value).strftime("%Y-%m-%d %H:%M:%S UTC")


def watermark_text(facts: SessionFacts, policy: WatermarkPolicy) -> str:
    """Derive the overlay text from the enabled, available facts.

    Fields appear in a fixed order: IP, time, session prefix, custom text.
    """
    parts: list[str] = []
    if policy.show_ip and facts.ip:
        parts.append(f"IP: {facts.ip}")
    if policy.show_timestamp and facts.timestamp is not None:
        parts.append(f"Time: {format_timestamp(facts.timestamp)}")
    if policy.show_session_id and facts.session_id:
        parts.append(f"Session: {facts.session_id[:SESSION_PREFIX_CHARS]}")
    if policy.custom_text and policy.custom_text.strip():
        parts.append(policy.custom_text.strip())
    return SEPARATOR.join(parts) or FALLBACK_TEXT


@lru_cache(maxsize=8)
def _get_font(size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    """Load a monospace TrueType font, falling back to Pillow's bundled one."""
    for path in _FONT_CANDIDATES:
        if os.path.isfile(path):
            try:
                return ImageFont.truetype(path, size)
            except OSError:
                continue
    return ImageFont.load_default(size=size)


class WatermarkCompositor:
    """Stamps session-identifying text across a raster image."""

    def __init__(
        self,
        *,
        opacity: float | None = None,
        font_size: int | None = None,
        color: str | None = None,
        angle: float | None = None,
    ) -> None:
        self.opacity = settings.watermark_opacity if opacity is None else opacity
        self.font_size = settings.watermark_font_size if font_size is None else font_size
        self.color = settings.watermark_color if color is None else color
        self.angle = settings.watermark_angle if angle is None else angle
        if not 0.0 < self.opacity <= 1.0:
            raise ValueError("opacity must be in (0, 1]")
        if self.font_size < 1:
            raise ValueError("font_size must be positive")
        self._rgb = ImageColor.getrgb(self.color)[:3]

    def composite(
        self,
        image: Image.Image,
        facts: SessionFacts,
        policy: WatermarkPolicy,
    ) -> Image.Image:
        """Return a copy of ``image`` with the tiled watermark, same size."""
        text = watermark_text(facts, policy)
        width, height = image.size
        font = _get_font(self.font_size)

        left, top, right, bottom = font.getbbox(text)
        text_w = max(1, right - left)
        text_h = max(1, bottom - top)
        step_x = text_w + self.font_size * 4
        step_y = text_h + self.font_size * 3

        # Draw on a square canvas large enough that the rotated grid still
        # covers every corner, then crop back to the page.
        side = int(math.ceil(math.hypot(width, height))) + step_x
        tile = Image.new("RGBA", (side, side), (0, 0, 0, 0))
        draw = ImageDraw.Draw(tile)
        fill = (*self._rgb, int(round(255 * self.opacity)))

        for row, y in enumerate(range(-step_y, side, step_y)):
            offset = (step_x // 2) if row % 2 else 0
            for x in range(-step_x + offset, side, step_x):
                draw.text((x, y), text, fill=fill, font=font)

        rotated = tile.rotate(self.angle, resample=Image.Resampling.BICUBIC, expand=False)
        cx = (side - width) // 2
        cy = (side - height) // 2
        overlay = rotated.crop((cx, cy, cx + width, cy + height))

        base = image.convert("RGBA")
        stamped = Image.alpha_composite(base, overlay)
        return stamped.convert("RGB") if "A" not in image.getbands() else stamped

    @staticmethod
    def to_png(image: Image.Image) -> bytes:
        buffer = io.BytesIO()
        image.save(buffer, format=OUTPUT_FORMAT)
        return buffer.getvalue()

    def composite_bytes(
        self,
        raw: bytes,
        facts: SessionFacts,
        policy: WatermarkPolicy,
    ) -> bytes:
        """Decode any Pillow-readable image, stamp it, and encode as PNG."""
        with Image.open(io.BytesIO(raw)) as image:
            image.load()
            return self.to_png(self.composite(image, facts, policy))
