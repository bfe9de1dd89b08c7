"""Pillow frame compositor: cover-fit background plus an outlined caption block."""
from __future__ import annotations

import io
import logging
from functools import lru_cache
from typing import Optional

from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError

from lyricreel.config import RenderSettings
from lyricreel.errors import ImageDecodeError

logger = logging.getLogger(__name__)

# Bold faces with CJK coverage first; lyrics are often Chinese or Japanese.
_FONT_CANDIDATES = (
    "/usr/share/fonts/opentype/noto/NotoSansCJK-Bold.ttc",
    "/usr/share/fonts/noto-cjk/NotoSansCJK-Bold.ttc",
    "/usr/share/fonts/google-noto-cjk/NotoSansCJK-Bold.ttc",
    "C:/Windows/Fonts/msyhbd.ttc",
    "/System/Library/Fonts/PingFang.ttc",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "/usr/share/fonts/TTF/DejaVuSans-Bold.ttf",
)


@lru_cache(maxsize=8)
def load_caption_font(size: int, font_path: Optional[str] = None) -> ImageFont.FreeTypeFont:
    """Return the caption font: *font_path*, then system candidates, then Pillow's default."""
    candidates = ((font_path,) if font_path else ()) + _FONT_CANDIDATES
    for path in candidates:
        try:
            return ImageFont.truetype(path, size)
        except OSError:
            if path == font_path:
                logger.warning("Caption font %s could not be loaded; using a system font", font_path)
            continue
    return ImageFont.load_default(size=size)


def load_background(data: bytes, mime_type: Optional[str] = None) -> Image.Image:
    """Decode *data* into an RGBA image. Raises ImageDecodeError."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            return img.convert("RGBA")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as exc:
        raise ImageDecodeError(str(exc) or type(exc).__name__, mime_type) from exc


def fit_cover(background: Image.Image, size: tuple[int, int]) -> Image.Image:
    """Black canvas of *size* with *background* scaled to cover it, centred."""
    width, height = size
    canvas = Image.new("RGB", size, (0, 0, 0))

    scale = max(width / background.width, height / background.height)
    scaled_w = max(1, round(background.width * scale))
    scaled_h = max(1, round(background.height * scale))
    scaled = background.resize((scaled_w, scaled_h), Image.Resampling.LANCZOS)

    offset = ((width - scaled_w) // 2, (height - scaled_h) // 2)
    if scaled.mode == "RGBA":
        canvas.paste(scaled, offset, scaled)
    else:
        canvas.paste(scaled, offset)
    return canvas


def wrap_caption(text: str, font: ImageFont.FreeTypeFont, max_width: float) -> list[str]:
    """Greedy character-level wrap; lyrics may have no spaces to break on."""
    lines: list[str] = []
    current = ""
    for char in text:
        candidate = current + char
        if font.getlength(candidate) > max_width and current:
            lines.append(current)
            current = char
        else:
            current = candidate
    if current:
        lines.append(current)
    return lines


def draw_caption(
    canvas: Image.Image,
    caption: str,
    position_pct: float,
    font: ImageFont.FreeTypeFont,
    settings: RenderSettings,
) -> None:
    """Draw *caption* centred on ``height * position_pct / 100``."""
    if not caption:
        return

    width, height = canvas.size
    lines = wrap_caption(caption, font, width - settings.wrap_margin_px)
    line_height = settings.font_size * settings.line_height_ratio
    total_height = len(lines) * line_height
    anchor_y = height * position_pct / 100
    start_y = anchor_y - total_height / 2 + line_height / 2

    draw = ImageDraw.Draw(canvas)
    for index, line in enumerate(lines):
        draw.text(
            (width / 2, start_y + index * line_height),
            line,
            font=font,
            fill=(255, 255, 255),
            stroke_width=settings.outline_px // 2,
            stroke_fill=(0, 0, 0),
            anchor="mm",
        )


def encode_jpeg(canvas: Image.Image, quality: int) -> bytes:
    buf = io.BytesIO()
    canvas.save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


def compose_frame(
    background: Image.Image,
    caption: str,
    position_pct: float,
    settings: RenderSettings,
    font: Optional[ImageFont.FreeTypeFont] = None,
) -> bytes:
    """Render one JPEG frame at the configured output resolution."""
    font = font or load_caption_font(settings.font_size, settings.font_path)
    canvas = fit_cover(background, (settings.width, settings.height))
    draw_caption(canvas, caption, position_pct, font, settings)
    return encode_jpeg(canvas, settings.jpeg_quality)


class FrameCompositor:
    """Composites frames for one job; the cover-fitted background is computed once.

    ``calls`` counts how many frames were actually rendered.
    """

    def __init__(
        self,
        background: Image.Image,
        position_pct: float,
        settings: RenderSettings,
        font: Optional[ImageFont.FreeTypeFont] = None,
    ) -> None:
        self.position_pct = position_pct
        self.settings = settings
        self.font = font or load_caption_font(settings.font_size, settings.font_path)
        self._base = fit_cover(background, (settings.width, settings.height))
        self.calls = 0

    def render(self, caption: str) -> bytes:
        self.calls += 1
        canvas = self._base.copy()
        draw_caption(canvas, caption, self.position_pct, self.font, self.settings)
        return encode_jpeg(canvas, self.settings.jpeg_quality)
