"""Render settings: one pydantic model shared by the compositor, encoder and CLI."""
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from lyricreel.errors import ConfigError


def _env_path(name: str) -> Optional[str]:
    value = os.environ.get(name)
    if value:
        return str(Path(value).expanduser())
    return None


class AssStyle(BaseModel):
    """The single caption style used by the burned-subtitle path."""
    play_res_x: int = Field(default=1920, gt=0)
    play_res_y: int = Field(default=1080, gt=0)
    fontname: str = "Arial"
    fontsize: float = Field(default=72.0, gt=0.0)
    outline: float = 4.0
    shadow: float = 2.0
    margin_l: int = 20
    margin_r: int = 20
    margin_v: int = 60


class RenderSettings(BaseModel):
    # Frame compositing
    width: int = Field(default=1280, gt=0)
    height: int = Field(default=720, gt=0)
    fps: int = Field(default=4, gt=0, description="Sampled frames per second of audio")
    font_size: int = Field(default=48, gt=0)
    font_path: Optional[str] = None
    line_height_ratio: float = Field(default=1.3, gt=0.0)
    wrap_margin_px: int = Field(default=60, ge=0, description="Caption max width is width - wrap_margin_px")
    outline_px: int = Field(default=6, ge=0, description="Full outline width; half is drawn outside the glyph")
    jpeg_quality: int = Field(default=90, ge=1, le=100)

    # Encoding
    video_codec: str = "libx264"
    preset: str = "ultrafast"
    pix_fmt: str = "yuv420p"
    audio_codec: str = "aac"
    audio_bitrate: str = "128k"

    # Pipeline
    fallback_duration_s: float = Field(default=180.0, gt=0.0)
    progress_every: int = Field(default=20, gt=0, description="Report frame progress every N frames")

    ass_style: AssStyle = Field(default_factory=AssStyle)


def resolve_settings(settings: Optional[RenderSettings] = None) -> RenderSettings:
    """Return *settings* (or defaults) with environment overrides applied.

    ``LYRICREEL_FONT`` replaces ``font_path`` when the settings leave it unset.
    """
    settings = settings or RenderSettings()
    if settings.font_path is None:
        env_font = _env_path("LYRICREEL_FONT")
        if env_font is not None:
            settings = settings.model_copy(update={"font_path": env_font})
    return settings


def load_settings(path: Path) -> RenderSettings:
    """Load and validate a RenderSettings JSON file. Raises ConfigError on failure."""
    try:
        settings = RenderSettings.model_validate_json(path.read_text(encoding="utf-8"))
    except ValidationError as e:
        field_errors = "; ".join(
            f"{' -> '.join(str(x) for x in err['loc'])}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigError(path, f"Schema validation failed: {field_errors}") from e
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(path, str(e)) from e
    return resolve_settings(settings)


def get_ffmpeg_binary() -> str:
    """Respects LYRICREEL_FFMPEG; falls back to ``ffmpeg`` on PATH."""
    return _env_path("LYRICREEL_FFMPEG") or "ffmpeg"


def get_ffprobe_binary() -> str:
    """Respects LYRICREEL_FFPROBE; falls back to ``ffprobe`` on PATH."""
    return _env_path("LYRICREEL_FFPROBE") or "ffprobe"
