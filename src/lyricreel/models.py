from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass
class Cue:
    """A single timed caption parsed from a subtitle document."""

    text: str           # Non-empty, lines joined with a single space
    start_s: float
    end_s: float        # Exclusive: active while start_s <= t < end_s

    def contains(self, t: float) -> bool:
        return self.start_s <= t < self.end_s


@dataclass
class StyledEvent:
    """One ASS dialogue record with encoder-clock timing (H:MM:SS.cc)."""

    start: str
    end: str
    text: str           # Lines joined with the ASS \N marker


@dataclass
class FrameDescriptor:
    """A sampled instant of the output video."""

    index: int
    time_s: float
    caption: str        # Empty string when no cue is active


@dataclass
class AudioAsset:
    data: bytes
    extension: str = "mp3"
    duration_s: Optional[float] = None  # Best-effort metadata; probed when missing

    @classmethod
    def from_path(cls, path: Path) -> "AudioAsset":
        return cls(data=path.read_bytes(), extension=path.suffix.lstrip(".") or "mp3")


@dataclass
class ImageAsset:
    data: bytes
    mime_type: Optional[str] = None

    @classmethod
    def from_path(cls, path: Path) -> "ImageAsset":
        mime = {
            ".png": "image/png",
            ".jpg": "image/jpeg",
            ".jpeg": "image/jpeg",
            ".webp": "image/webp",
        }.get(path.suffix.lower())
        return cls(data=path.read_bytes(), mime_type=mime)


@dataclass
class RenderedVideo:
    """Encoded container returned by the assemblers."""

    data: bytes
    frame_count: int
    duration_s: float
    mime_type: str = "video/mp4"
