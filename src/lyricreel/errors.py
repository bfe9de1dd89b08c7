from pathlib import Path


class LyricReelError(Exception):
    """Base class for all lyricreel errors."""


class MalformedTimestamp(LyricReelError):
    def __init__(self, raw: str, detail: str) -> None:
        super().__init__(
            f"Cannot read timestamp '{raw}'.\n"
            f"  Cause: {detail}\n"
            f"  Check: Timestamps should look like HH:MM:SS,mmm, MM:SS,mmm or MM:SS."
        )
        self.raw = raw
        self.detail = detail


class SubtitleReadError(LyricReelError):
    def __init__(self, path: Path, detail: str) -> None:
        super().__init__(
            f"Cannot read subtitle file '{path.name}'.\n"
            f"  Cause: {detail}\n"
            f"  Check: Is the file a plain-text SRT document?\n"
            f"  Tip: Try re-saving the file as UTF-8 in a text editor."
        )
        self.path = path
        self.detail = detail


class ImageDecodeError(LyricReelError):
    def __init__(self, detail: str, mime_type: str | None = None) -> None:
        hint = f" ({mime_type})" if mime_type else ""
        super().__init__(
            f"Cannot decode the cover image{hint}.\n"
            f"  Cause: {detail}\n"
            f"  Check: Is the image a valid PNG, JPEG or WebP file?"
        )
        self.mime_type = mime_type
        self.detail = detail


class EncoderLoadError(LyricReelError):
    def __init__(self, detail: str) -> None:
        super().__init__(
            f"Engine load failed.\n"
            f"  Cause: {detail}\n"
            f"  Check: Is FFmpeg installed and in PATH?\n"
            f"  Tip: Set LYRICREEL_FFMPEG / LYRICREEL_FFPROBE to point at the binaries explicitly."
        )
        self.detail = detail


class EncoderInvocationError(LyricReelError):
    def __init__(self, output_name: str, detail: str) -> None:
        super().__init__(
            f"FFmpeg encode failed for '{output_name}'.\n"
            f"  Cause: {detail}\n"
            f"  Check: Is the audio file a format FFmpeg can decode?\n"
            f"  Tip: Re-run with --verbose to see the full encoder log."
        )
        self.output_name = output_name
        self.detail = detail


class DurationProbeFailure(LyricReelError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Could not determine audio duration: {detail}")
        self.detail = detail


class CleanupFailure(LyricReelError):
    def __init__(self, name: str, detail: str) -> None:
        super().__init__(f"Could not delete temporary artifact '{name}': {detail}")
        self.name = name
        self.detail = detail


class ConfigError(LyricReelError):
    def __init__(self, path: Path, detail: str) -> None:
        super().__init__(
            f"Cannot load settings '{path.name}'.\n"
            f"  Cause: {detail}\n"
            f"  Check: Is the file valid JSON matching the RenderSettings schema?"
        )
        self.path = path
        self.detail = detail
