"""lyricreel CLI entry point.

``render`` turns an audio file, a cover image and an SRT-style lyric file
into an MP4 with burned-in captions, showing a Rich progress bar and
human-readable error panels. ``normalize`` and ``to-ass`` expose the
subtitle tooling on its own.
"""

import logging
import os
import tempfile
from enum import Enum
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from lyricreel.assembly import assemble_burned_video, assemble_video
from lyricreel.config import load_settings, resolve_settings
from lyricreel.encoder import get_encoder
from lyricreel.errors import LyricReelError
from lyricreel.ingestion.subtitles import (
    build_styled_events,
    parse_cues,
    normalize_document,
    read_subtitle_document,
    render_ass,
)
from lyricreel.models import AudioAsset, ImageAsset

app = typer.Typer(
    name="lyricreel",
    help="lyricreel — Render a lyric video from audio, a cover image and subtitles.",
    add_completion=False,
)
console = Console()
err_console = Console(stderr=True)

_VALID_AUDIO_EXTS = {".mp3", ".wav", ".m4a", ".aac", ".ogg", ".flac"}
_VALID_IMAGE_EXTS = {".png", ".jpg", ".jpeg", ".webp"}
_VALID_SUBTITLE_EXTS = {".srt", ".txt"}


class Renderer(str, Enum):
    frames = "frames"
    ass = "ass"


def _input_error(message: str) -> None:
    err_console.print(Panel(message, title="[red]Input Error[/red]", border_style="red"))
    raise typer.Exit(1)


def _check_input(path: Path, valid_exts: set[str], kind: str) -> None:
    """Extension first, then existence, so a wrong type never shows a bare Click error."""
    if path.suffix.lower() not in valid_exts:
        _input_error(
            f"Unsupported {kind} format: [bold]{path.suffix or '(none)'}[/bold]\n"
            f"Supported formats: {', '.join(sorted(valid_exts))}"
        )
    if not path.exists():
        _input_error(
            f"File not found: [bold]{path}[/bold]\n"
            f"Check that the path is correct and the file is accessible."
        )


def _write_atomic(path: Path, data: bytes) -> None:
    """Write via tempfile + os.replace() so an existing output survives a failed write."""
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".part")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except Exception:
        Path(tmp_path).unlink(missing_ok=True)
        raise


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _report_error(exc: Exception) -> None:
    err_console.print(Panel(str(exc), title="[red]Pipeline Error[/red]", border_style="red"))
    raise typer.Exit(1)


@app.command()
def render(
    audio: Annotated[
        Path,
        typer.Argument(dir_okay=False, resolve_path=True, help="Audio track (MP3, WAV, M4A, AAC, OGG or FLAC)."),
    ],
    image: Annotated[
        Path,
        typer.Option("--image", "-i", dir_okay=False, resolve_path=True, help="Cover image (PNG, JPEG or WebP)."),
    ],
    subtitle: Annotated[
        Path,
        typer.Option("--subtitle", "-s", dir_okay=False, resolve_path=True, help="Lyric subtitles (SRT)."),
    ],
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", dir_okay=False, resolve_path=True, help="Output MP4 (default: <audio>_lyric_video.mp4)."),
    ] = None,
    position: Annotated[
        int,
        typer.Option("--position", "-p", min=0, max=100, help="Caption vertical centre, percent from the top."),
    ] = 50,
    renderer: Annotated[
        Renderer,
        typer.Option("--renderer", "-r", help="frames: composite every frame; ass: burn a styled ASS script."),
    ] = Renderer.frames,
    settings_file: Annotated[
        Optional[Path],
        typer.Option("--settings", dir_okay=False, resolve_path=True, help="RenderSettings JSON file."),
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", help="Show debug logging and the encoder log.")] = False,
) -> None:
    """Render a lyric video."""
    _setup_logging(verbose)

    _check_input(audio, _VALID_AUDIO_EXTS, "audio")
    _check_input(image, _VALID_IMAGE_EXTS, "image")
    _check_input(subtitle, _VALID_SUBTITLE_EXTS, "subtitle")
    if settings_file is not None and not settings_file.exists():
        _input_error(f"Settings file not found: [bold]{settings_file}[/bold]")

    if output is None:
        output = audio.parent / f"{audio.stem}_lyric_video.mp4"

    console.print(f"\n[bold cyan]lyricreel[/bold cyan] — [dim]{audio.name}[/dim]  renderer=[bold]{renderer.value}[/bold]\n")

    try:
        settings = load_settings(settings_file) if settings_file else resolve_settings()
        document = read_subtitle_document(subtitle)
        audio_asset = AudioAsset.from_path(audio)
        image_asset = ImageAsset.from_path(image)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Rendering video...", total=1.0)

            def _on_log(line: str) -> None:
                # Per-frame encoder statistics are noise on the console.
                if verbose and not line.startswith("frame="):
                    progress.console.print(f"[dim]{line}[/dim]")

            encoder = get_encoder()
            encoder.on_log = _on_log
            with encoder:
                if renderer is Renderer.ass:
                    video = assemble_burned_video(
                        encoder,
                        image_asset,
                        audio_asset,
                        document,
                        on_progress=lambda ratio: progress.update(task, completed=ratio),
                        settings=settings,
                    )
                else:
                    video = assemble_video(
                        encoder,
                        image_asset,
                        audio_asset,
                        document,
                        position_pct=position,
                        on_progress=lambda ratio: progress.update(task, completed=ratio),
                        settings=settings,
                    )
            progress.update(task, description="Render complete")

        _write_atomic(output, video.data)
    except (LyricReelError, OSError) as e:
        # Typed pipeline errors become a Rich panel, never a traceback.
        _report_error(e)

    console.print(Panel(
        f"[bold green]Render complete[/bold green]\n\n"
        f"  Output:   [dim]{output}[/dim]\n"
        f"  Frames:   {video.frame_count}\n"
        f"  Duration: {video.duration_s:.1f}s",
        title="[green]Video Ready[/green]",
        border_style="green",
    ))


@app.command()
def normalize(
    subtitle: Annotated[Path, typer.Argument(dir_okay=False, resolve_path=True, help="SRT file to clean up.")],
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", dir_okay=False, resolve_path=True, help="Output SRT (default: <input>.normalized.srt)."),
    ] = None,
) -> None:
    """Rewrite every timing line as HH:MM:SS,mmm --> HH:MM:SS,mmm."""
    _check_input(subtitle, _VALID_SUBTITLE_EXTS, "subtitle")
    if output is None:
        output = subtitle.with_name(f"{subtitle.stem}.normalized.srt")

    try:
        document = read_subtitle_document(subtitle)
        normalized = normalize_document(document)
        output.write_text(normalized, encoding="utf-8")
    except (LyricReelError, OSError) as e:
        _report_error(e)

    console.print(f"[green]Wrote {output.name}[/green] ({len(parse_cues(normalized))} cues)")


@app.command("to-ass")
def to_ass(
    subtitle: Annotated[Path, typer.Argument(dir_okay=False, resolve_path=True, help="SRT file to convert.")],
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", dir_okay=False, resolve_path=True, help="Output ASS (default: <input>.ass)."),
    ] = None,
    settings_file: Annotated[
        Optional[Path],
        typer.Option("--settings", dir_okay=False, resolve_path=True, help="RenderSettings JSON file."),
    ] = None,
) -> None:
    """Convert SRT lyrics to a styled ASS script."""
    _check_input(subtitle, _VALID_SUBTITLE_EXTS, "subtitle")
    if output is None:
        output = subtitle.with_suffix(".ass")

    try:
        settings = load_settings(settings_file) if settings_file else resolve_settings()
        events = build_styled_events(read_subtitle_document(subtitle))
        output.write_text(render_ass(events, settings.ass_style), encoding="utf-8")
    except (LyricReelError, OSError) as e:
        _report_error(e)

    console.print(f"[green]Wrote {output.name}[/green] ({len(events)} events)")


def main() -> None:
    app()
