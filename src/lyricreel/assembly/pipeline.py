"""Frame-sequence video assembly.

Implements the default renderer:

1. Write the audio into a per-job workspace and resolve its duration
   (metadata, then ffprobe on that file, then a fixed fallback).
2. Parse the subtitle document into cues.
3. Sample the timeline at ``settings.fps`` and composite one JPEG per sample,
   reusing the previous frame while the caption is unchanged.
4. Encode once with ffmpeg (``-shortest`` against the audio).
5. Read the container back and delete every job artifact, on success and failure.

Progress budget: 0.00-0.05 setup, 0.05-0.45 frames, 0.50-0.95 encode,
1.0 once the output has been read and cleaned up.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, Optional

from PIL import Image

from lyricreel.config import RenderSettings, resolve_settings
from lyricreel.encoder import Encoder, Workspace
from lyricreel.errors import (
    CleanupFailure,
    DurationProbeFailure,
    EncoderInvocationError,
    EncoderLoadError,
)
from lyricreel.ingestion.subtitles import caption_at, parse_cues
from lyricreel.models import AudioAsset, Cue, FrameDescriptor, ImageAsset, RenderedVideo
from lyricreel.render.cache import FrameCache
from lyricreel.render.compositor import FrameCompositor, load_background

logger = logging.getLogger(__name__)

FRAME_NAME = "frame{index:05d}.jpg"
FRAME_PATTERN = "frame%05d.jpg"
OUTPUT_NAME = "output.mp4"

ProgressCallback = Callable[[float], None]


class ProgressReporter:
    """Clamp ratios to [0, 1] and drop anything that would move progress backwards."""

    def __init__(self, callback: Optional[ProgressCallback] = None) -> None:
        self._callback = callback
        self.value = 0.0

    def __call__(self, ratio: float) -> None:
        ratio = min(1.0, max(0.0, ratio))
        if ratio < self.value:
            return
        self.value = ratio
        if self._callback is not None:
            self._callback(ratio)

    def scaled(self, start: float, span: float) -> ProgressCallback:
        """Map a 0..1 sub-task ratio onto ``[start, start + span]``."""
        return lambda ratio: self(start + ratio * span)


@dataclass
class PipelineState:
    """Everything one job owns; :meth:`cleanup` releases all of it."""

    workspace: Workspace
    background: Optional[Image.Image] = None
    cache: Optional[FrameCache] = None
    artifacts: list[str] = field(default_factory=list)

    def write(self, name: str, data: bytes) -> None:
        self.artifacts.append(name)
        self.workspace.write_file(name, data)

    def cleanup(self) -> None:
        """Delete every artifact, ignoring individual failures."""
        failed = 0
        for name in self.artifacts:
            try:
                self.workspace.delete_file(name)
            except CleanupFailure as exc:
                failed += 1
                logger.debug("%s", exc)
        if failed:
            logger.debug("Cleanup skipped %d of %d artifacts", failed, len(self.artifacts))
        self.artifacts.clear()
        self.workspace.remove()
        self.background = None
        self.cache = None


def audio_artifact_name(extension: str) -> str:
    """``audio.<ext>`` with the extension hint normalized; ``mp3`` when unusable."""
    ext = extension.strip().lstrip(".").lower()
    if not re.fullmatch(r"[a-z0-9]+", ext):
        ext = "mp3"
    return f"audio.{ext}"


def resolve_duration(
    encoder: Encoder, audio: AudioAsset, audio_path: Path, settings: RenderSettings
) -> float:
    """Audio duration in seconds; never fails.

    Uses the asset's own metadata when present, then ffprobe on the
    already-written *audio_path*, then ``settings.fallback_duration_s``.
    """
    if audio.duration_s is not None and audio.duration_s > 0:
        return audio.duration_s
    try:
        return encoder.probe_duration(audio_path)
    except DurationProbeFailure as exc:
        logger.warning("%s; using %.0fs", exc, settings.fallback_duration_s)
        return settings.fallback_duration_s


def frame_descriptors(cues: list[Cue], total_frames: int, fps: int) -> Iterator[FrameDescriptor]:
    for index in range(total_frames):
        time_s = index / fps
        yield FrameDescriptor(index=index, time_s=time_s, caption=caption_at(cues, time_s))


def build_frames_command(audio_name: str, settings: RenderSettings) -> list[str]:
    return [
        "-framerate", str(settings.fps),
        "-i", FRAME_PATTERN,
        "-i", audio_name,
        "-c:v", settings.video_codec,
        "-preset", settings.preset,
        "-c:a", settings.audio_codec,
        "-b:a", settings.audio_bitrate,
        "-pix_fmt", settings.pix_fmt,
        "-shortest",
        OUTPUT_NAME,
    ]


def read_output(workspace: Workspace) -> bytes:
    try:
        return workspace.read_file(OUTPUT_NAME)
    except OSError as exc:
        raise EncoderInvocationError(OUTPUT_NAME, f"ffmpeg produced no readable output: {exc}") from exc


def assemble_video(
    encoder: Encoder,
    image: ImageAsset,
    audio: AudioAsset,
    document: str,
    position_pct: float = 50,
    on_progress: Optional[ProgressCallback] = None,
    settings: Optional[RenderSettings] = None,
) -> RenderedVideo:
    """Render a captioned video from a cover image, audio and subtitle document.

    Args:
        encoder: A loaded encoder; the caller holds it for the whole job.
        image: Cover image bytes.
        audio: Audio bytes with an extension hint and optional duration.
        document: SRT-style subtitle text, possibly malformed.
        position_pct: Vertical centre of the caption block, 0 (top) to 100 (bottom).
        on_progress: Receives non-decreasing ratios in [0, 1].
        settings: Render settings; defaults apply when omitted.

    Returns:
        RenderedVideo with the MP4 bytes.

    Raises:
        EncoderLoadError: If the encoder is not loaded.
        ImageDecodeError: If the cover image cannot be decoded.
        EncoderInvocationError: If ffmpeg fails.
    """
    settings = resolve_settings(settings)
    if not encoder.loaded:
        raise EncoderLoadError("FFmpeg not loaded")

    progress = ProgressReporter(on_progress)
    progress(0.01)

    state = PipelineState(workspace=encoder.open_workspace())
    try:
        cues = parse_cues(document)
        audio_name = audio_artifact_name(audio.extension)
        state.write(audio_name, audio.data)
        duration_s = resolve_duration(encoder, audio, state.workspace.path(audio_name), settings)
        logger.info("Audio duration %.2fs, %d cues", duration_s, len(cues))
        progress(0.05)

        fps = settings.fps
        total_frames = math.ceil(duration_s * fps)

        state.background = load_background(image.data, image.mime_type)
        state.cache = FrameCache(FrameCompositor(state.background, position_pct, settings))

        logger.info("Generating %d frames at %d fps", total_frames, fps)
        for frame in frame_descriptors(cues, total_frames, fps):
            state.write(FRAME_NAME.format(index=frame.index), state.cache.get(frame.caption))
            if frame.index % settings.progress_every == 0:
                progress(0.05 + (frame.index / total_frames) * 0.40)
        logger.debug(
            "Frames done: %d composited, %d reused", state.cache.misses, state.cache.hits
        )
        progress(0.45)

        state.artifacts.append(OUTPUT_NAME)
        encoder.run(
            build_frames_command(audio_name, settings),
            state.workspace,
            expected_duration_s=min(duration_s, total_frames / fps),
            on_progress=progress.scaled(0.50, 0.45),
        )
        progress(0.95)

        data = read_output(state.workspace)
    finally:
        state.cleanup()

    progress(1.0)
    return RenderedVideo(data=data, frame_count=total_frames, duration_s=duration_s)
