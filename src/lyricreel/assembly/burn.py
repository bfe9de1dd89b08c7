"""Styled-subtitle renderer: loop the cover as a still and burn an ASS script with libass."""
from __future__ import annotations

import logging
import math
from typing import Optional

from lyricreel.assembly.pipeline import (
    OUTPUT_NAME,
    PipelineState,
    ProgressCallback,
    ProgressReporter,
    audio_artifact_name,
    read_output,
    resolve_duration,
)
from lyricreel.config import RenderSettings, resolve_settings
from lyricreel.encoder import Encoder
from lyricreel.errors import EncoderLoadError
from lyricreel.ingestion.subtitles import build_styled_events, render_ass
from lyricreel.models import AudioAsset, ImageAsset, RenderedVideo
from lyricreel.render.compositor import encode_jpeg, fit_cover, load_background

logger = logging.getLogger(__name__)

COVER_NAME = "cover.jpg"
SUBTITLE_NAME = "subs.ass"


def build_burn_command(audio_name: str, settings: RenderSettings) -> list[str]:
    return [
        "-loop", "1",
        "-framerate", str(settings.fps),
        "-i", COVER_NAME,
        "-i", audio_name,
        "-vf", f"subtitles={SUBTITLE_NAME}",
        "-c:v", settings.video_codec,
        "-preset", settings.preset,
        "-tune", "stillimage",
        "-c:a", settings.audio_codec,
        "-b:a", settings.audio_bitrate,
        "-pix_fmt", settings.pix_fmt,
        "-shortest",
        OUTPUT_NAME,
    ]


def assemble_burned_video(
    encoder: Encoder,
    image: ImageAsset,
    audio: AudioAsset,
    document: str,
    on_progress: Optional[ProgressCallback] = None,
    settings: Optional[RenderSettings] = None,
) -> RenderedVideo:
    """Render a video whose captions are drawn by ffmpeg's ``subtitles`` filter.

    Uses the fixed ASS style from ``settings.ass_style``; the caption
    position of the frame renderer does not apply. Error and cleanup
    behaviour match :func:`lyricreel.assembly.pipeline.assemble_video`.
    """
    settings = resolve_settings(settings)
    if not encoder.loaded:
        raise EncoderLoadError("FFmpeg not loaded")

    progress = ProgressReporter(on_progress)
    progress(0.01)

    state = PipelineState(workspace=encoder.open_workspace())
    try:
        events = build_styled_events(document)
        audio_name = audio_artifact_name(audio.extension)
        state.write(audio_name, audio.data)
        duration_s = resolve_duration(encoder, audio, state.workspace.path(audio_name), settings)
        logger.info("Audio duration %.2fs, %d styled events", duration_s, len(events))
        progress(0.05)

        state.background = load_background(image.data, image.mime_type)
        cover = fit_cover(state.background, (settings.width, settings.height))
        state.write(COVER_NAME, encode_jpeg(cover, settings.jpeg_quality))
        state.write(SUBTITLE_NAME, render_ass(events, settings.ass_style).encode("utf-8"))
        progress(0.50)

        state.artifacts.append(OUTPUT_NAME)
        encoder.run(
            build_burn_command(audio_name, settings),
            state.workspace,
            expected_duration_s=duration_s,
            on_progress=progress.scaled(0.50, 0.45),
        )
        progress(0.95)

        data = read_output(state.workspace)
    finally:
        state.cleanup()

    progress(1.0)
    return RenderedVideo(
        data=data,
        frame_count=math.ceil(duration_s * settings.fps),
        duration_s=duration_s,
    )
