"""SRT-style subtitle parsing, normalization and ASS export.

The input is whatever a transcription service produced: blocks separated
by blank lines, an optional numeric index, one ``-->`` timing line and the
caption text. Anything that does not fit is dropped block by block; a bad
block never aborts the document.

Both :func:`parse_cues` and :func:`build_styled_events` walk the same
blocks with the same drop rules, so the ASS export always describes the
exact cue list the frame renderer sees.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterator, Optional

import pysubs2
from charset_normalizer import from_bytes

from lyricreel.config import AssStyle
from lyricreel.errors import MalformedTimestamp, SubtitleReadError
from lyricreel.ingestion.timestamps import (
    canonical_to_encoder_clock,
    canonicalize_timestamp,
    encoder_clock_to_ms,
    parse_timestamp,
)
from lyricreel.models import Cue, StyledEvent

logger = logging.getLogger(__name__)

ARROW = "-->"
ASS_NEWLINE = "\\N"

_BLOCK_SPLIT = re.compile(r"\r?\n(?:[ \t]*\r?\n)+")
_LINE_SPLIT = re.compile(r"\r?\n")


def _iter_blocks(document: str) -> Iterator[tuple[str, str, list[str]]]:
    """Yield ``(start_raw, end_raw, text_lines)`` for each block with a usable timing line."""
    for block in _BLOCK_SPLIT.split(document.strip()):
        lines = _LINE_SPLIT.split(block)

        timing_index = next((i for i, line in enumerate(lines) if ARROW in line), None)
        if timing_index is None:
            continue

        parts = [p.strip() for p in lines[timing_index].split(ARROW)]
        if len(parts) != 2:
            logger.debug("Dropping block with unsplittable timing line: %r", lines[timing_index])
            continue

        text_lines = [line.strip() for line in lines[timing_index + 1:] if line.strip()]
        if not text_lines:
            continue

        yield parts[0], parts[1], text_lines


def _parse_span(start_raw: str, end_raw: str) -> Optional[tuple[float, float]]:
    try:
        start_s = parse_timestamp(start_raw)
        end_s = parse_timestamp(end_raw)
    except MalformedTimestamp as exc:
        logger.debug("Dropping block: %s", exc.detail)
        return None
    if end_s < start_s:
        logger.debug("Dropping block ending before it starts: %s --> %s", start_raw, end_raw)
        return None
    return start_s, end_s


def parse_cues(document: str) -> list[Cue]:
    """Split *document* into cues, preserving document order.

    Blocks without a ``-->`` line, with an unreadable timing line, or with
    no text are silently skipped. No sorting by time is done.
    """
    cues: list[Cue] = []
    for start_raw, end_raw, text_lines in _iter_blocks(document):
        span = _parse_span(start_raw, end_raw)
        if span is None:
            continue
        cues.append(Cue(text=" ".join(text_lines), start_s=span[0], end_s=span[1]))

    logger.debug("Parsed %d cues", len(cues))
    return cues


def build_styled_events(document: str) -> list[StyledEvent]:
    """Return one ASS dialogue record per cue that :func:`parse_cues` would keep."""
    events: list[StyledEvent] = []
    for start_raw, end_raw, text_lines in _iter_blocks(document):
        if _parse_span(start_raw, end_raw) is None:
            continue
        events.append(
            StyledEvent(
                start=canonical_to_encoder_clock(canonicalize_timestamp(start_raw)),
                end=canonical_to_encoder_clock(canonicalize_timestamp(end_raw)),
                text=ASS_NEWLINE.join(text_lines),
            )
        )
    return events


def find_active_cue(cues: list[Cue], t: float) -> Optional[Cue]:
    """First cue in source order whose ``[start_s, end_s)`` contains *t*."""
    for cue in cues:
        if cue.contains(t):
            return cue
    return None


def caption_at(cues: list[Cue], t: float) -> str:
    cue = find_active_cue(cues, t)
    return cue.text if cue is not None else ""


def normalize_document(document: str) -> str:
    """Rewrite every timing line as ``HH:MM:SS,mmm --> HH:MM:SS,mmm``.

    Other lines pass through; a timing line that does not split into two
    parts is left as it was.
    """
    result: list[str] = []
    for line in _LINE_SPLIT.split(document):
        if ARROW in line:
            parts = [p.strip() for p in line.split(ARROW)]
            if len(parts) == 2:
                line = f"{canonicalize_timestamp(parts[0])} {ARROW} {canonicalize_timestamp(parts[1])}"
        result.append(line)
    return "\n".join(result)


def render_ass(events: list[StyledEvent], style: Optional[AssStyle] = None) -> str:
    """Serialize *events* into a complete ASS script using a single Default style."""
    style = style or AssStyle()

    subs = pysubs2.SSAFile()
    subs.info["Title"] = "Lyrics"
    subs.info["WrapStyle"] = "0"
    subs.info["ScaledBorderAndShadow"] = "yes"
    subs.info["YCbCr Matrix"] = "None"
    subs.info["PlayResX"] = str(style.play_res_x)
    subs.info["PlayResY"] = str(style.play_res_y)

    subs.styles["Default"] = pysubs2.SSAStyle(
        fontname=style.fontname,
        fontsize=style.fontsize,
        primarycolor=pysubs2.Color(255, 255, 255, 0),
        secondarycolor=pysubs2.Color(255, 0, 0, 0),
        outlinecolor=pysubs2.Color(0, 0, 0, 0),
        backcolor=pysubs2.Color(0, 0, 0, 0x80),
        bold=True,
        borderstyle=1,
        outline=style.outline,
        shadow=style.shadow,
        alignment=pysubs2.Alignment.BOTTOM_CENTER,
        marginl=style.margin_l,
        marginr=style.margin_r,
        marginv=style.margin_v,
    )

    for event in events:
        subs.append(
            pysubs2.SSAEvent(
                start=encoder_clock_to_ms(event.start),
                end=encoder_clock_to_ms(event.end),
                text=event.text,
                style="Default",
            )
        )

    logger.debug("Rendered ASS script with %d events", len(events))
    return subs.to_string("ass")


def read_subtitle_document(path: Path) -> str:
    """Read *path* as UTF-8, falling back to charset-normalizer detection.

    Raises
    ------
    SubtitleReadError
        If the file cannot be read or its encoding cannot be determined.
    """
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise SubtitleReadError(path, str(exc)) from exc

    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        pass

    # Not UTF-8: let charset-normalizer guess
    best = from_bytes(raw).best()
    if best is None:
        raise SubtitleReadError(path, "Could not determine file encoding. Re-save as UTF-8.")
    logger.debug("Decoded %s as %s", path.name, best.encoding)
    return str(best)
