"""Tolerant timestamp parsing for loosely formatted SRT timing lines.

Transcription output frequently drops the hours field or mixes ``:``,
``,`` and ``.`` as separators, so a timestamp is split on all three and
interpreted by component count:

=====  ===============================================================
count  interpretation
=====  ===============================================================
4      ``H:MM:SS:mmm``
3      ``MM:SS:mmm`` when the last component is > 59 or exactly three
       characters wide, otherwise ``H:MM:SS``
2      ``MM:SS``
=====  ===============================================================

Any other count raises :class:`~lyricreel.errors.MalformedTimestamp`.
A component that is not a number counts as ``0`` so a single garbled
field never discards the whole cue.
"""

from __future__ import annotations

import re

from lyricreel.errors import MalformedTimestamp

_SEPARATORS = re.compile(r"[:,.]")
_LEADING_DIGITS = re.compile(r"\s*(\d+)")


def _to_int(component: str) -> int:
    """Leading-digit integer parse; anything unparsable is 0."""
    match = _LEADING_DIGITS.match(component)
    return int(match.group(1)) if match else 0


def _components(raw: str) -> tuple[int, int, int, int]:
    """Return ``(hours, minutes, seconds, milliseconds)`` for *raw*."""
    parts = _SEPARATORS.split(raw.strip())

    if len(parts) == 4:
        return _to_int(parts[0]), _to_int(parts[1]), _to_int(parts[2]), _to_int(parts[3])

    if len(parts) == 3:
        first, second, third = (_to_int(p) for p in parts)
        if third > 59 or len(parts[2]) == 3:
            return 0, first, second, third
        return first, second, third, 0

    if len(parts) == 2:
        return 0, _to_int(parts[0]), _to_int(parts[1]), 0

    raise MalformedTimestamp(raw, f"expected 2 to 4 components, found {len(parts)}")


def parse_timestamp(raw: str) -> float:
    """Convert a raw timestamp to seconds.

    >>> parse_timestamp("01:02:03,004")
    3723.004
    >>> parse_timestamp("01:02,500")
    62.5

    Raises
    ------
    MalformedTimestamp
        If *raw* does not split into 2, 3 or 4 components.
    """
    hours, minutes, seconds, ms = _components(raw)
    return hours * 3600 + minutes * 60 + seconds + ms / 1000


def canonicalize_timestamp(raw: str) -> str:
    """Reformat *raw* as strict ``HH:MM:SS,mmm``.

    Out-of-range fields carry into the next one (``00:75`` becomes
    ``00:01:15,000``) so every field keeps its fixed width and the result
    parses back to the same millisecond. Unrecognised shapes are returned
    stripped but otherwise unchanged.
    """
    try:
        hours, minutes, seconds, ms = _components(raw)
    except MalformedTimestamp:
        return raw.strip()

    total_ms = ((hours * 60 + minutes) * 60 + seconds) * 1000 + ms
    total_s, ms = divmod(total_ms, 1000)
    total_m, seconds = divmod(total_s, 60)
    hours, minutes = divmod(total_m, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d},{ms:03d}"


def to_encoder_clock(hhmmss: str, ms: str) -> str:
    """Convert ``HH:MM:SS`` plus a 3-digit ms fragment to ASS ``H:MM:SS.cc``."""
    hh, mm, ss = hhmmss.split(":")
    return f"{int(hh)}:{mm}:{ss}.{ms[:2]}"


def canonical_to_encoder_clock(canonical: str) -> str:
    """Convert a canonical ``HH:MM:SS,mmm`` string to ``H:MM:SS.cc``."""
    hhmmss, ms = canonical.split(",")
    return to_encoder_clock(hhmmss, ms)


def encoder_clock_to_ms(clock: str) -> int:
    """Read an ``H:MM:SS.cc`` string back into integer milliseconds."""
    hh, mm, rest = clock.split(":")
    ss, cc = rest.split(".")
    centis = int(cc.ljust(2, "0")[:2])
    return ((int(hh) * 60 + int(mm)) * 60 + int(ss)) * 1000 + centis * 10
