"""Single-entry frame cache keyed on caption text.

Captions stay on screen for many consecutive samples, so re-encoding a
frame is only needed when the visible caption changes.
"""
from typing import Optional, Protocol


class _Renderer(Protocol):
    def render(self, caption: str) -> bytes: ...


class FrameCache:
    def __init__(self, compositor: _Renderer) -> None:
        self._compositor = compositor
        self._caption: Optional[str] = None
        self._frame: Optional[bytes] = None
        self.hits = 0
        self.misses = 0

    def get(self, caption: str) -> bytes:
        """Return frame bytes for *caption*, compositing only on a change."""
        if self._frame is not None and caption == self._caption:
            self.hits += 1
            return self._frame

        self.misses += 1
        self._frame = self._compositor.render(caption)
        self._caption = caption
        return self._frame

    def clear(self) -> None:
        self._caption = None
        self._frame = None
