"""lyricreel encoder package: the shared ffmpeg handle and its per-job workspaces."""
import atexit
import threading

# Module-level lock serializing jobs on the shared encoder.
# Encoder acquires this on __enter__ and releases on __exit__.
ENCODER_LOCK: threading.Lock = threading.Lock()

from lyricreel.encoder.engine import Encoder  # noqa: E402
from lyricreel.encoder.storage import Workspace  # noqa: E402

_ENCODER: Encoder | None = None
_ENCODER_INIT_LOCK = threading.Lock()


def get_encoder() -> Encoder:
    """Return the process-wide encoder, creating it on first call.

    The instance is created unloaded; entering it with ``with`` loads it.
    """
    global _ENCODER
    with _ENCODER_INIT_LOCK:
        if _ENCODER is None:
            _ENCODER = Encoder()
            atexit.register(_ENCODER.close)
        return _ENCODER


__all__ = [
    "ENCODER_LOCK",
    "Encoder",
    "Workspace",
    "get_encoder",
]
