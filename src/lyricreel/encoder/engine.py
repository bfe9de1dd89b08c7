"""Encoder: a long-lived handle around the ffmpeg/ffprobe binaries."""
import json
import logging
import shutil
import subprocess
import tempfile
import threading
import uuid
from collections import deque
from pathlib import Path
from typing import Callable, Optional

from lyricreel.config import get_ffmpeg_binary, get_ffprobe_binary
from lyricreel.encoder.storage import Workspace
from lyricreel.errors import DurationProbeFailure, EncoderInvocationError, EncoderLoadError

logger = logging.getLogger(__name__)

# Lines of ffmpeg stderr kept for error messages.
STDERR_TAIL_LINES = 20


class Encoder:
    """Context manager that serializes jobs on one ffmpeg installation.

    Acquires ENCODER_LOCK for the lifetime of the ``with`` block and loads
    the engine on first use. The loaded state (binary paths, working root)
    survives across jobs, including jobs that failed.

    Usage::

        with get_encoder() as encoder:
            video = assemble_video(encoder, image, audio, document, 50)

    """

    def __init__(
        self,
        ffmpeg_bin: Optional[str] = None,
        ffprobe_bin: Optional[str] = None,
        on_log: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.ffmpeg_bin = ffmpeg_bin or get_ffmpeg_binary()
        self.ffprobe_bin = ffprobe_bin or get_ffprobe_binary()
        self.on_log = on_log
        self.ffmpeg_path: Optional[str] = None
        self.ffprobe_path: Optional[str] = None
        self.version: Optional[str] = None
        self._root: Optional[Path] = None
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def working_root(self) -> Optional[Path]:
        """Directory holding the per-job workspaces; None until loaded."""
        return self._root

    def __enter__(self) -> "Encoder":
        # Lazy import to avoid circular import at module level.
        from lyricreel.encoder import ENCODER_LOCK

        ENCODER_LOCK.acquire()
        try:
            self.load()
        except Exception:
            ENCODER_LOCK.release()
            raise
        return self

    def __exit__(self, *_: object) -> None:
        from lyricreel.encoder import ENCODER_LOCK

        ENCODER_LOCK.release()

    def _log(self, message: str) -> None:
        if self.on_log is not None:
            self.on_log(message)

    def load(self) -> None:
        """Locate and verify ffmpeg and create the working root. Idempotent."""
        if self._loaded:
            return

        self._log("Loading video engine...")
        ffmpeg_path = shutil.which(self.ffmpeg_bin)
        if ffmpeg_path is None:
            raise EncoderLoadError(f"'{self.ffmpeg_bin}' was not found")

        try:
            result = subprocess.run(
                [ffmpeg_path, "-hide_banner", "-version"],
                capture_output=True,
                text=True,
                check=True,
                timeout=30,
            )
        except subprocess.CalledProcessError as exc:
            raise EncoderLoadError(f"ffmpeg -version failed: {exc.stderr.strip()}") from exc
        except (subprocess.TimeoutExpired, OSError) as exc:
            raise EncoderLoadError(str(exc)) from exc

        self.ffmpeg_path = ffmpeg_path
        self.version = result.stdout.splitlines()[0] if result.stdout else "unknown"
        self.ffprobe_path = shutil.which(self.ffprobe_bin)
        if self.ffprobe_path is None:
            logger.warning("'%s' not found; audio durations will use the fallback", self.ffprobe_bin)

        self._root = Path(tempfile.mkdtemp(prefix="lyricreel-"))
        self._loaded = True
        logger.debug("Encoder loaded: %s (working root %s)", self.version, self._root)
        self._log("Engine ready!")

    def close(self) -> None:
        """Remove the working root. The encoder must be loaded again before reuse."""
        if self._root is not None:
            shutil.rmtree(self._root, ignore_errors=True)
        self._root = None
        self._loaded = False

    def open_workspace(self) -> Workspace:
        if not self._loaded or self._root is None:
            raise EncoderLoadError("FFmpeg not loaded")
        job_dir = self._root / f"job-{uuid.uuid4().hex}"
        job_dir.mkdir()
        return Workspace(job_dir)

    def probe_duration(self, path: Path) -> float:
        """Return the duration of the audio file at *path* in seconds.

        ffprobe reads a seekable file, not a pipe: OGG and CBR MP3 lengths
        come from the last page or the file size.

        Raises
        ------
        DurationProbeFailure
            If ffprobe is missing, rejects the data, or reports no duration.
        """
        ffprobe = self.ffprobe_path or shutil.which(self.ffprobe_bin)
        if ffprobe is None:
            raise DurationProbeFailure(f"'{self.ffprobe_bin}' was not found")

        cmd = [
            ffprobe,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            str(path),
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=True, timeout=60)
            info = json.loads(result.stdout)
            duration = float(info["format"]["duration"])
        except subprocess.CalledProcessError as exc:
            raise DurationProbeFailure(f"ffprobe exited with {exc.returncode} for {path.name}") from exc
        except (subprocess.TimeoutExpired, OSError) as exc:
            raise DurationProbeFailure(str(exc)) from exc
        except (KeyError, TypeError, ValueError) as exc:
            raise DurationProbeFailure(f"could not parse ffprobe output: {exc}") from exc

        if not duration > 0:
            raise DurationProbeFailure(f"ffprobe reported duration {duration}")
        return duration

    def run(
        self,
        args: list[str],
        workspace: Workspace,
        expected_duration_s: Optional[float] = None,
        on_progress: Optional[Callable[[float], None]] = None,
    ) -> None:
        """Run ffmpeg with *args* inside *workspace*.

        Progress is read from ``-progress pipe:1`` and reported as the ratio
        of encoded output time to *expected_duration_s*. Every stderr line
        goes to ``on_log`` unfiltered.

        Raises
        ------
        EncoderLoadError
            If the encoder is not loaded or the binary disappeared.
        EncoderInvocationError
            If ffmpeg exits non-zero; the stderr tail is attached.
        """
        if not self._loaded or self.ffmpeg_path is None:
            raise EncoderLoadError("FFmpeg not loaded")

        cmd = [self.ffmpeg_path, "-y", "-hide_banner", "-nostats", "-progress", "pipe:1", *args]
        logger.debug("ffmpeg: %s", " ".join(cmd))
        try:
            process = subprocess.Popen(
                cmd,
                cwd=workspace.root,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
            )
        except OSError as exc:
            raise EncoderLoadError(str(exc)) from exc

        stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)

        def _drain_stderr() -> None:
            for raw in process.stderr:
                line = raw.rstrip()
                if line:
                    stderr_tail.append(line)
                    self._log(line)

        drain = threading.Thread(target=_drain_stderr, daemon=True)
        drain.start()

        try:
            for raw in process.stdout:
                key, _, value = raw.strip().partition("=")
                if on_progress is None:
                    continue
                if key in ("out_time_us", "out_time_ms") and expected_duration_s:
                    try:
                        encoded_s = int(value) / 1_000_000
                    except ValueError:
                        continue  # "N/A" before the first packet
                    on_progress(min(1.0, max(0.0, encoded_s / expected_duration_s)))
                elif key == "progress" and value == "end":
                    on_progress(1.0)
        except BaseException:
            process.kill()
            process.wait()
            drain.join()
            raise

        returncode = process.wait()
        drain.join()

        if returncode != 0:
            detail = "\n".join(stderr_tail) or f"ffmpeg exited with code {returncode}"
            raise EncoderInvocationError(args[-1] if args else "output", detail)
