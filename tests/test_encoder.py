"""Unit tests for lyricreel.encoder.

All tests mock subprocess and shutil.which; no real FFmpeg calls are made.
"""

from __future__ import annotations

import json
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from lyricreel.encoder import ENCODER_LOCK, Encoder, Workspace, get_encoder
from lyricreel.errors import (
    CleanupFailure,
    DurationProbeFailure,
    EncoderInvocationError,
    EncoderLoadError,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _version_result() -> MagicMock:
    result = MagicMock()
    result.stdout = "ffmpeg version 6.1.1 Copyright (c) 2000-2023\nbuilt with gcc\n"
    return result


@pytest.fixture
def loaded_encoder():
    encoder = Encoder(ffmpeg_bin="ffmpeg", ffprobe_bin="ffprobe")
    with patch("lyricreel.encoder.engine.shutil.which", side_effect=lambda name: f"/usr/bin/{name}"), \
            patch("lyricreel.encoder.engine.subprocess.run", return_value=_version_result()):
        encoder.load()
    yield encoder
    encoder.close()


class FakeProcess:
    def __init__(self, stdout_lines: list[str], stderr_lines: list[str], returncode: int = 0) -> None:
        self.stdout = iter(stdout_lines)
        self.stderr = iter(stderr_lines)
        self._returncode = returncode
        self.killed = False

    def kill(self) -> None:
        self.killed = True
        self._returncode = -9

    def wait(self) -> int:
        return self._returncode


# ---------------------------------------------------------------------------
# load / lifecycle
# ---------------------------------------------------------------------------

class TestLoad:
    def test_load_success(self, loaded_encoder: Encoder) -> None:
        assert loaded_encoder.loaded
        assert loaded_encoder.ffmpeg_path == "/usr/bin/ffmpeg"
        assert loaded_encoder.ffprobe_path == "/usr/bin/ffprobe"
        assert loaded_encoder.version.startswith("ffmpeg version 6.1.1")

    def test_load_is_idempotent(self) -> None:
        encoder = Encoder(ffmpeg_bin="ffmpeg", ffprobe_bin="ffprobe")
        with patch("lyricreel.encoder.engine.shutil.which", return_value="/usr/bin/ffmpeg"), \
                patch("lyricreel.encoder.engine.subprocess.run", return_value=_version_result()) as mock_run:
            encoder.load()
            encoder.load()
        try:
            mock_run.assert_called_once()
        finally:
            encoder.close()

    def test_missing_ffmpeg_raises(self) -> None:
        encoder = Encoder(ffmpeg_bin="ffmpeg-does-not-exist")
        with patch("lyricreel.encoder.engine.shutil.which", return_value=None):
            with pytest.raises(EncoderLoadError) as exc_info:
                encoder.load()
        assert "ffmpeg-does-not-exist" in str(exc_info.value)
        assert not encoder.loaded

    def test_broken_ffmpeg_raises(self) -> None:
        encoder = Encoder(ffmpeg_bin="ffmpeg")
        with patch("lyricreel.encoder.engine.shutil.which", return_value="/usr/bin/ffmpeg"), \
                patch(
                    "lyricreel.encoder.engine.subprocess.run",
                    side_effect=subprocess.CalledProcessError(1, "ffmpeg", stderr="illegal instruction"),
                ):
            with pytest.raises(EncoderLoadError) as exc_info:
                encoder.load()
        assert "illegal instruction" in str(exc_info.value)

    def test_log_messages(self) -> None:
        messages: list[str] = []
        encoder = Encoder(ffmpeg_bin="ffmpeg", ffprobe_bin="ffprobe", on_log=messages.append)
        with patch("lyricreel.encoder.engine.shutil.which", return_value="/usr/bin/ffmpeg"), \
                patch("lyricreel.encoder.engine.subprocess.run", return_value=_version_result()):
            encoder.load()
        encoder.close()
        assert messages == ["Loading video engine...", "Engine ready!"]

    def test_close_removes_working_root(self, loaded_encoder: Encoder) -> None:
        workspace = loaded_encoder.open_workspace()
        root = workspace.root.parent
        loaded_encoder.close()
        assert not root.exists()
        assert not loaded_encoder.loaded


class TestContextManager:
    def test_lock_held_inside_block(self) -> None:
        encoder = Encoder()
        with patch.object(Encoder, "load"):
            with encoder:
                assert ENCODER_LOCK.locked()
        assert not ENCODER_LOCK.locked()

    def test_lock_released_on_load_failure(self) -> None:
        encoder = Encoder()
        with patch.object(Encoder, "load", side_effect=EncoderLoadError("boom")):
            with pytest.raises(EncoderLoadError):
                with encoder:
                    pass
        assert not ENCODER_LOCK.locked()

    def test_lock_released_when_job_fails(self) -> None:
        encoder = Encoder()
        with patch.object(Encoder, "load"):
            with pytest.raises(RuntimeError):
                with encoder:
                    raise RuntimeError("job failed")
        assert not ENCODER_LOCK.locked()

    def test_get_encoder_is_shared(self) -> None:
        assert get_encoder() is get_encoder()


# ---------------------------------------------------------------------------
# Workspace
# ---------------------------------------------------------------------------

class TestWorkspace:
    def test_unique_per_job(self, loaded_encoder: Encoder) -> None:
        first = loaded_encoder.open_workspace()
        second = loaded_encoder.open_workspace()
        assert first.root != second.root
        assert first.root.is_dir() and second.root.is_dir()

    def test_requires_loaded_encoder(self) -> None:
        with pytest.raises(EncoderLoadError):
            Encoder().open_workspace()

    def test_write_read_delete(self, tmp_path: Path) -> None:
        ws = Workspace(tmp_path)
        ws.write_file("frame00000.jpg", b"\xff\xd8")
        assert ws.read_file("frame00000.jpg") == b"\xff\xd8"
        assert ws.names() == ["frame00000.jpg"]
        ws.delete_file("frame00000.jpg")
        assert ws.names() == []

    def test_delete_missing_raises_cleanup_failure(self, tmp_path: Path) -> None:
        ws = Workspace(tmp_path)
        with pytest.raises(CleanupFailure):
            ws.delete_file("missing.jpg")

    def test_remove_non_empty(self, tmp_path: Path) -> None:
        root = tmp_path / "job"
        root.mkdir()
        ws = Workspace(root)
        ws.write_file("leftover.bin", b"x")
        ws.remove()
        assert not root.exists()
        ws.remove()  # already gone: no error


# ---------------------------------------------------------------------------
# probe_duration
# ---------------------------------------------------------------------------

class TestProbeDuration:
    @pytest.fixture
    def audio_file(self, tmp_path: Path) -> Path:
        path = tmp_path / "audio.ogg"
        path.write_bytes(b"OggS\x00fake")
        return path

    def test_parses_format_duration(self, loaded_encoder: Encoder, audio_file: Path) -> None:
        result = MagicMock()
        result.stdout = json.dumps({"format": {"duration": "10.031"}})
        with patch("lyricreel.encoder.engine.subprocess.run", return_value=result) as mock_run:
            assert loaded_encoder.probe_duration(audio_file) == pytest.approx(10.031)

        args, kwargs = mock_run.call_args
        cmd = args[0]
        assert cmd[0] == "/usr/bin/ffprobe"
        # A seekable file, never stdin: OGG and CBR MP3 need it for a duration.
        assert cmd[-1] == str(audio_file)
        assert "pipe:0" not in cmd
        assert "input" not in kwargs

    def test_ffprobe_failure(self, loaded_encoder: Encoder, audio_file: Path) -> None:
        with patch(
            "lyricreel.encoder.engine.subprocess.run",
            side_effect=subprocess.CalledProcessError(1, "ffprobe"),
        ):
            with pytest.raises(DurationProbeFailure) as exc_info:
                loaded_encoder.probe_duration(audio_file)
        assert "audio.ogg" in str(exc_info.value)

    def test_missing_duration(self, loaded_encoder: Encoder, audio_file: Path) -> None:
        result = MagicMock()
        result.stdout = json.dumps({"format": {}})
        with patch("lyricreel.encoder.engine.subprocess.run", return_value=result):
            with pytest.raises(DurationProbeFailure):
                loaded_encoder.probe_duration(audio_file)

    def test_zero_duration(self, loaded_encoder: Encoder, audio_file: Path) -> None:
        result = MagicMock()
        result.stdout = json.dumps({"format": {"duration": "0.000"}})
        with patch("lyricreel.encoder.engine.subprocess.run", return_value=result):
            with pytest.raises(DurationProbeFailure):
                loaded_encoder.probe_duration(audio_file)

    def test_missing_ffprobe(self, audio_file: Path) -> None:
        encoder = Encoder(ffprobe_bin="ffprobe-missing")
        with patch("lyricreel.encoder.engine.shutil.which", return_value=None):
            with pytest.raises(DurationProbeFailure):
                encoder.probe_duration(audio_file)


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------

class TestRun:
    def test_progress_and_logs(self, loaded_encoder: Encoder) -> None:
        logs: list[str] = []
        loaded_encoder.on_log = logs.append
        workspace = loaded_encoder.open_workspace()
        ratios: list[float] = []

        fake = FakeProcess(
            stdout_lines=[
                "out_time_us=N/A\n",
                "out_time_us=5000000\n",
                "progress=continue\n",
                "out_time_ms=10000000\n",
                "progress=end\n",
            ],
            stderr_lines=["Input #0, image2, from 'frame%05d.jpg':\n", "frame=   40 fps=0.0\n", "\n"],
        )
        with patch("lyricreel.encoder.engine.subprocess.Popen", return_value=fake) as mock_popen:
            loaded_encoder.run(["-i", "frame%05d.jpg", "output.mp4"], workspace, 10.0, ratios.append)

        cmd = mock_popen.call_args[0][0]
        assert cmd[0] == "/usr/bin/ffmpeg"
        assert cmd[cmd.index("-progress") + 1] == "pipe:1"
        assert cmd[-1] == "output.mp4"
        assert mock_popen.call_args[1]["cwd"] == workspace.root

        assert ratios == [pytest.approx(0.5), pytest.approx(1.0), pytest.approx(1.0)]
        # The encoder does not filter noisy lines; that is the consumer's job.
        assert logs == ["Input #0, image2, from 'frame%05d.jpg':", "frame=   40 fps=0.0"]

    def test_progress_clamped(self, loaded_encoder: Encoder) -> None:
        workspace = loaded_encoder.open_workspace()
        ratios: list[float] = []
        fake = FakeProcess(["out_time_us=12000000\n"], [])
        with patch("lyricreel.encoder.engine.subprocess.Popen", return_value=fake):
            loaded_encoder.run(["output.mp4"], workspace, 10.0, ratios.append)
        assert ratios == [1.0]

    def test_non_zero_exit_raises_with_stderr_tail(self, loaded_encoder: Encoder) -> None:
        workspace = loaded_encoder.open_workspace()
        fake = FakeProcess([], ["audio.mp3: Invalid data found when processing input\n"], returncode=1)
        with patch("lyricreel.encoder.engine.subprocess.Popen", return_value=fake):
            with pytest.raises(EncoderInvocationError) as exc_info:
                loaded_encoder.run(["-i", "audio.mp3", "output.mp4"], workspace)
        assert "Invalid data found" in str(exc_info.value)
        assert exc_info.value.output_name == "output.mp4"

    def test_requires_loaded_encoder(self, tmp_path: Path) -> None:
        with pytest.raises(EncoderLoadError):
            Encoder().run(["output.mp4"], Workspace(tmp_path))

    def test_encoder_reusable_after_failure(self, loaded_encoder: Encoder) -> None:
        workspace = loaded_encoder.open_workspace()
        with patch("lyricreel.encoder.engine.subprocess.Popen", return_value=FakeProcess([], ["boom\n"], 1)):
            with pytest.raises(EncoderInvocationError):
                loaded_encoder.run(["output.mp4"], workspace)
        with patch("lyricreel.encoder.engine.subprocess.Popen", return_value=FakeProcess([], [], 0)):
            loaded_encoder.run(["output.mp4"], workspace)
        assert loaded_encoder.loaded

    def test_callback_error_kills_ffmpeg(self, loaded_encoder: Encoder) -> None:
        workspace = loaded_encoder.open_workspace()
        fake = FakeProcess(["out_time_us=1000000\n", "out_time_us=2000000\n"], ["Input #0\n"])

        def _fail(_ratio: float) -> None:
            raise RuntimeError("progress sink closed")

        with patch("lyricreel.encoder.engine.subprocess.Popen", return_value=fake):
            with pytest.raises(RuntimeError):
                loaded_encoder.run(["output.mp4"], workspace, 10.0, _fail)
        assert fake.killed
