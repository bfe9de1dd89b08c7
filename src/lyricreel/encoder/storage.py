"""Per-job working storage inside the encoder's working root."""
import logging
import shutil
from pathlib import Path

from lyricreel.errors import CleanupFailure

logger = logging.getLogger(__name__)


class Workspace:
    """A directory owned by one job; ffmpeg runs with it as the working directory.

    Every job gets a fresh directory, so artifact names such as
    ``frame00000.jpg`` never collide between jobs.
    """

    def __init__(self, root: Path) -> None:
        self.root = root

    def path(self, name: str) -> Path:
        return self.root / name

    def write_file(self, name: str, data: bytes) -> None:
        (self.root / name).write_bytes(data)

    def read_file(self, name: str) -> bytes:
        return (self.root / name).read_bytes()

    def delete_file(self, name: str) -> None:
        """Delete *name*. Raises CleanupFailure if it cannot be removed."""
        try:
            (self.root / name).unlink()
        except OSError as exc:
            raise CleanupFailure(name, str(exc)) from exc

    def names(self) -> list[str]:
        if not self.root.exists():
            return []
        return sorted(p.name for p in self.root.iterdir())

    def remove(self) -> None:
        """Remove the workspace directory, ignoring anything that cannot be deleted."""
        try:
            self.root.rmdir()
        except FileNotFoundError:
            return
        except OSError:
            logger.debug("Workspace %s not empty; removing recursively", self.root)
            shutil.rmtree(self.root, ignore_errors=True)
