"""Scratch workspace owned by exactly one job execution."""

import logging
import shutil
import tempfile
import time
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

WORKSPACE_PREFIX = "hls-"


class ScratchWorkspace:
    """A uniquely named directory: ``input<ext>`` plus an ``output/`` tree.

    Use as a context manager; cleanup runs on every exit path and never
    raises, so it cannot mask the error that ended the job.
    """

    def __init__(self, root: Path, input_suffix: str = ".mp4"):
        self.root = Path(root)
        self.input_path = self.root / f"input{input_suffix}"
        self.output_dir = self.root / "output"

    @classmethod
    def create(cls, parent: Path, job_id, input_suffix: str = ".mp4") -> "ScratchWorkspace":
        parent = Path(parent)
        parent.mkdir(parents=True, exist_ok=True)
        root = Path(tempfile.mkdtemp(prefix=f"{WORKSPACE_PREFIX}{job_id}-", dir=parent))
        ws = cls(root, input_suffix=input_suffix or ".mp4")
        ws.output_dir.mkdir()
        logger.debug("Created scratch workspace %s", root)
        return ws

    def quality_dir(self, quality: str) -> Path:
        return self.output_dir / quality

    def cleanup(self) -> None:
        """Remove input file, output tree and root. Idempotent."""
        self._remove(self.input_path, "input file")
        self._remove(self.output_dir, "output directory")
        self._remove(self.root, "workspace")

    def _remove(self, path: Path, what: str) -> None:
        if not path.exists():
            return
        try:
            if path.is_dir():
                shutil.rmtree(path)
            else:
                path.unlink()
            logger.debug("Removed %s %s", what, path)
        except OSError as e:
            logger.error("Error removing %s %s: %s", what, path, e)

    def __enter__(self) -> "ScratchWorkspace":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    def __repr__(self):
        return f"ScratchWorkspace({str(self.root)!r})"


def sweep_stale_workspaces(parent: Path, older_than: float, now: Optional[float] = None) -> int:
    """Remove workspaces left behind by killed workers.

    Only directories older than ``older_than`` seconds are touched, so a
    job running in a sibling worker keeps its workspace.
    """
    parent = Path(parent)
    if not parent.exists():
        return 0

    now = now if now is not None else time.time()
    removed = 0
    for item in parent.iterdir():
        if not item.is_dir() or not item.name.startswith(WORKSPACE_PREFIX):
            continue
        try:
            age = now - item.stat().st_mtime
        except OSError:
            continue
        if age <= older_than:
            continue
        try:
            shutil.rmtree(item)
            removed += 1
            logger.info("[Cleanup] Removed orphaned scratch dir %s", item.name)
        except OSError as e:
            logger.warning("[Cleanup] Failed to remove orphaned dir %s: %s", item.name, e)

    if removed:
        logger.info("[Cleanup] Removed %d orphaned scratch dir(s)", removed)
    return removed
