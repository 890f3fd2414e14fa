"""
Scratch space management for vidseq.

Handles run-scoped temporary file allocation with path traversal protection.
Every pipeline run gets its own directory under the scratch root; every file
the pipeline creates is named by run, batch and segment so concurrent
workers never collide.
"""
import logging
import shutil
import uuid
from pathlib import Path

logger = logging.getLogger(__name__)


class ScratchSpace:
    """
    Allocate and clean up temporary files for one pipeline run.

    Layout:
    - {base_dir}/{run_id}/b{batch}_s{segment}_source.mp4 - Downloaded source
    - {base_dir}/{run_id}/b{batch}_s{segment}_norm.mp4 - Normalized clip
    - {base_dir}/{run_id}/batch_{batch}.mp4 - Concatenated batch output
    - {base_dir}/{run_id}/final.mp4 - Final merge output

    Use as a context manager: the run directory is removed on exit whether
    the run succeeded or failed.
    """

    def __init__(self, base_dir: str | Path, run_id: str | None = None):
        """
        Initialize ScratchSpace, creating the scratch root if absent.

        Args:
            base_dir: Root directory shared by all runs.
            run_id: Namespace for this run. A random one is generated if None.
        """
        self.base_dir = Path(base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self._run_dir: Path | None = None

    @property
    def run_dir(self) -> Path:
        """
        Get or create the run directory.

        Raises:
            ValueError: If run_id creates path outside base_dir (traversal attack)
        """
        if self._run_dir is None:
            run_dir = (self.base_dir / self.run_id).resolve()

            # Path traversal protection
            if not run_dir.is_relative_to(self.base_dir) or run_dir == self.base_dir:
                raise ValueError("Invalid run path")

            run_dir.mkdir(exist_ok=True)
            self._run_dir = run_dir
        return self._run_dir

    def source_path(self, batch_index: int, segment_index: int) -> Path:
        return self.run_dir / f"b{batch_index}_s{segment_index}_source.mp4"

    def clip_path(self, batch_index: int, segment_index: int) -> Path:
        return self.run_dir / f"b{batch_index}_s{segment_index}_norm.mp4"

    def batch_path(self, batch_index: int) -> Path:
        return self.run_dir / f"batch_{batch_index}.mp4"

    def final_path(self) -> Path:
        return self.run_dir / "final.mp4"

    @staticmethod
    def discard(*paths: Path | None) -> None:
        """Best-effort deletion of individual files."""
        for path in paths:
            if path is None:
                continue
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Failed to delete scratch file {path}: {e}")

    def cleanup(self) -> None:
        """Remove the run directory and anything left in it."""
        if self._run_dir is None:
            return
        shutil.rmtree(self._run_dir, ignore_errors=True)
        if self._run_dir.exists():
            logger.warning(f"Scratch directory not fully removed: {self._run_dir}")
        self._run_dir = None

    def __enter__(self) -> "ScratchSpace":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()
