"""Clip concatenation with the ffmpeg concat demuxer.

Joins already-normalized clips with stream copy (no re-encoding). This is
only valid because every input shares one TargetSpec. Used twice per run:
clips into a batch output, then batch outputs into the final file.

Manifest format, one line per input in playback order:
    file '/absolute/path/to/clip.mp4'
read with ``-f concat -safe 0`` since the paths are absolute.
"""

import logging
from pathlib import Path
from typing import Sequence

from vidseq.config import TranscoderConfig
from vidseq.pipeline.errors import ConcatError, TranscoderError
from vidseq.services.scratch import ScratchSpace
from vidseq.services.transcoder import ProcessRunner, run_process

logger = logging.getLogger(__name__)


def _quote(path: Path) -> str:
    # concat demuxer quoting: close quote, escaped quote, reopen
    return "'" + str(path).replace("'", "'\\''") + "'"


def write_manifest(paths: Sequence[Path], manifest_path: Path) -> Path:
    """Write the concat demuxer file list in the given order.

    Raises:
        ConcatError: If paths is empty
    """
    if not paths:
        raise ConcatError("Cannot build a concat manifest from zero clips")
    lines = [f"file {_quote(Path(p).resolve())}" for p in paths]
    manifest_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return manifest_path


class Concatenator:
    """Stream-copy concatenation with an ordered fallback list."""

    def __init__(self, config: TranscoderConfig, runner: ProcessRunner = run_process):
        self.config = config
        self.runner = runner

    def build_commands(self, manifest_path: Path, destination: Path) -> list[tuple[str, list[str]]]:
        """Concat attempts in order. All of them copy streams."""
        ffmpeg = self.config.ffmpeg_bin
        return [
            (
                "copy",
                [
                    ffmpeg, "-y",
                    "-f", "concat",
                    "-safe", "0",
                    "-i", str(manifest_path),
                    "-c", "copy",
                    str(destination),
                ],
            ),
            (
                "copy_genpts",
                [
                    ffmpeg, "-y",
                    "-fflags", "+genpts",
                    "-f", "concat",
                    "-safe", "0",
                    "-i", str(manifest_path),
                    "-c", "copy",
                    "-avoid_negative_ts", "make_zero",
                    str(destination),
                ],
            ),
        ]

    async def concat(self, paths: Sequence[Path], destination: Path) -> Path:
        """Join ``paths`` in order into ``destination``.

        The manifest is removed on every path; a partial destination is
        removed on failure. Inputs are left for the caller to delete.

        Raises:
            ConcatError: If paths is empty or every attempt fails
        """
        if not paths:
            raise ConcatError("Cannot concatenate zero clips")

        manifest_path = destination.with_suffix(".concat.txt")
        try:
            write_manifest(paths, manifest_path)
            last_error: Exception | None = None

            for name, command in self.build_commands(manifest_path, destination):
                try:
                    await self.runner(command, self.config.concat_timeout)
                except TranscoderError as e:
                    last_error = e
                    ScratchSpace.discard(destination)
                    logger.warning(f"Concat ({name}) into {destination.name} failed: {e}")
                    continue

                if destination.exists() and destination.stat().st_size > 0:
                    logger.info(f"Concatenated {len(paths)} clips into {destination.name} ({name})")
                    return destination

                last_error = ConcatError(f"{name} produced no output")
                ScratchSpace.discard(destination)

            raise ConcatError(f"Concatenation into {destination.name} failed: {last_error}")
        except OSError as e:
            ScratchSpace.discard(destination)
            raise ConcatError(f"Concatenation into {destination.name} failed: {e}") from e
        finally:
            ScratchSpace.discard(manifest_path)
