"""Error taxonomy for the segment processing pipeline.

Segment-scoped errors (FetchError, NormalizeError) are recorded and skipped
by the orchestrator. ConcatError is batch-scoped during batch assembly and
fatal during final assembly. EmptyTimelineError and NoSegmentsProcessedError
always propagate to the caller.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline failures."""


class FetchError(PipelineError):
    """Download failed: network error, non-2xx status, oversize or timeout."""

    def __init__(self, url: str, reason: str, status_code: Optional[int] = None):
        self.url = url
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"Fetch failed for {url}: {reason}")


class TranscoderError(PipelineError):
    """An ffmpeg/ffprobe process exited nonzero or was killed on timeout."""

    def __init__(self, command: list[str], returncode: Optional[int], stderr: str = "", timed_out: bool = False):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        self.timed_out = timed_out
        if timed_out:
            message = f"{command[0]} timed out and was killed"
        else:
            message = f"{command[0]} exited with code {returncode}: {stderr[-500:]}"
        super().__init__(message)


class NormalizeError(PipelineError):
    """Every normalize strategy failed for a segment."""


class ConcatError(PipelineError):
    """Concatenation failed or was asked to join zero clips."""


class EmptyTimelineError(PipelineError):
    """The timeline contained no segments."""


class NoSegmentsProcessedError(PipelineError):
    """Every batch failed; no artifact was produced."""
