"""Scratch-lifetime data model for one pipeline run.

Nothing here outlives a run: every path-bearing object is deleted by the
stage that consumes it.
"""

import base64
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class Segment:
    index: int                  # position in the timeline, becomes the clip ordinal
    source: str                 # remote URL
    start_offset: float         # seconds from timeline start
    target_duration: float      # seconds of output this segment contributes


@dataclass(frozen=True)
class Batch:
    index: int
    segments: tuple[Segment, ...]

    def __len__(self) -> int:
        return len(self.segments)


@dataclass
class FetchedFile:
    local_path: Path
    byte_size: int
    segment: Segment


@dataclass
class NormalizedClip:
    local_path: Path
    ordinal: int
    duration: float
    strategy: str = "primary"


@dataclass
class BatchOutput:
    local_path: Path
    batch_index: int
    clip_count: int
    duration: float


@dataclass
class StageFailure:
    stage: str                  # fetch | normalize | batch_concat | final_concat
    message: str
    batch_index: Optional[int] = None
    segment_index: Optional[int] = None


@dataclass
class PipelineResult:
    output_bytes: bytes
    segments_attempted: int
    segments_succeeded: int
    batches_attempted: int
    batches_succeeded: int
    duration_estimate: float
    run_id: str = ""
    final_merge_used: bool = False
    processing_time_ms: int = 0
    target_label: str = ""
    failures: list[StageFailure] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.output_bytes)

    @property
    def message(self) -> str:
        seconds = self.processing_time_ms / 1000
        if self.segments_succeeded == self.segments_attempted:
            return f"Successfully processed {self.segments_succeeded} videos in {seconds:.2f}s"
        return (
            f"Successfully processed {self.segments_succeeded} of "
            f"{self.segments_attempted} videos in {seconds:.2f}s"
        )

    def to_data_uri(self, mime_type: str = "video/mp4") -> str:
        """Encode the output inline as a base64 data URI."""
        encoded = base64.b64encode(self.output_bytes).decode("ascii")
        return f"data:{mime_type};base64,{encoded}"

    def summary(self) -> dict:
        """JSON-ready description of the run, without the media bytes."""
        return {
            "success": True,
            "message": self.message,
            "size": self.size,
            "videosProcessed": self.segments_succeeded,
            "segmentsAttempted": self.segments_attempted,
            "segmentsSucceeded": self.segments_succeeded,
            "batchesAttempted": self.batches_attempted,
            "batchesSucceeded": self.batches_succeeded,
            "durationEstimate": self.duration_estimate,
            "finalMergeUsed": self.final_merge_used,
            "processingTimeMs": self.processing_time_ms,
            "compression": {
                "outputSizeKB": f"{self.size / 1024:.2f}",
                "settings": self.target_label,
            },
            "failures": [
                {
                    "stage": f.stage,
                    "batchIndex": f.batch_index,
                    "segmentIndex": f.segment_index,
                    "message": f.message,
                }
                for f in self.failures
            ],
        }
