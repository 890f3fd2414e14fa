"""Timeline partitioning into bounded batches.

Batch size is a resource throttle: it caps concurrent downloads, concurrent
ffmpeg processes and scratch files alive at once. It carries no meaning for
the output beyond that.
"""

from typing import Sequence

from vidseq.pipeline.models import Batch, Segment


def partition(segments: Sequence[Segment], batch_size: int) -> list[Batch]:
    """Split segments into contiguous batches of at most batch_size.

    Order-preserving and lossless: concatenating the batches' segments
    gives back the input. The last batch may be short.

    Raises:
        ValueError: If batch_size < 1
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")

    return [
        Batch(index=batch_index, segments=tuple(segments[start:start + batch_size]))
        for batch_index, start in enumerate(range(0, len(segments), batch_size))
    ]
