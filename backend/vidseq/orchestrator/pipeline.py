"""Main pipeline orchestrator with batch-level failure isolation.

Coordinates the segment processing pipeline with:
- State machine transitions
- Bounded concurrent fetch and normalize per batch
- Skip-and-continue for failed segments and failed batches
- Final assembly that skips the second concat when only one batch survived
- Per-stage timing and logging
- Progress callback interface for CLI integration
"""

import asyncio
import logging
import time
from typing import Callable, Optional, Sequence

from vidseq.config import Settings
from vidseq.orchestrator.state import PipelineStateMachine
from vidseq.pipeline.batcher import partition
from vidseq.pipeline.concatenator import Concatenator
from vidseq.pipeline.errors import (
    ConcatError,
    EmptyTimelineError,
    NoSegmentsProcessedError,
    PipelineError,
)
from vidseq.pipeline.fetcher import Fetcher
from vidseq.pipeline.models import (
    Batch,
    BatchOutput,
    FetchedFile,
    NormalizedClip,
    PipelineResult,
    Segment,
    StageFailure,
)
from vidseq.pipeline.normalizer import Normalizer
from vidseq.services.scratch import ScratchSpace

logger = logging.getLogger(__name__)


class PipelineOrchestrator:
    """Turn a timeline into one composed video.

    Components are built from settings unless injected. The orchestrator
    holds no state between runs apart from its components, so one instance
    can serve many sequential or concurrent runs.
    """

    def __init__(
        self,
        settings: Settings,
        fetcher: Optional[Fetcher] = None,
        normalizer: Optional[Normalizer] = None,
        concatenator: Optional[Concatenator] = None,
        progress_callback: Optional[Callable[[str], None]] = None,
    ):
        self.settings = settings
        self._owns_fetcher = fetcher is None
        self.fetcher = fetcher or Fetcher(settings.fetch)
        self.normalizer = normalizer or Normalizer(
            settings.target, settings.retry, settings.transcoder
        )
        self.concatenator = concatenator or Concatenator(settings.transcoder)
        self.progress_callback = progress_callback

    def _progress(self, message: str) -> None:
        logger.info(message)
        if self.progress_callback:
            self.progress_callback(message)

    async def run(
        self,
        timeline: Sequence[Segment],
        batch_size: Optional[int] = None,
        run_id: Optional[str] = None,
    ) -> PipelineResult:
        """Execute the pipeline for one timeline.

        Args:
            timeline: Segments in presentation order
            batch_size: Per-request override of settings.pipeline.batch_size
            run_id: Scratch namespace; random if None

        Returns:
            PipelineResult with the final media bytes and success counts

        Raises:
            EmptyTimelineError: If the timeline has no segments
            NoSegmentsProcessedError: If every batch failed
            ConcatError: If the final merge of two or more batches failed
        """
        pipeline_start = time.monotonic()
        machine = PipelineStateMachine()

        if not timeline:
            machine.advance("failed")
            logger.error("Pipeline failed: empty timeline")
            raise EmptyTimelineError("Timeline contains no segments")

        segments = list(timeline)
        max_segments = self.settings.pipeline.max_segments
        if max_segments is not None and len(segments) > max_segments:
            logger.warning(f"Timeline truncated from {len(segments)} to {max_segments} segments")
            segments = segments[:max_segments]

        size = batch_size or self.settings.pipeline.batch_size
        machine.advance("batching")
        batches = partition(segments, size)
        self._progress(f"Processing {len(segments)} segments in {len(batches)} batches of up to {size}")

        failures: list[StageFailure] = []
        # Bounds concurrent downloads and ffmpeg processes for the whole run
        semaphore = asyncio.Semaphore(size)

        with ScratchSpace(self.settings.storage.scratch_dir, run_id) as scratch:
            outputs: list[BatchOutput] = []
            for batch in batches:
                step_start = time.monotonic()
                output = await self._process_batch(batch, scratch, machine, semaphore, failures)
                if output is not None:
                    outputs.append(output)
                logger.info(
                    f"Batch {batch.index + 1}/{len(batches)} finished in "
                    f"{time.monotonic() - step_start:.2f}s"
                )

            machine.advance("final_assembly")
            output_bytes, final_merge_used = await self._assemble(outputs, scratch, machine, failures)
            machine.advance("done")

            processing_time_ms = int((time.monotonic() - pipeline_start) * 1000)
            result = PipelineResult(
                output_bytes=output_bytes,
                segments_attempted=len(segments),
                segments_succeeded=sum(o.clip_count for o in outputs),
                batches_attempted=len(batches),
                batches_succeeded=len(outputs),
                duration_estimate=sum(o.duration for o in outputs),
                run_id=scratch.run_id,
                final_merge_used=final_merge_used,
                processing_time_ms=processing_time_ms,
                target_label=self.settings.target.label,
                failures=failures,
            )

        logger.info(
            f"Pipeline completed in {processing_time_ms / 1000:.2f}s: "
            f"{result.segments_succeeded}/{result.segments_attempted} segments, "
            f"{result.batches_succeeded}/{result.batches_attempted} batches, "
            f"{result.size / 1024:.2f} KB"
        )
        return result

    async def _process_batch(
        self,
        batch: Batch,
        scratch: ScratchSpace,
        machine: PipelineStateMachine,
        semaphore: asyncio.Semaphore,
        failures: list[StageFailure],
    ) -> Optional[BatchOutput]:
        """Fetch, normalize and concatenate one batch.

        Returns None (and records a failure) when no clip survives or the
        batch concat fails. Never raises for segment or batch errors.
        """
        machine.advance("fetching")
        self._progress(f"Batch {batch.index + 1}: downloading {len(batch)} segments")
        fetch_results = await asyncio.gather(
            *[self._fetch_one(segment, batch, scratch, semaphore) for segment in batch.segments]
        )
        fetched = self._collect(fetch_results, FetchedFile, failures)

        machine.advance("normalizing")
        self._progress(f"Batch {batch.index + 1}: normalizing {len(fetched)} segments")
        normalize_results = await asyncio.gather(
            *[self._normalize_one(item, batch, scratch, semaphore) for item in fetched]
        )
        clips = self._collect(normalize_results, NormalizedClip, failures)

        machine.advance("batch_concat")
        if not clips:
            logger.warning(f"Batch {batch.index}: no segments survived, skipping batch")
            failures.append(
                StageFailure(stage="batch_concat", batch_index=batch.index, message="no surviving clips")
            )
            return None

        # Completion order is arbitrary; playback order is the ordinal
        clips.sort(key=lambda clip: clip.ordinal)
        destination = scratch.batch_path(batch.index)
        try:
            await self.concatenator.concat([clip.local_path for clip in clips], destination)
        except ConcatError as e:
            logger.warning(f"Batch {batch.index}: concat failed, skipping batch: {e}")
            failures.append(StageFailure(stage="batch_concat", batch_index=batch.index, message=str(e)))
            return None
        finally:
            ScratchSpace.discard(*[clip.local_path for clip in clips])

        return BatchOutput(
            local_path=destination,
            batch_index=batch.index,
            clip_count=len(clips),
            duration=sum(clip.duration for clip in clips),
        )

    async def _fetch_one(
        self,
        segment: Segment,
        batch: Batch,
        scratch: ScratchSpace,
        semaphore: asyncio.Semaphore,
    ) -> FetchedFile | StageFailure:
        async with semaphore:
            try:
                return await self.fetcher.fetch(segment, scratch.source_path(batch.index, segment.index))
            except PipelineError as e:
                logger.warning(f"Segment {segment.index}: skipped, {e}")
                message = str(e)
            except Exception as e:
                logger.exception(f"Segment {segment.index}: unexpected fetch error")
                message = f"{type(e).__name__}: {e}"
        return StageFailure(stage="fetch", batch_index=batch.index, segment_index=segment.index, message=message)

    async def _normalize_one(
        self,
        fetched: FetchedFile,
        batch: Batch,
        scratch: ScratchSpace,
        semaphore: asyncio.Semaphore,
    ) -> NormalizedClip | StageFailure:
        segment = fetched.segment
        async with semaphore:
            try:
                return await self.normalizer.normalize(
                    fetched,
                    segment.target_duration,
                    segment.index,
                    scratch.clip_path(batch.index, segment.index),
                )
            except PipelineError as e:
                logger.warning(f"Segment {segment.index}: skipped, {e}")
                message = str(e)
            except Exception as e:
                logger.exception(f"Segment {segment.index}: unexpected normalize error")
                message = f"{type(e).__name__}: {e}"
            finally:
                ScratchSpace.discard(fetched.local_path)
        return StageFailure(stage="normalize", batch_index=batch.index, segment_index=segment.index, message=message)

    @staticmethod
    def _collect(results, kind, failures: list[StageFailure]) -> list:
        """Split gathered results into successes and recorded failures."""
        successes = []
        for item in results:
            if isinstance(item, StageFailure):
                failures.append(item)
            elif isinstance(item, kind):
                successes.append(item)
        return successes

    async def _assemble(
        self,
        outputs: list[BatchOutput],
        scratch: ScratchSpace,
        machine: PipelineStateMachine,
        failures: list[StageFailure],
    ) -> tuple[bytes, bool]:
        """Produce the final bytes from the surviving batch outputs.

        Returns:
            (output bytes, whether the batch-level concat ran)
        """
        if not outputs:
            machine.advance("failed")
            logger.error("Pipeline failed: no segments processed")
            raise NoSegmentsProcessedError("No segments were processed successfully")

        if len(outputs) == 1:
            self._progress("Single batch succeeded, using its output directly")
            try:
                return outputs[0].local_path.read_bytes(), False
            finally:
                ScratchSpace.discard(outputs[0].local_path)

        self._progress(f"Merging {len(outputs)} batch outputs")
        final_path = scratch.final_path()
        try:
            await self.concatenator.concat([o.local_path for o in outputs], final_path)
            return final_path.read_bytes(), True
        except ConcatError as e:
            machine.advance("failed")
            failures.append(StageFailure(stage="final_concat", message=str(e)))
            logger.error(f"Pipeline failed: final merge failed: {e}")
            raise
        finally:
            ScratchSpace.discard(final_path, *[o.local_path for o in outputs])

    async def aclose(self) -> None:
        if self._owns_fetcher:
            await self.fetcher.aclose()

    async def __aenter__(self) -> "PipelineOrchestrator":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


async def run_pipeline(
    timeline: Sequence[Segment],
    settings: Settings,
    batch_size: Optional[int] = None,
    progress_callback: Optional[Callable[[str], None]] = None,
) -> PipelineResult:
    """Run one timeline through a freshly built orchestrator."""
    async with PipelineOrchestrator(settings, progress_callback=progress_callback) as orchestrator:
        return await orchestrator.run(timeline, batch_size=batch_size)
