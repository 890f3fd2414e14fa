"""Tests for the pipeline orchestrator.

Uses the real Normalizer and Concatenator on top of FakeRunner, so output
bytes spell out exactly which segments made it into the result and in what
order: b"norm(clip0;)norm(clip1;)...".
"""

import asyncio
from pathlib import Path

import pytest

from helpers import FakeRunner, make_timeline
from vidseq.config import Settings
from vidseq.orchestrator.pipeline import PipelineOrchestrator
from vidseq.pipeline.concatenator import Concatenator
from vidseq.pipeline.errors import (
    ConcatError,
    EmptyTimelineError,
    FetchError,
    NoSegmentsProcessedError,
)
from vidseq.pipeline.models import FetchedFile, Segment
from vidseq.pipeline.normalizer import Normalizer


class FakeFetcher:
    """Writes b"clip<i>;" for each segment; fails the configured indices."""

    def __init__(self, fail_indices=(), delays=None, crash_indices=()):
        self.fail_indices = set(fail_indices)
        self.crash_indices = set(crash_indices)
        self.delays = delays or {}
        self.calls: list[int] = []
        self.active = 0
        self.max_active = 0

    async def fetch(self, segment: Segment, destination: Path) -> FetchedFile:
        self.calls.append(segment.index)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delays.get(segment.index, 0.01))
            if segment.index in self.fail_indices:
                raise FetchError(segment.source, "HTTP 404", 404)
            if segment.index in self.crash_indices:
                raise RuntimeError("boom")
            data = f"clip{segment.index};".encode()
            destination.write_bytes(data)
            return FetchedFile(local_path=destination, byte_size=len(data), segment=segment)
        finally:
            self.active -= 1

    async def aclose(self) -> None:
        pass


def expected_bytes(indices) -> bytes:
    return b"".join(f"norm(clip{i};)".encode() for i in indices)


def build(settings: Settings, fetcher=None, runner=None, progress=None):
    runner = runner or FakeRunner()
    fetcher = fetcher or FakeFetcher()
    orchestrator = PipelineOrchestrator(
        settings,
        fetcher=fetcher,
        normalizer=Normalizer(settings.target, settings.retry, settings.transcoder, runner=runner),
        concatenator=Concatenator(settings.transcoder, runner=runner),
        progress_callback=progress,
    )
    return orchestrator, fetcher, runner


def scratch_is_empty(scratch_root: Path) -> bool:
    return scratch_root.exists() and list(scratch_root.iterdir()) == []


@pytest.mark.asyncio
async def test_all_segments_succeed(settings: Settings, scratch_root: Path) -> None:
    timeline = [
        Segment(index=i, source=f"https://cdn.example.com/{i}.mp4", start_offset=0, target_duration=d)
        for i, d in enumerate([5.0, 3.0, 2.5, 4.0, 1.5])
    ]
    orchestrator, _, _ = build(settings)

    result = await orchestrator.run(timeline)

    assert result.segments_attempted == result.segments_succeeded == 5
    assert result.batches_attempted == result.batches_succeeded == 2
    assert result.duration_estimate == pytest.approx(16.0)
    assert result.output_bytes == expected_bytes(range(5))
    assert result.final_merge_used is True
    assert result.failures == []
    assert scratch_is_empty(scratch_root)


@pytest.mark.asyncio
async def test_seven_segments_with_fifth_failing(settings: Settings, scratch_root: Path) -> None:
    orchestrator, _, runner = build(settings, fetcher=FakeFetcher(fail_indices={4}))

    result = await orchestrator.run(make_timeline(7), batch_size=3)

    assert result.segments_attempted == 7
    assert result.segments_succeeded == 6
    assert result.batches_attempted == 3
    assert result.batches_succeeded == 3
    assert result.output_bytes == expected_bytes([0, 1, 2, 3, 5, 6])
    assert result.duration_estimate == pytest.approx(30.0)
    # 3 batch concats + 1 final merge
    assert len(runner.concat_calls) == 4
    assert result.final_merge_used is True
    assert [(f.stage, f.batch_index, f.segment_index) for f in result.failures] == [("fetch", 1, 4)]
    assert scratch_is_empty(scratch_root)


@pytest.mark.asyncio
async def test_single_segment_skips_final_merge(settings: Settings) -> None:
    orchestrator, _, runner = build(settings)

    result = await orchestrator.run(make_timeline(1))

    assert result.output_bytes == expected_bytes([0])
    assert result.final_merge_used is False
    assert len(runner.concat_calls) == 1
    assert not any(cmd[-1].endswith("final.mp4") for cmd in runner.ffmpeg_calls)


@pytest.mark.asyncio
async def test_single_surviving_batch_is_returned_directly(settings: Settings) -> None:
    # Batch 0 = segments 0-2, all fail; batch 1 = segments 3-4 succeed
    orchestrator, _, runner = build(settings, fetcher=FakeFetcher(fail_indices={0, 1, 2}))

    result = await orchestrator.run(make_timeline(5), batch_size=3)

    assert result.output_bytes == expected_bytes([3, 4])
    assert result.batches_succeeded < result.batches_attempted
    assert (result.batches_attempted, result.batches_succeeded) == (2, 1)
    assert result.segments_succeeded == 2
    assert result.final_merge_used is False
    assert len(runner.concat_calls) == 1
    assert ("batch_concat", 0) in [(f.stage, f.batch_index) for f in result.failures]


@pytest.mark.asyncio
async def test_every_batch_failing_raises(settings: Settings, scratch_root: Path) -> None:
    orchestrator, _, runner = build(settings, fetcher=FakeFetcher(fail_indices=set(range(4))))

    with pytest.raises(NoSegmentsProcessedError):
        await orchestrator.run(make_timeline(4), batch_size=2)

    assert runner.concat_calls == []
    assert scratch_is_empty(scratch_root)


@pytest.mark.asyncio
async def test_empty_timeline_raises(settings: Settings) -> None:
    orchestrator, fetcher, _ = build(settings)
    with pytest.raises(EmptyTimelineError):
        await orchestrator.run([])
    assert fetcher.calls == []


@pytest.mark.asyncio
async def test_normalize_failure_skips_only_that_segment(settings: Settings) -> None:
    runner = FakeRunner(
        fail=lambda cmd: cmd[0] == "ffmpeg" and "concat" not in cmd and "b0_s1_source" in cmd[3]
    )
    orchestrator, _, _ = build(settings, runner=runner)

    result = await orchestrator.run(make_timeline(3), batch_size=3)

    assert result.segments_succeeded == 2
    assert result.output_bytes == expected_bytes([0, 2])
    assert [(f.stage, f.segment_index) for f in result.failures] == [("normalize", 1)]


@pytest.mark.asyncio
async def test_unexpected_segment_error_does_not_abort_batch(settings: Settings) -> None:
    orchestrator, _, _ = build(settings, fetcher=FakeFetcher(crash_indices={0}))

    result = await orchestrator.run(make_timeline(3), batch_size=3)

    assert result.output_bytes == expected_bytes([1, 2])
    assert "RuntimeError" in result.failures[0].message


@pytest.mark.asyncio
async def test_batch_concat_failure_skips_batch(settings: Settings) -> None:
    runner = FakeRunner(fail=lambda cmd: "concat" in cmd and cmd[-1].endswith("batch_1.mp4"))
    orchestrator, _, _ = build(settings, runner=runner)

    result = await orchestrator.run(make_timeline(6), batch_size=2)

    assert (result.batches_attempted, result.batches_succeeded) == (3, 2)
    assert result.segments_succeeded == 4
    assert result.output_bytes == expected_bytes([0, 1, 4, 5])


@pytest.mark.asyncio
async def test_final_merge_failure_is_fatal(settings: Settings, scratch_root: Path) -> None:
    runner = FakeRunner(fail=lambda cmd: cmd[-1].endswith("final.mp4"))
    orchestrator, _, _ = build(settings, runner=runner)

    with pytest.raises(ConcatError):
        await orchestrator.run(make_timeline(4), batch_size=2)
    assert scratch_is_empty(scratch_root)


@pytest.mark.asyncio
async def test_clip_order_ignores_completion_order(settings: Settings) -> None:
    # Later segments finish first
    fetcher = FakeFetcher(delays={0: 0.15, 1: 0.1, 2: 0.05, 3: 0.0})
    orchestrator, _, _ = build(settings, fetcher=fetcher)

    result = await orchestrator.run(make_timeline(4), batch_size=4)

    assert result.output_bytes == expected_bytes([0, 1, 2, 3])


@pytest.mark.asyncio
async def test_concurrency_is_bounded_by_batch_size(settings: Settings) -> None:
    fetcher = FakeFetcher(delays={i: 0.05 for i in range(7)})
    orchestrator, _, _ = build(settings, fetcher=fetcher)

    await orchestrator.run(make_timeline(7), batch_size=3)

    assert fetcher.max_active == 3
    # Batches run in order
    assert sorted(fetcher.calls[:3]) == [0, 1, 2]
    assert sorted(fetcher.calls[3:6]) == [3, 4, 5]
    assert fetcher.calls[6] == 6


@pytest.mark.asyncio
async def test_batch_size_defaults_from_settings(settings: Settings) -> None:
    settings.pipeline.batch_size = 2
    orchestrator, _, _ = build(settings)

    result = await orchestrator.run(make_timeline(5))

    assert result.batches_attempted == 3


@pytest.mark.asyncio
async def test_max_segments_truncates_timeline(settings: Settings) -> None:
    settings.pipeline.max_segments = 4
    orchestrator, fetcher, _ = build(settings)

    result = await orchestrator.run(make_timeline(9), batch_size=3)

    assert result.segments_attempted == 4
    assert sorted(fetcher.calls) == [0, 1, 2, 3]
    assert result.output_bytes == expected_bytes(range(4))


@pytest.mark.asyncio
async def test_repeated_runs_have_identical_structure(settings: Settings) -> None:
    orchestrator, _, _ = build(settings)
    timeline = make_timeline(5, duration=2.0)

    first = await orchestrator.run(timeline, batch_size=2)
    second = await orchestrator.run(timeline, batch_size=2)

    assert first.run_id != second.run_id
    for attr in ("segments_attempted", "segments_succeeded", "batches_attempted",
                 "batches_succeeded", "duration_estimate", "final_merge_used"):
        assert getattr(first, attr) == getattr(second, attr)


@pytest.mark.asyncio
async def test_progress_callback_receives_stage_messages(settings: Settings) -> None:
    messages: list[str] = []
    orchestrator, _, _ = build(settings, progress=messages.append)

    await orchestrator.run(make_timeline(4), batch_size=2)

    assert messages[0] == "Processing 4 segments in 2 batches of up to 2"
    assert "Batch 1: downloading 2 segments" in messages
    assert messages[-1] == "Merging 2 batch outputs"


@pytest.mark.asyncio
async def test_scratch_files_are_namespaced_by_run(settings: Settings) -> None:
    runner = FakeRunner()
    orchestrator, _, _ = build(settings, runner=runner)

    result = await orchestrator.run(make_timeline(2), batch_size=2, run_id="run42")

    assert result.run_id == "run42"
    outputs = [Path(cmd[-1]) for cmd in runner.ffmpeg_calls]
    assert all(p.parent.name == "run42" for p in outputs)
    assert {p.name for p in outputs} == {"b0_s0_norm.mp4", "b0_s1_norm.mp4", "batch_0.mp4"}
