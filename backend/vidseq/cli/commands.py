"""CLI commands for vidseq using Typer and Rich.

Implements:
- sequence: Fetch, normalize and join remote clips into one video
- check: Verify ffmpeg and ffprobe are installed
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from vidseq import validate_dependencies
from vidseq.config import Settings, load_settings
from vidseq.orchestrator.pipeline import run_pipeline
from vidseq.pipeline.errors import PipelineError
from vidseq.pipeline.models import PipelineResult
from vidseq.schemas.timeline import SequenceRequest

app = typer.Typer(name="vidseq", help="Compose one video from many remote clips")
console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _load_request(
    urls: list[str], timeline_file: Optional[Path], batch_size: Optional[int]
) -> SequenceRequest:
    """Build a request from a JSON timeline file or from positional URLs."""
    if timeline_file is not None:
        data = json.loads(timeline_file.read_text())
        if batch_size is not None:
            data["batchSize"] = batch_size
        return SequenceRequest.model_validate(data)
    return SequenceRequest(video_urls=urls, batch_size=batch_size)


@app.command()
def sequence(
    urls: Optional[list[str]] = typer.Argument(None, help="Video URLs in playback order"),
    timeline_file: Optional[Path] = typer.Option(
        None, "--timeline", "-t", exists=True, dir_okay=False,
        help="JSON file with videoUrls or tracks/keyframes",
    ),
    output: Path = typer.Option(Path("output.mp4"), "--output", "-o", help="Where to write the result"),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", "-b", min=1, help="Segments per batch"),
    segment_duration: Optional[float] = typer.Option(
        None, "--segment-duration", "-d", min=0.1, help="Duration for plain URL segments in seconds",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Fetch, normalize and concatenate remote clips into one video."""
    _configure_logging(verbose)

    if not urls and timeline_file is None:
        console.print("[red]Error:[/red] Provide video URLs or --timeline")
        raise typer.Exit(code=1)

    settings = load_settings()

    # Fail-fast dependency validation
    try:
        validate_dependencies(settings.transcoder.ffmpeg_bin, settings.transcoder.ffprobe_bin)
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)

    try:
        request = _load_request(urls or [], timeline_file, batch_size)
    except (ValidationError, json.JSONDecodeError) as e:
        console.print(f"[red]Error:[/red] Invalid timeline: {e}")
        raise typer.Exit(code=1)

    duration = segment_duration or settings.pipeline.default_segment_duration
    timeline = request.to_timeline(default_duration=duration)

    result = asyncio.run(_sequence_async(timeline, settings, request.batch_size))
    output.write_bytes(result.output_bytes)

    console.print(f"[green]✓[/green] {result.message}")
    console.print(f"[green]Output:[/green] {output} ({result.size / 1024:.2f} KB)")
    _print_summary(result)


async def _sequence_async(timeline, settings: Settings, batch_size: Optional[int]) -> PipelineResult:
    """Async implementation of sequence command."""
    try:
        with console.status("[bold green]Starting pipeline...") as status:
            def callback_wrapper(msg: str):
                status.update(f"[bold green]{msg}")

            return await run_pipeline(
                timeline, settings, batch_size=batch_size, progress_callback=callback_wrapper
            )
    except PipelineError as e:
        console.print()
        console.print(f"[red]✗ Pipeline failed:[/red] {type(e).__name__}: {str(e)}")
        raise typer.Exit(code=1)


def _print_summary(result: PipelineResult) -> None:
    table = Table(show_header=True, header_style="bold blue")
    table.add_column("Level")
    table.add_column("Attempted", justify="right")
    table.add_column("Succeeded", justify="right")
    table.add_row("Segments", str(result.segments_attempted), str(result.segments_succeeded))
    table.add_row("Batches", str(result.batches_attempted), str(result.batches_succeeded))
    console.print(table)

    console.print(f"[yellow]Duration:[/yellow] {result.duration_estimate:.2f}s")
    console.print(f"[yellow]Settings:[/yellow] {result.target_label}")
    console.print(f"[yellow]Final merge:[/yellow] {'yes' if result.final_merge_used else 'skipped'}")

    if result.failures:
        failures = Table(show_header=True, header_style="bold red")
        failures.add_column("Stage")
        failures.add_column("Batch", justify="right")
        failures.add_column("Segment", justify="right")
        failures.add_column("Error")
        for f in result.failures:
            failures.add_row(
                f.stage,
                "-" if f.batch_index is None else str(f.batch_index),
                "-" if f.segment_index is None else str(f.segment_index),
                f.message[:120],
            )
        console.print(failures)


@app.command()
def check():
    """Verify ffmpeg and ffprobe are available."""
    _configure_logging(False)
    settings = load_settings()
    try:
        validate_dependencies(settings.transcoder.ffmpeg_bin, settings.transcoder.ffprobe_bin)
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)
    console.print("[green]✓[/green] ffmpeg and ffprobe found")
