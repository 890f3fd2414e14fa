"""Async runner for ffmpeg/ffprobe processes.

Every invocation carries an explicit timeout. On expiry the process is
killed and reaped; ffmpeg's own timeout handling is never relied on.
"""

import asyncio
import logging
from typing import Awaitable, Callable

from vidseq.pipeline.errors import TranscoderError

logger = logging.getLogger(__name__)

# Signature shared by run_process and test doubles: (command, timeout) -> stdout
ProcessRunner = Callable[[list[str], float], Awaitable[str]]


async def run_process(command: list[str], timeout: float) -> str:
    """Run a command to completion and return its stdout.

    Args:
        command: argv list, e.g. ["ffmpeg", "-y", ...]
        timeout: Wall-clock limit in seconds

    Returns:
        Decoded stdout

    Raises:
        TranscoderError: On nonzero exit, missing binary, or timeout
    """
    logger.debug(f"Running: {' '.join(command)}")
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise TranscoderError(command, None, stderr=str(e)) from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        await _kill(process)
        raise TranscoderError(command, None, timed_out=True)
    except asyncio.CancelledError:
        await _kill(process)
        raise

    if process.returncode != 0:
        raise TranscoderError(
            command,
            process.returncode,
            stderr=stderr.decode(errors="replace"),
        )
    return stdout.decode(errors="replace")


async def _kill(process: asyncio.subprocess.Process) -> None:
    """Force-terminate a process and wait for it so no zombie is left."""
    if process.returncode is not None:
        return
    try:
        process.kill()
    except ProcessLookupError:
        return
    await process.wait()
    logger.warning(f"Killed process {process.pid}")
