"""Remote segment download with a hard timeout and a streamed size cap.

The whole transfer (connect, headers, body, retries) is bounded by one
wall-clock timeout; expiry cancels the in-flight stream. Size is enforced
both from Content-Length and from the running byte count, so an oversize
source is rejected without buffering it.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from vidseq.config import FetchConfig
from vidseq.pipeline.errors import FetchError
from vidseq.pipeline.models import FetchedFile, Segment
from vidseq.services.scratch import ScratchSpace

logger = logging.getLogger(__name__)


def _is_retriable(exc: BaseException) -> bool:
    """Return True only for transient transport errors worth retrying."""
    if isinstance(exc, httpx.TimeoutException):
        return False
    return isinstance(exc, httpx.TransportError)


class Fetcher:
    """Download segment sources into scratch files.

    Owns its httpx client unless one is injected. Use as an async context
    manager (or call aclose()) to release connections.
    """

    def __init__(self, config: FetchConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            follow_redirects=True,
            timeout=httpx.Timeout(config.timeout_seconds, connect=min(10.0, config.timeout_seconds)),
        )

    async def fetch(self, segment: Segment, destination: Path) -> FetchedFile:
        """Download one segment source to ``destination``.

        Raises:
            FetchError: On network failure, non-2xx status, oversize body,
                empty body, or timeout. The partial file is removed.
        """
        url = segment.source
        try:
            byte_size = await asyncio.wait_for(
                self._download_with_retry(url, destination),
                timeout=self.config.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            ScratchSpace.discard(destination)
            raise FetchError(url, f"timed out after {self.config.timeout_seconds}s") from e
        except FetchError:
            ScratchSpace.discard(destination)
            raise
        except httpx.HTTPError as e:
            ScratchSpace.discard(destination)
            raise FetchError(url, f"{type(e).__name__}: {e}") from e
        except OSError as e:
            ScratchSpace.discard(destination)
            raise FetchError(url, f"could not write {destination}: {e}") from e

        logger.info(f"Fetched segment {segment.index}: {byte_size / 1024:.1f} KB")
        return FetchedFile(local_path=destination, byte_size=byte_size, segment=segment)

    async def _download_with_retry(self, url: str, destination: Path) -> int:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.config.retry_attempts),
            wait=wait_exponential(multiplier=0.5, max=4),
            retry=retry_if_exception(_is_retriable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                return await self._download(url, destination)
        raise FetchError(url, "no download attempt was made")

    async def _download(self, url: str, destination: Path) -> int:
        max_bytes = self.config.max_bytes
        async with self.client.stream("GET", url) as response:
            if not response.is_success:
                raise FetchError(url, f"HTTP {response.status_code}", response.status_code)

            declared = response.headers.get("content-length", "")
            if declared.isdigit() and int(declared) > max_bytes:
                raise FetchError(url, f"declared size {declared} bytes exceeds limit of {max_bytes}")

            total = 0
            with open(destination, "wb") as f:
                async for chunk in response.aiter_bytes(self.config.chunk_size):
                    total += len(chunk)
                    if total > max_bytes:
                        raise FetchError(url, f"body exceeds limit of {max_bytes} bytes")
                    f.write(chunk)

        if total == 0:
            raise FetchError(url, "empty response body")
        return total

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "Fetcher":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
