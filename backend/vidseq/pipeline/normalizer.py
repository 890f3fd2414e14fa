"""Per-segment normalization with ffmpeg.

Every clip in a run is re-encoded to the same TargetSpec (resolution, frame
rate, codecs, sample rate, stream layout) and cut to exactly its target
duration, so the clips can later be joined with stream copy.

Fallback chain (stops at first success):
  primary:  TargetSpec as configured, including effect filters
  degraded: effect filters dropped, faster preset, higher CRF

Both strategies keep every format parameter that concat depends on.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from vidseq.config import RetryPolicy, TargetSpec, TranscoderConfig
from vidseq.pipeline.errors import NormalizeError, TranscoderError
from vidseq.pipeline.models import FetchedFile, NormalizedClip
from vidseq.services.scratch import ScratchSpace
from vidseq.services.transcoder import ProcessRunner, run_process

logger = logging.getLogger(__name__)

MAX_CRF = 51


@dataclass(frozen=True)
class NormalizeStrategy:
    name: str
    quality: int
    preset: str
    filters: tuple[str, ...]


def build_strategies(target: TargetSpec, policy: RetryPolicy) -> list[NormalizeStrategy]:
    """Ordered normalize attempts for one segment."""
    strategies = [
        NormalizeStrategy(
            name="primary",
            quality=target.quality,
            preset=target.preset,
            filters=tuple(target.filters),
        )
    ]
    if policy.degraded_retry:
        strategies.append(
            NormalizeStrategy(
                name="degraded",
                quality=min(MAX_CRF, target.quality + policy.degraded_crf_step),
                preset=policy.degraded_preset,
                filters=(),
            )
        )
    return strategies


def _format_seconds(value: float) -> str:
    return f"{value:.3f}"


class Normalizer:
    """Re-encode fetched sources into uniform, fixed-duration clips."""

    def __init__(
        self,
        target: TargetSpec,
        policy: RetryPolicy,
        config: TranscoderConfig,
        runner: ProcessRunner = run_process,
    ):
        self.target = target
        self.config = config
        self.runner = runner
        self.strategies = build_strategies(target, policy)

    async def probe_has_audio(self, source: Path) -> bool:
        """Return True if the source has at least one audio stream.

        Probe failures are treated as "no audio"; the silent track keeps the
        clip's stream layout valid either way.
        """
        command = [
            self.config.ffprobe_bin,
            "-v", "error",
            "-select_streams", "a",
            "-show_entries", "stream=index",
            "-of", "csv=p=0",
            str(source),
        ]
        try:
            stdout = await self.runner(command, self.config.probe_timeout)
        except TranscoderError as e:
            logger.warning(f"Audio probe failed for {source.name}, assuming no audio: {e}")
            return False
        return bool(stdout.strip())

    def build_command(
        self,
        source: Path,
        destination: Path,
        duration: float,
        strategy: NormalizeStrategy,
        has_audio: bool,
    ) -> list[str]:
        """Build the ffmpeg argv for one normalize attempt.

        Video: effects, fit-and-pad to WxH, square pixels, constant frame
        rate, last frame cloned to cover short sources. Audio: resampled to
        stereo at the target rate and padded with silence, or a generated
        silent track when the source has none. Output is cut with -t.
        """
        t = self.target
        seconds = _format_seconds(duration)
        video_chain = [
            *strategy.filters,
            f"scale={t.width}:{t.height}:force_original_aspect_ratio=decrease",
            f"pad={t.width}:{t.height}:(ow-iw)/2:(oh-ih)/2",
            "setsar=1",
            f"fps={t.frame_rate}",
            f"tpad=stop_mode=clone:stop_duration={seconds}",
        ]

        command = [self.config.ffmpeg_bin, "-y", "-i", str(source)]
        if has_audio:
            audio_chain = (
                f"aresample={t.audio_sample_rate},"
                "aformat=sample_fmts=fltp:channel_layouts=stereo,apad"
            )
            filter_complex = f"[0:v]{','.join(video_chain)}[v];[0:a]{audio_chain}[a]"
            audio_map = "[a]"
        else:
            command += [
                "-f", "lavfi",
                "-i", f"anullsrc=channel_layout=stereo:sample_rate={t.audio_sample_rate}",
            ]
            filter_complex = f"[0:v]{','.join(video_chain)}[v]"
            audio_map = "1:a"

        command += [
            "-filter_complex", filter_complex,
            "-map", "[v]",
            "-map", audio_map,
            "-t", seconds,
            "-c:v", t.video_codec,
            "-preset", strategy.preset,
            "-crf", str(strategy.quality),
            "-pix_fmt", t.pixel_format,
            "-r", str(t.frame_rate),
            "-c:a", t.audio_codec,
            "-b:a", t.audio_bitrate,
            "-ar", str(t.audio_sample_rate),
            "-ac", "2",
            "-movflags", "+faststart",
            str(destination),
        ]
        return command

    async def normalize(
        self,
        fetched: FetchedFile,
        target_duration: float,
        ordinal: int,
        destination: Path,
    ) -> NormalizedClip:
        """Normalize one fetched source into a clip of exactly target_duration.

        The fetched file is deleted on every exit path.

        Raises:
            NormalizeError: If every strategy fails or times out
        """
        try:
            has_audio = await self.probe_has_audio(fetched.local_path)
            last_error: Exception | None = None

            for strategy in self.strategies:
                command = self.build_command(
                    fetched.local_path, destination, target_duration, strategy, has_audio
                )
                try:
                    await self.runner(command, self.config.normalize_timeout)
                except TranscoderError as e:
                    last_error = e
                    ScratchSpace.discard(destination)
                    logger.warning(f"Segment {ordinal}: {strategy.name} normalize failed: {e}")
                    continue

                if not destination.exists() or destination.stat().st_size == 0:
                    last_error = NormalizeError(f"{strategy.name} produced no output")
                    ScratchSpace.discard(destination)
                    logger.warning(f"Segment {ordinal}: {strategy.name} normalize produced no output")
                    continue

                if strategy.name != "primary":
                    logger.info(f"Segment {ordinal}: normalized with {strategy.name} settings")
                return NormalizedClip(
                    local_path=destination,
                    ordinal=ordinal,
                    duration=target_duration,
                    strategy=strategy.name,
                )

            raise NormalizeError(
                f"Segment {ordinal}: all {len(self.strategies)} normalize strategies failed: {last_error}"
            )
        finally:
            ScratchSpace.discard(fetched.local_path)
