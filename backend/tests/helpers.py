"""Test doubles for vidseq.

No test needs network access or a real ffmpeg: HTTP goes through
httpx.MockTransport and processes through FakeRunner, which imitates the
file effects of ffprobe, normalize and concat invocations.
"""

from pathlib import Path

from vidseq.pipeline.errors import TranscoderError
from vidseq.pipeline.models import Segment


def make_timeline(count: int, duration: float = 5.0) -> list[Segment]:
    return [
        Segment(
            index=i,
            source=f"https://cdn.example.com/clip{i}.mp4",
            start_offset=i * duration,
            target_duration=duration,
        )
        for i in range(count)
    ]


def manifest_inputs(manifest_path: Path) -> list[Path]:
    """Parse a concat manifest back into paths."""
    paths = []
    for line in manifest_path.read_text().splitlines():
        assert line.startswith("file '") and line.endswith("'")
        paths.append(Path(line[len("file '"):-1].replace("'\\''", "'")))
    return paths


class FakeRunner:
    """Stands in for run_process.

    - ffprobe: returns "0" when the source has audio (has_audio=True)
    - ffmpeg normalize: writes b"norm(<source bytes>)" to the output path
    - ffmpeg concat: writes the inputs' bytes joined in manifest order

    ``fail`` is a predicate on the argv; when it returns True the call raises
    TranscoderError instead.
    """

    def __init__(self, has_audio: bool = True, fail=None):
        self.has_audio = has_audio
        self.fail = fail
        self.calls: list[list[str]] = []

    @property
    def ffmpeg_calls(self) -> list[list[str]]:
        return [c for c in self.calls if c[0] == "ffmpeg"]

    @property
    def concat_calls(self) -> list[list[str]]:
        return [c for c in self.ffmpeg_calls if "concat" in c]

    async def __call__(self, command: list[str], timeout: float) -> str:
        self.calls.append(command)
        if self.fail and self.fail(command):
            raise TranscoderError(command, 1, stderr="simulated failure")

        if command[0] == "ffprobe":
            return "0\n" if self.has_audio else ""

        destination = Path(command[-1])
        source = Path(command[command.index("-i") + 1])
        if "concat" in command:
            data = b"".join(p.read_bytes() for p in manifest_inputs(source))
        else:
            data = b"norm(" + source.read_bytes() + b")"
        destination.write_bytes(data)
        return ""
