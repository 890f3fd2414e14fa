"""Pydantic schemas for inbound sequencing requests.

Two request shapes are accepted and converted to the same Segment list:

- ``tracks``: explicit keyframes with per-segment ``timestamp`` and ``duration``
- ``videoUrls``: flat list of URLs (or ``{"mp4_url": ...}`` objects), each
  given a default duration and a sequential offset
"""

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from vidseq.pipeline.models import Segment


class VideoRef(BaseModel):
    """Video object as emitted by upstream generators."""

    model_config = ConfigDict(extra="ignore")

    mp4_url: str


class Keyframe(BaseModel):
    """One placed clip on a track."""

    model_config = ConfigDict(extra="ignore")

    url: str
    timestamp: float = Field(default=0.0, ge=0)
    duration: float = Field(gt=0)


class Track(BaseModel):
    model_config = ConfigDict(extra="ignore")

    keyframes: list[Keyframe] = Field(default_factory=list)


class SequenceRequest(BaseModel):
    """Timeline description plus per-request overrides."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    video_urls: Optional[list[Union[str, VideoRef]]] = Field(default=None, alias="videoUrls")
    tracks: Optional[list[Track]] = None
    batch_size: Optional[int] = Field(default=None, ge=1, alias="batchSize")

    @model_validator(mode="after")
    def require_timeline_source(self) -> "SequenceRequest":
        if not self.tracks and self.video_urls is None:
            raise ValueError("Either videoUrls array or tracks array is required")
        return self

    def to_timeline(self, default_duration: float = 5.0) -> list[Segment]:
        """Normalize either request shape into an ordered Segment list.

        Tracks take precedence over videoUrls; only the first track is used.
        The result may be empty, which the orchestrator rejects.
        """
        if self.tracks:
            return [
                Segment(
                    index=i,
                    source=kf.url,
                    start_offset=kf.timestamp,
                    target_duration=kf.duration,
                )
                for i, kf in enumerate(self.tracks[0].keyframes)
            ]

        segments = []
        for i, video in enumerate(self.video_urls or []):
            url = video.mp4_url if isinstance(video, VideoRef) else video
            segments.append(
                Segment(
                    index=i,
                    source=url,
                    start_offset=i * default_duration,
                    target_duration=default_duration,
                )
            )
        return segments
