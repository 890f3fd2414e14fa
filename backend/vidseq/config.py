"""Configuration management with YAML and environment variable support."""

from pathlib import Path
from typing import ClassVar, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that loads configuration from YAML file."""

    def get_field_value(self, field, field_name: str):
        # Not used with prepare method
        pass

    def prepare_field_value(self, field_name: str, field, value, value_is_complex: bool):
        return value

    def __call__(self):
        # Load from config.yaml in current directory
        yaml_path = Path("config.yaml")
        if not yaml_path.exists():
            return {}

        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}

        return data


class FetchConfig(BaseModel):
    """Remote download limits."""

    timeout_seconds: float = Field(default=20.0, gt=0)
    max_bytes: int = Field(default=200 * 1024 * 1024, gt=0)
    chunk_size: int = Field(default=64 * 1024, gt=0)
    retry_attempts: int = Field(default=2, ge=1)


class TranscoderConfig(BaseModel):
    """ffmpeg/ffprobe binaries and per-process timeouts."""

    ffmpeg_bin: str = "ffmpeg"
    ffprobe_bin: str = "ffprobe"
    normalize_timeout: float = Field(default=120.0, gt=0)
    concat_timeout: float = Field(default=300.0, gt=0)
    probe_timeout: float = Field(default=15.0, gt=0)


class TargetSpec(BaseModel):
    """Output format every clip of a run is normalized to.

    Stream-copy concatenation is only valid when all inputs share these
    values, so a single TargetSpec is applied to the whole run.
    """

    width: int = Field(default=640, gt=0)
    height: int = Field(default=360, gt=0)
    frame_rate: int = Field(default=24, gt=0)
    video_codec: str = "libx264"
    audio_codec: str = "aac"
    quality: int = Field(default=32, ge=0, le=51)
    preset: str = "faster"
    audio_bitrate: str = "96k"
    audio_sample_rate: int = 44100
    pixel_format: str = "yuv420p"
    filters: list[str] = Field(default_factory=list)

    @field_validator("width", "height")
    @classmethod
    def require_even_dimension(cls, v: int) -> int:
        """yuv420p needs even frame dimensions."""
        if v % 2:
            raise ValueError(f"dimension must be even, got {v}")
        return v

    @property
    def label(self) -> str:
        return f"{self.width}x{self.height}, {self.frame_rate}fps, CRF{self.quality}"


class RetryPolicy(BaseModel):
    """Normalizer fallback chain settings."""

    degraded_retry: bool = True
    degraded_crf_step: int = Field(default=4, ge=0)
    degraded_preset: str = "ultrafast"


class PipelineConfig(BaseModel):
    """Pipeline execution parameters."""

    batch_size: int = Field(default=3, ge=1)
    default_segment_duration: float = Field(default=5.0, gt=0)
    max_segments: Optional[int] = Field(default=None, ge=1)


class StorageConfig(BaseModel):
    """Scratch space configuration."""

    scratch_dir: Path = Path("tmp/scratch")

    @field_validator("scratch_dir", mode="before")
    @classmethod
    def convert_scratch_dir_to_path(cls, v):
        """Convert string to Path object."""
        if isinstance(v, str):
            return Path(v)
        return v


class Settings(BaseSettings):
    """Main application settings with YAML and environment variable support.

    Configuration sources (in priority order):
    1. Environment variables (prefix: VIDSEQ_, delimiter: __)
    2. YAML file (config.yaml)
    3. Field defaults
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_nested_delimiter="__",
        env_prefix="VIDSEQ_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    fetch: FetchConfig = Field(default_factory=FetchConfig)
    transcoder: TranscoderConfig = Field(default_factory=TranscoderConfig)
    target: TargetSpec = Field(default_factory=TargetSpec)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        """Customize settings sources to include YAML configuration.

        Priority order (highest to lowest):
        1. Environment variables
        2. YAML file
        3. Init settings (programmatic defaults)
        """
        return (
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            init_settings,
        )


def load_settings() -> Settings:
    """Read settings from the environment and config.yaml.

    Callers hold on to the returned value and pass it down explicitly;
    nothing in the pipeline reads configuration from module state.
    """
    return Settings()
