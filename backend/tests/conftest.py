"""Shared fixtures for vidseq tests."""

from pathlib import Path

import pytest

from vidseq.config import FetchConfig, Settings, StorageConfig, TranscoderConfig


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        fetch=FetchConfig(timeout_seconds=2.0, max_bytes=1024, chunk_size=16, retry_attempts=2),
        transcoder=TranscoderConfig(normalize_timeout=5.0, concat_timeout=5.0, probe_timeout=5.0),
        storage=StorageConfig(scratch_dir=tmp_path / "scratch"),
    )


@pytest.fixture
def scratch_root(settings: Settings) -> Path:
    return settings.storage.scratch_dir
