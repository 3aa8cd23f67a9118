"""Shared pytest fixtures for all tests."""

import os
from unittest.mock import MagicMock

import pytest

from lampa_subtitles.cache_store import SubtitleCacheStore
from lampa_subtitles.config import reload_settings
from tests.fixtures.doubles import FakePlayer

_ENV_KEYS = ("LAMPA_SUBS_CACHE_DIR", "LAMPA_SUBS_LOG_LEVEL")


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path):
    """Point the settings singleton at a temporary cache dir for every test."""
    os.environ["LAMPA_SUBS_CACHE_DIR"] = str(tmp_path / "subtitle_cache")
    os.environ["LAMPA_SUBS_LOG_LEVEL"] = "ERROR"  # Reduce log noise in tests
    settings = reload_settings()

    yield settings

    for key in _ENV_KEYS:
        os.environ.pop(key, None)
    reload_settings()


@pytest.fixture
def cache_store(tmp_path):
    return SubtitleCacheStore(str(tmp_path / "subtitle_cache"))


@pytest.fixture
def mock_session():
    """MagicMock standing in for a RetryingSession."""
    return MagicMock()


@pytest.fixture
def sample_subtitle_file(tmp_path):
    """A ~45KB SRT file outside the cache."""
    path = tmp_path / "Movie.2023.en.srt"
    blocks = []
    i = 1
    while sum(len(b) for b in blocks) < 45 * 1024:
        start, end = i * 2, i * 2 + 1
        blocks.append(
            f"{i}\n00:{start // 60 % 60:02d}:{start % 60:02d},000 --> "
            f"00:{end // 60 % 60:02d}:{end % 60:02d},500\nLine number {i}\n\n".encode()
        )
        i += 1
    path.write_bytes(b"".join(blocks))
    return str(path)


@pytest.fixture
def fake_player():
    return FakePlayer()
