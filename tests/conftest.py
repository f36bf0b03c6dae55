import pytest

from config import AnalysisConfig
from factories import MINUTE, play, ts


@pytest.fixture
def config() -> AnalysisConfig:
    """Default analysis settings."""
    return AnalysisConfig()


@pytest.fixture
def week_of_plays():
    """A small listening history spread over a week in March 2024."""
    return [
        play(ts(2024, 3, 4, 8, 0), 3 * MINUTE, key="song-a", artist="Alpha", album="First"),
        play(ts(2024, 3, 4, 8, 3), 4 * MINUTE, key="song-b", artist="Alpha", album="First"),
        play(ts(2024, 3, 4, 21, 0), 5 * MINUTE, key="song-c", artist="Bravo", album="Second",
             end_reason="forward-button"),
        play(ts(2024, 3, 5, 8, 0), 3 * MINUTE, key="song-a", artist="Alpha", album="First",
             end_reason="track-finished"),
        play(ts(2024, 3, 6, 14, 0), 2 * MINUTE, key="song-d", artist="Charlie", album="Third",
             shuffle=True, platform="ios"),
        play(ts(2024, 3, 9, 23, 30), 20 * 1000, key="song-e", artist="Delta", album="Fourth",
             end_reason="back-button"),
    ]
