from __future__ import annotations

# Priority order for top-item fallback: most recent listening first
TIME_RANGES = ("short_term", "medium_term", "long_term")
DEFAULT_TIME_RANGE = "medium_term"

# Spotify caps page sizes at 50 for these endpoints
MAX_PAGE_LIMIT = 50

# /audio-features accepts at most 100 ids per call
AUDIO_FEATURES_BATCH = 100

AUDIO_FEATURE_KEYS = (
    "danceability",
    "energy",
    "valence",
    "acousticness",
    "instrumentalness",
    "liveness",
    "speechiness",
    "tempo",
)


def clamp_limit(limit: int | None, default: int = 20, maximum: int = MAX_PAGE_LIMIT) -> int:
    if limit is None:
        return default
    return max(1, min(int(limit), maximum))
