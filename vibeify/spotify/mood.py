"""Mood profile and listening personality derived from averaged audio features."""

from __future__ import annotations

from typing import Any

MOOD_KEYS = {
    "happiness": "valence",
    "energy": "energy",
    "danceability": "danceability",
    "acousticness": "acousticness",
    "instrumentalness": "instrumentalness",
    "speechiness": "speechiness",
}

NEUTRAL = 50


def mood_profile(averages: dict[str, float] | None) -> dict[str, int]:
    """Averages (0..1) as 0..100 percentages; neutral 50 where nothing is known."""
    averages = averages or {}
    profile = {}
    for name, feature in MOOD_KEYS.items():
        value = averages.get(feature)
        profile[name] = NEUTRAL if value is None else round(value * 100)
    return profile


def _genre_hit(genres: list[str], *needles: str) -> bool:
    return any(n in g for g in genres for n in needles)


def personality(profile: dict[str, int], top_genres: list[str] | None = None) -> dict[str, str]:
    genres = [g.lower() for g in (top_genres or [])]
    happiness = profile["happiness"]
    energy = profile["energy"]

    if energy >= 80 and happiness >= 80:
        return {
            "name": "The Party Starter",
            "description": "Everywhere you go, the energy follows.",
        }
    if profile["danceability"] >= 80:
        return {
            "name": "The Dance Floor Commander",
            "description": "Your playlist is a master class in making people move.",
        }
    if profile["acousticness"] >= 60 and energy <= 50:
        return {
            "name": "The Acoustic Purist",
            "description": "You appreciate the raw, unfiltered soul of music.",
        }
    if _genre_hit(genres, "indie", "alternative"):
        return {
            "name": "The Indie Explorer",
            "description": "You found your favourite bands before they were cool.",
        }
    if _genre_hit(genres, "hip hop", "hip-hop", "rap"):
        return {
            "name": "The Rhythm Master",
            "description": "You live life to the beat and know every word.",
        }
    if _genre_hit(genres, "classical", "jazz"):
        return {
            "name": "The Sophisticated Listener",
            "description": "Refined, respectable, and a little bit fancy.",
        }
    return {
        "name": "The Musical Chameleon",
        "description": "Your taste is diverse enough to soundtrack a film festival.",
    }


def insights(profile: dict[str, int]) -> list[str]:
    out = []
    if profile["happiness"] >= 80:
        out.append("Your music radiates pure joy.")
    elif profile["happiness"] <= 30:
        out.append("You find beauty in melancholy.")
    if profile["energy"] >= 80:
        out.append("Your playlists could power a small city.")
    elif profile["energy"] <= 30:
        out.append("You are all about chill vibes.")
    if profile["danceability"] >= 80:
        out.append("Your music may cause spontaneous dancing in public.")
    return out


def describe(averages: dict[str, float] | None, top_genres: list[str] | None) -> dict[str, Any]:
    profile = mood_profile(averages)
    return {
        "profile": profile,
        "personality": personality(profile, top_genres),
        "insights": insights(profile),
    }
