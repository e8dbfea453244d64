"""Vibeify backend: Spotify OAuth sessions, proxied reads, and vibe summaries."""

__version__ = "0.1.0"
