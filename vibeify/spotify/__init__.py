"""Spotify OAuth token exchange, authenticated API proxy, and vibe aggregation."""

from .aggregate import VibeAggregator
from .client import SpotifyProxy
from .oauth import TokenExchangeClient, TokenGrant

__all__ = ["SpotifyProxy", "TokenExchangeClient", "TokenGrant", "VibeAggregator"]
