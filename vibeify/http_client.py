import httpx

from . import __version__
from .settings import Settings


def build_async_httpx_client(
    settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None, **kwargs
) -> httpx.AsyncClient:
    """Create the single outbound client shared by token exchange and the API proxy.

    Tests pass ``transport`` (an ``httpx.MockTransport``) to stand in for Spotify.
    """
    timeout = httpx.Timeout(settings.HTTP_CLIENT_TIMEOUT, connect=min(5.0, settings.HTTP_CLIENT_TIMEOUT))
    headers = {"Accept": "application/json", "User-Agent": f"vibeify/{__version__}"}
    return httpx.AsyncClient(
        timeout=timeout,
        headers=headers,
        follow_redirects=False,
        transport=transport,
        **kwargs,
    )
