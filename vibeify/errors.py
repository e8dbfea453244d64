from __future__ import annotations


class VibeifyError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = 500
    code: str = "internal_error"
    default_message = "Internal Server Error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class ConfigError(VibeifyError):
    """Missing or invalid configuration; the process must not serve traffic."""

    code = "config_error"
    default_message = "Server is not configured"


class CsrfMismatch(VibeifyError):
    """OAuth ``state`` missing, expired, or not matching the state cookie."""

    status_code = 400
    code = "state_mismatch"
    default_message = "State mismatch. Auth failed."


class Unauthenticated(VibeifyError):
    status_code = 401
    code = "not_authenticated"
    default_message = "Not authenticated"


class SessionExpired(VibeifyError):
    """Refreshing the session's credential failed; the session is gone."""

    status_code = 401
    code = "session_expired"
    default_message = "Session expired, please reconnect"


class UpstreamError(VibeifyError):
    """Normalized non-success response from Spotify.

    ``status_code`` is the upstream status when it is meaningful to pass on
    (404, 403, ...); ``body`` keeps the raw upstream text for logging.
    """

    code = "upstream_error"
    default_message = "Spotify request failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code
        self.upstream_status = status_code
        self.body = body


class UpstreamAuthError(UpstreamError):
    """Spotify rejected our credentials (token endpoint failure or a 401)."""

    status_code = 401
    code = "upstream_auth_error"
    default_message = "Spotify authorization failed, please reconnect"

    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message, body=body)
        # Always answer our client with 401 regardless of what the token endpoint said
        self.upstream_status = status_code


class UpstreamTransientError(UpstreamError):
    """Network failure, timeout, or 5xx that survived every retry."""

    status_code = 502
    code = "upstream_unavailable"
    default_message = "Spotify is temporarily unavailable"

    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message, body=body)
        self.upstream_status = status_code
        if status_code == 503:
            self.status_code = 503


class UpstreamRateLimited(UpstreamError):
    status_code = 429
    code = "rate_limited"
    default_message = "Spotify rate limit reached, try again later"

    def __init__(
        self,
        message: str | None = None,
        *,
        retry_after: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message, status_code=429, body=body)
        self.retry_after = retry_after


# Errors meaning "this session can no longer talk to Spotify"
AUTH_ERRORS = (Unauthenticated, SessionExpired, UpstreamAuthError)


__all__ = [
    "VibeifyError",
    "ConfigError",
    "CsrfMismatch",
    "Unauthenticated",
    "SessionExpired",
    "UpstreamError",
    "UpstreamAuthError",
    "UpstreamTransientError",
    "UpstreamRateLimited",
    "AUTH_ERRORS",
]
