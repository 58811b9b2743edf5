from typing import Optional


class ApiError(Exception):
    """A REST call that did not produce a usable 2xx response."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status


class NetworkError(ApiError):
    """Request failed or timed out before the server answered."""


class AuthError(ApiError):
    """401/403. Handled upstream by re-authentication, never by the broadcast core."""


class ConflictError(ApiError):
    """409, typically another driver won the delivery."""


class RateLimitedError(ApiError):
    pass
