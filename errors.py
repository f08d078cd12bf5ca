"""
Error taxonomy shared by the API, the HTTP client and the client-side
synchronizer/recorder.

Each error carries the HTTP status it maps to so the server can render it
and the client can rebuild it from a response.
"""


class ScoretrackerError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Unauthorized(ScoretrackerError):
    """Missing or invalid credential."""

    status_code = 401


class Forbidden(ScoretrackerError):
    """Valid credential but insufficient role, or a mismatched league/token."""

    status_code = 403


class NotFound(ScoretrackerError):
    status_code = 404


class ValidationFailed(ScoretrackerError):
    status_code = 400


class UpstreamFailure(ScoretrackerError):
    """Storage collaborator error, surfaced with its message."""

    status_code = 502


class NetworkUnavailable(ScoretrackerError):
    """Client is offline, or the request never produced a response."""

    status_code = 503


# Never retried: the same request would fail the same way.
TERMINAL_ERRORS = (Unauthorized, Forbidden)

# Failures that leave a write queued for the next attempt.
RETRYABLE_ERRORS = (NetworkUnavailable, UpstreamFailure)


def error_for_status(status_code: int, message: str) -> ScoretrackerError:
    if status_code == 401:
        return Unauthorized(message)
    if status_code == 403:
        return Forbidden(message)
    if status_code == 404:
        return NotFound(message)
    if status_code in (400, 422):
        return ValidationFailed(message)
    return UpstreamFailure(message)
