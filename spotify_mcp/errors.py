import traceback
from typing import Any, Dict, Optional


class SpotifyError(Exception):
    pass


class SpotifyConfigError(SpotifyError):
    """Client id/secret missing or the config file is unusable."""


class SpotifyAuthError(SpotifyError):
    """The accounts service rejected a token request."""

    def __init__(self, message: str, status: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.body = body


class SpotifyAPIError(SpotifyError):
    """Non-success response from the Web API, or the request never completed."""

    def __init__(self, message: str, status: Optional[int] = None, reason: Optional[str] = None,
                 body: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.reason = reason
        self.body = body

    @classmethod
    def from_response(cls, status: int, reason: Optional[str], body: str) -> "SpotifyAPIError":
        return cls(
            f"Spotify API error {status} ({reason or 'Unknown'})",
            status=status,
            reason=reason,
            body=body,
        )


class SpotifyDecodeError(SpotifyAPIError):
    pass


class ToolValidationError(SpotifyError):
    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code


class MissingAccessTokenError(ToolValidationError):
    def __init__(self, message: str = "User access token is required for this operation."):
        super().__init__(message, "MISSING_ACCESS_TOKEN")


# -----------------------------------------------------------------------------
# Error envelope: the one failure shape every tool returns
# -----------------------------------------------------------------------------

def error_envelope(message: str, code: Optional[str] = None, details: Optional[str] = None) -> Dict[str, Any]:
    return {"error": True, "message": message, "code": code, "details": details}


def envelope_from_exception(exc: BaseException, code: Optional[str] = None) -> Dict[str, Any]:
    if isinstance(exc, ToolValidationError):
        return error_envelope(exc.message, exc.code or code)

    if isinstance(exc, (SpotifyAPIError, SpotifyAuthError)) and exc.body:
        details = exc.body
    else:
        details = "".join(traceback.format_exception_only(type(exc), exc)).strip()
    return error_envelope(str(exc) or type(exc).__name__, code, details)
