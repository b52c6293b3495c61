"""Spotify Web API exposed as Model Context Protocol tools."""

from .api import SpotifyClient
from .auth import TokenManager
from .config import SpotifySettings, load_settings
from .errors import (
    MissingAccessTokenError,
    SpotifyAPIError,
    SpotifyAuthError,
    SpotifyConfigError,
    SpotifyDecodeError,
    SpotifyError,
    ToolValidationError,
)
from .services import SpotifyServices
from .tools import SpotifyTools, get_tool_definitions

__version__ = "0.1.0"

__all__ = [
    "MissingAccessTokenError",
    "SpotifyAPIError",
    "SpotifyAuthError",
    "SpotifyClient",
    "SpotifyConfigError",
    "SpotifyDecodeError",
    "SpotifyError",
    "SpotifyServices",
    "SpotifySettings",
    "SpotifyTools",
    "TokenManager",
    "ToolValidationError",
    "get_tool_definitions",
    "load_settings",
]
