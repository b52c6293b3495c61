import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .errors import SpotifyConfigError

logger = logging.getLogger(__name__)

SPOTIFY_API_BASE = "https://api.spotify.com/v1"
SPOTIFY_ACCOUNTS_BASE = "https://accounts.spotify.com"
DEFAULT_REDIRECT_URI = "http://localhost:5000/oauth/callback"
DEFAULT_CONFIG_FILE = "appsettings.json"

# env var -> settings field
_ENV_FIELDS = {
    "SPOTIFY_CLIENT_ID": "client_id",
    "SPOTIFY_CLIENT_SECRET": "client_secret",
    "SPOTIFY_REDIRECT_URI": "redirect_uri",
    "SPOTIFY_API_BASE_URL": "api_base_url",
    "SPOTIFY_ACCOUNTS_BASE_URL": "accounts_base_url",
    "SPOTIFY_MARKET": "default_market",
    "SPOTIFY_MCP_SERVER_PORT": "port",
}

# appsettings.json "Spotify" section key -> settings field
_FILE_FIELDS = {
    "ClientId": "client_id",
    "ClientSecret": "client_secret",
    "RedirectUri": "redirect_uri",
    "ApiBaseUrl": "api_base_url",
    "AccountsBaseUrl": "accounts_base_url",
    "Market": "default_market",
}


@dataclass(frozen=True)
class SpotifySettings:
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    redirect_uri: str = DEFAULT_REDIRECT_URI
    api_base_url: str = SPOTIFY_API_BASE
    accounts_base_url: str = SPOTIFY_ACCOUNTS_BASE
    default_market: str = "US"
    port: int = 5000

    @property
    def has_client_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @property
    def token_url(self) -> str:
        return f"{self.accounts_base_url.rstrip('/')}/api/token"

    @property
    def authorize_url(self) -> str:
        return f"{self.accounts_base_url.rstrip('/')}/authorize"


def _read_config_file(path: Path) -> Dict[str, Any]:
    try:
        with path.open(encoding="utf-8") as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        raise SpotifyConfigError(f"Invalid JSON in config file {path}: {e}") from e

    section = raw.get("Spotify") if isinstance(raw, dict) else None
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise SpotifyConfigError(f"'Spotify' section in {path} must be an object")
    return {field: section[key] for key, field in _FILE_FIELDS.items() if section.get(key)}


def load_settings(
    config_file: Optional[str] = None,
    client_id: Optional[str] = None,
    client_secret: Optional[str] = None,
    load_env_file: bool = True,
    **overrides: Any,
) -> SpotifySettings:
    """
    Build settings from (lowest to highest precedence) a JSON config file,
    SPOTIFY_* environment variables and explicit arguments.

    Missing credentials are not an error here; the token manager fails on first use.
    """
    if load_env_file:
        load_dotenv()

    values: Dict[str, Any] = {}

    path = Path(config_file) if config_file else Path(DEFAULT_CONFIG_FILE)
    if path.is_file():
        values.update(_read_config_file(path))
        logger.debug("Loaded Spotify settings from %s", path)
    elif config_file:
        raise SpotifyConfigError(f"Config file not found: {config_file}")

    for env_name, field in _ENV_FIELDS.items():
        value = os.getenv(env_name)
        if value:
            values[field] = value

    if client_id:
        values["client_id"] = client_id
    if client_secret:
        values["client_secret"] = client_secret
    values.update({k: v for k, v in overrides.items() if v is not None})

    if "port" in values:
        try:
            values["port"] = int(values["port"])
        except (TypeError, ValueError) as e:
            raise SpotifyConfigError(f"Invalid port: {values['port']!r}") from e

    return SpotifySettings(**values)

