import asyncio
import base64
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional
from urllib.parse import urlencode

import aiohttp
from pydantic import ValidationError

from .config import SpotifySettings
from .errors import SpotifyAuthError, SpotifyConfigError
from .models import TokenResponse

logger = logging.getLogger(__name__)

# Tokens are treated as expired this many seconds before Spotify says so
EXPIRY_MARGIN_SECONDS = 60


@dataclass(frozen=True)
class CachedToken:
    value: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


def _basic_auth_header(client_id: str, client_secret: str) -> Dict[str, str]:
    auth_string = f"{client_id}:{client_secret}"
    auth_b64 = base64.b64encode(auth_string.encode("utf-8")).decode("ascii")
    return {"Authorization": f"Basic {auth_b64}", "Content-Type": "application/x-www-form-urlencoded"}


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def new_state() -> str:
    return _b64url(secrets.token_bytes(24))


class TokenManager:
    """
    Owns the client-credentials token for one process (or one test).

    The cached slot is read and replaced under an asyncio.Lock, so callers that
    arrive while the token is expired share a single token-endpoint request.
    """

    def __init__(self, session: aiohttp.ClientSession, settings: SpotifySettings,
                 clock: Callable[[], float] = time.time):
        self._session = session
        self._settings = settings
        self._clock = clock
        self._cached: Optional[CachedToken] = None
        self._lock = asyncio.Lock()

    @property
    def cached_token(self) -> Optional[CachedToken]:
        return self._cached

    def invalidate(self) -> None:
        self._cached = None

    async def get_client_credentials_token(self) -> str:
        """
        Return a valid app-level bearer token, hitting the accounts service only
        when nothing is cached or the cached token is inside the expiry margin.
        """
        cached = self._cached
        if cached and cached.is_valid(self._clock()):
            return cached.value

        async with self._lock:
            # another caller may have refreshed while we waited
            cached = self._cached
            if cached and cached.is_valid(self._clock()):
                return cached.value

            settings = self._settings
            if not settings.client_id or not settings.client_secret:
                raise SpotifyConfigError("Missing SPOTIFY_CLIENT_ID or SPOTIFY_CLIENT_SECRET")

            token = await self._post_token_request(
                {"grant_type": "client_credentials"},
                settings.client_id,
                settings.client_secret,
                "Failed to get access token",
            )
            self._cached = CachedToken(
                value=token.access_token,
                expires_at=self._clock() + token.expires_in - EXPIRY_MARGIN_SECONDS,
            )
            logger.info("Acquired client-credentials token (expires in %ss)", token.expires_in)
            return token.access_token

    def build_authorization_url(self, client_id: str, redirect_uri: str, scopes: Iterable[str],
                                state: Optional[str] = None) -> str:
        params = {
            "response_type": "code",
            "client_id": client_id,
            "scope": " ".join(scopes),
            "redirect_uri": redirect_uri,
            "state": state or new_state(),
        }
        return f"{self._settings.authorize_url}?{urlencode(params)}"

    async def exchange_authorization_code(self, code: str, redirect_uri: str, client_id: str,
                                          client_secret: str) -> TokenResponse:
        data = {"grant_type": "authorization_code", "code": code, "redirect_uri": redirect_uri}
        return await self._post_token_request(data, client_id, client_secret,
                                              "Failed to exchange authorization code")

    async def refresh_access_token(self, refresh_token: str, client_id: str,
                                   client_secret: str) -> TokenResponse:
        data = {"grant_type": "refresh_token", "refresh_token": refresh_token}
        return await self._post_token_request(data, client_id, client_secret,
                                              "Failed to refresh access token")

    async def _post_token_request(self, data: Dict[str, str], client_id: str, client_secret: str,
                                  failure: str) -> TokenResponse:
        headers = _basic_auth_header(client_id, client_secret)
        try:
            async with self._session.post(self._settings.token_url, headers=headers, data=data) as response:
                if response.status != 200:
                    text = await response.text()
                    logger.error("Token request (%s) failed: %s - %s",
                                 data["grant_type"], response.status, text[:800])
                    raise SpotifyAuthError(f"{failure}: {response.status} - {text}",
                                           status=response.status, body=text)
                payload = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise SpotifyAuthError(f"{failure}: {e}") from e
        except ValueError as e:
            raise SpotifyAuthError(f"{failure}: invalid JSON in token response ({e})") from e

        try:
            return TokenResponse.model_validate(payload)
        except ValidationError as e:
            raise SpotifyAuthError(f"{failure}: unexpected token response ({e.error_count()} errors)") from e
