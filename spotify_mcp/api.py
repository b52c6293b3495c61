import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar

import aiohttp
from pydantic import BaseModel, ValidationError

from .auth import TokenManager
from .config import SpotifySettings
from .errors import MissingAccessTokenError, SpotifyAPIError, SpotifyDecodeError
from .models import (
    Album,
    Artist,
    Audiobook,
    AudioFeatures,
    Chapter,
    Paging,
    PlaybackState,
    Playlist,
    SavedAudiobook,
    SearchResponse,
    Track,
    User,
)
from .validation import is_blank

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class SpotifyClient:
    """
    Authenticated access to the Spotify Web API.

    Public resources fall back to the client-credentials token when no user
    token is passed; user-scoped resources insist on an explicit one. Every
    call issues exactly one HTTP request and never retries.
    """

    def __init__(self, session: aiohttp.ClientSession, token_manager: TokenManager,
                 settings: SpotifySettings):
        self._session = session
        self._tokens = token_manager
        self._settings = settings

    @property
    def default_market(self) -> str:
        return self._settings.default_market

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    async def _resolve_token(self, access_token: Any, user_scoped: bool) -> str:
        if isinstance(access_token, str) and not is_blank(access_token):
            return access_token.strip()
        if user_scoped:
            raise MissingAccessTokenError()
        return await self._tokens.get_client_credentials_token()

    async def _request(
        self,
        method: str,
        path: str,
        access_token: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Dict[str, Any]] = None,
        user_scoped: bool = False,
    ) -> Any:
        """
        Send one request and return the decoded JSON body, or None for
        204 No Content and empty bodies.
        """
        token = await self._resolve_token(access_token, user_scoped)
        headers = {"Authorization": f"Bearer {token}"}
        url = f"{self._settings.api_base_url.rstrip('/')}/{path.lstrip('/')}"

        try:
            async with self._session.request(method, url, headers=headers, params=params,
                                             json=json_data) as response:
                if response.status == 204:
                    return None

                body_text = await response.text()
                if response.status >= 400:
                    logger.error(
                        "Spotify API error %s\n"
                        "→ %s %s\n"
                        "→ params=%s json=%s\n"
                        "→ body=%s",
                        response.status, method, url, params, json_data, body_text[:800],
                    )
                    raise SpotifyAPIError.from_response(response.status, response.reason, body_text[:2000])
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("Request to Spotify failed: %s %s: %s", method, url, e)
            raise SpotifyAPIError(f"Request to Spotify failed: {e}") from e

        if not body_text.strip():
            return None
        try:
            return json.loads(body_text)
        except ValueError as e:
            raise SpotifyDecodeError(f"Invalid JSON from {method} {path}: {e}", body=body_text[:2000]) from e

    @staticmethod
    def _parse(model: Type[M], payload: Any) -> Optional[M]:
        if payload is None:
            return None
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            raise SpotifyDecodeError(f"Deserialization of {model.__name__} failed: {e}") from e

    @classmethod
    def _parse_list(cls, model: Type[M], items: Optional[Sequence[Any]]) -> List[M]:
        # batch endpoints answer unknown IDs with null entries
        return [cls._parse(model, item) for item in (items or []) if item is not None]

    @staticmethod
    def _field(payload: Any, key: str) -> Any:
        if payload is None:
            return None
        if not isinstance(payload, dict):
            raise SpotifyDecodeError(f"Expected a JSON object with '{key}', got {type(payload).__name__}")
        return payload.get(key)

    @staticmethod
    def _ids(ids: Sequence[str]) -> str:
        return ",".join(ids)

    # -------------------------------------------------------------------------
    # Tracks
    # -------------------------------------------------------------------------

    async def get_track(self, track_id: str, access_token: Optional[str] = None) -> Optional[Track]:
        return self._parse(Track, await self._request("GET", f"tracks/{track_id}", access_token))

    async def get_tracks(self, track_ids: Sequence[str], access_token: Optional[str] = None) -> List[Track]:
        payload = await self._request("GET", "tracks", access_token, params={"ids": self._ids(track_ids)})
        return self._parse_list(Track, self._field(payload, "tracks"))

    async def get_audio_features(self, track_id: str,
                                 access_token: Optional[str] = None) -> Optional[AudioFeatures]:
        return self._parse(AudioFeatures, await self._request("GET", f"audio-features/{track_id}", access_token))

    async def get_several_audio_features(self, track_ids: Sequence[str],
                                         access_token: Optional[str] = None) -> List[AudioFeatures]:
        payload = await self._request("GET", "audio-features", access_token,
                                      params={"ids": self._ids(track_ids)})
        return self._parse_list(AudioFeatures, self._field(payload, "audio_features"))

    # -------------------------------------------------------------------------
    # Artists and albums
    # -------------------------------------------------------------------------

    async def get_artist(self, artist_id: str, access_token: Optional[str] = None) -> Optional[Artist]:
        return self._parse(Artist, await self._request("GET", f"artists/{artist_id}", access_token))

    async def get_artist_albums(self, artist_id: str, limit: int = 20, offset: int = 0,
                                access_token: Optional[str] = None) -> List[Album]:
        payload = await self._request("GET", f"artists/{artist_id}/albums", access_token,
                                      params={"limit": limit, "offset": offset})
        return self._parse_list(Album, self._field(payload, "items"))

    async def get_artist_top_tracks(self, artist_id: str, market: Optional[str] = None,
                                    access_token: Optional[str] = None) -> List[Track]:
        payload = await self._request("GET", f"artists/{artist_id}/top-tracks", access_token,
                                      params={"market": market or self.default_market})
        return self._parse_list(Track, self._field(payload, "tracks"))

    async def get_album(self, album_id: str, access_token: Optional[str] = None) -> Optional[Album]:
        return self._parse(Album, await self._request("GET", f"albums/{album_id}", access_token))

    async def get_album_tracks(self, album_id: str, limit: int = 50, offset: int = 0,
                               access_token: Optional[str] = None) -> List[Track]:
        payload = await self._request("GET", f"albums/{album_id}/tracks", access_token,
                                      params={"limit": limit, "offset": offset})
        return self._parse_list(Track, self._field(payload, "items"))

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------

    async def search(self, query: str, types: Sequence[str], limit: int = 20, offset: int = 0,
                     access_token: Optional[str] = None) -> SearchResponse:
        params = {"q": query, "type": ",".join(types), "limit": limit, "offset": offset}
        payload = await self._request("GET", "search", access_token, params=params)
        return self._parse(SearchResponse, payload) or SearchResponse()

    # -------------------------------------------------------------------------
    # Users and playlists
    # -------------------------------------------------------------------------

    async def get_current_user(self, access_token: Optional[str]) -> Optional[User]:
        return self._parse(User, await self._request("GET", "me", access_token, user_scoped=True))

    async def get_user_playlists(self, access_token: Optional[str], limit: int = 20,
                                 offset: int = 0) -> List[Playlist]:
        payload = await self._request("GET", "me/playlists", access_token,
                                      params={"limit": limit, "offset": offset}, user_scoped=True)
        return self._parse_list(Playlist, self._field(payload, "items"))

    async def get_playlist(self, playlist_id: str, access_token: Optional[str] = None) -> Optional[Playlist]:
        return self._parse(Playlist, await self._request("GET", f"playlists/{playlist_id}", access_token))

    # -------------------------------------------------------------------------
    # Player
    # -------------------------------------------------------------------------

    async def get_current_playback(self, access_token: Optional[str]) -> Optional[PlaybackState]:
        """None means the user has no active playback session (204 from Spotify)."""
        return self._parse(PlaybackState, await self._request("GET", "me/player", access_token, user_scoped=True))

    async def pause_playback(self, access_token: Optional[str]) -> None:
        await self._request("PUT", "me/player/pause", access_token, user_scoped=True)

    async def start_playback(self, access_token: Optional[str], context_uri: Optional[str] = None,
                             uris: Optional[Sequence[str]] = None) -> None:
        body: Optional[Dict[str, Any]] = None
        if context_uri or uris:
            body = {}
            if context_uri:
                body["context_uri"] = context_uri
            if uris:
                body["uris"] = list(uris)
        await self._request("PUT", "me/player/play", access_token, json_data=body, user_scoped=True)

    async def skip_to_next(self, access_token: Optional[str]) -> None:
        await self._request("POST", "me/player/next", access_token, user_scoped=True)

    async def skip_to_previous(self, access_token: Optional[str]) -> None:
        await self._request("POST", "me/player/previous", access_token, user_scoped=True)

    # -------------------------------------------------------------------------
    # Audiobooks
    # -------------------------------------------------------------------------

    async def get_audiobook(self, audiobook_id: str, market: Optional[str] = None,
                            access_token: Optional[str] = None) -> Optional[Audiobook]:
        payload = await self._request("GET", f"audiobooks/{audiobook_id}", access_token,
                                      params={"market": market or self.default_market})
        return self._parse(Audiobook, payload)

    async def get_audiobooks(self, audiobook_ids: Sequence[str], market: Optional[str] = None,
                             access_token: Optional[str] = None) -> List[Audiobook]:
        params = {"ids": self._ids(audiobook_ids), "market": market or self.default_market}
        payload = await self._request("GET", "audiobooks", access_token, params=params)
        return self._parse_list(Audiobook, self._field(payload, "audiobooks"))

    async def get_audiobook_chapters(self, audiobook_id: str, market: Optional[str] = None, limit: int = 20,
                                     offset: int = 0, access_token: Optional[str] = None) -> List[Chapter]:
        params = {"market": market or self.default_market, "limit": limit, "offset": offset}
        payload = await self._request("GET", f"audiobooks/{audiobook_id}/chapters", access_token, params=params)
        return self._parse_list(Chapter, self._field(payload, "items"))

    async def get_saved_audiobooks(self, access_token: Optional[str], limit: int = 20,
                                   offset: int = 0) -> List[Audiobook]:
        payload = await self._request("GET", "me/audiobooks", access_token,
                                      params={"limit": limit, "offset": offset}, user_scoped=True)
        page = self._parse(Paging[SavedAudiobook], payload)
        if page is None:
            return []
        return [item.audiobook for item in page.items if item is not None]

    async def save_audiobooks(self, access_token: Optional[str], audiobook_ids: Sequence[str]) -> None:
        await self._request("PUT", "me/audiobooks", access_token,
                            params={"ids": self._ids(audiobook_ids)}, user_scoped=True)

    async def remove_saved_audiobooks(self, access_token: Optional[str], audiobook_ids: Sequence[str]) -> None:
        await self._request("DELETE", "me/audiobooks", access_token,
                            params={"ids": self._ids(audiobook_ids)}, user_scoped=True)

    async def check_saved_audiobooks(self, access_token: Optional[str],
                                     audiobook_ids: Sequence[str]) -> List[bool]:
        payload = await self._request("GET", "me/audiobooks/contains", access_token,
                                      params={"ids": self._ids(audiobook_ids)}, user_scoped=True)
        if not isinstance(payload, list) or not all(isinstance(v, bool) for v in payload):
            raise SpotifyDecodeError(f"Expected a list of booleans from me/audiobooks/contains, got {payload!r}")
        if len(payload) != len(audiobook_ids):
            raise SpotifyDecodeError(
                f"Expected {len(audiobook_ids)} flags from me/audiobooks/contains, got {len(payload)}"
            )
        return payload
