import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import mcp.types as types
from pydantic import BaseModel

from .api import SpotifyClient
from .auth import TokenManager
from .config import SpotifySettings
from .errors import SpotifyError, ToolValidationError, envelope_from_exception, error_envelope
from .validation import (
    MAX_AUDIO_FEATURE_IDS,
    check_limit,
    check_offset,
    parse_id_list,
    parse_search_types,
    require_id,
    require_text,
    require_token,
    split_csv,
)

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Schema helpers
# -----------------------------------------------------------------------------

def _str(description: str, default: Optional[str] = None) -> Dict[str, Any]:
    prop: Dict[str, Any] = {"type": "string", "description": description}
    if default is not None:
        prop["default"] = default
    return prop


def _limit(default: int = 20, maximum: int = 50) -> Dict[str, Any]:
    return {"type": "integer", "minimum": 1, "maximum": maximum, "default": default,
            "description": f"Maximum number of results to return (1-{maximum})"}


_OFFSET = {"type": "integer", "minimum": 0, "default": 0,
           "description": "Index of the first result to return (for pagination)"}
_OPTIONAL_TOKEN = _str("Optional user access token; the app token is used when omitted")
_MARKET = _str("Market/country code (e.g., 'US', 'GB', 'CA')")


def _user_token(scopes: str) -> Dict[str, Any]:
    return _str(f"User access token with {scopes} scope")


def _schema(properties: Dict[str, Any], required: Optional[List[str]] = None) -> Dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required or []}


def _search_tool(kind: str) -> types.Tool:
    return types.Tool(
        name=f"search_{kind}s",
        description=f"Search specifically for {kind}s on Spotify.",
        inputSchema=_schema(
            {"query": _str("Search query string"), "limit": _limit(), "offset": _OFFSET,
             "access_token": _OPTIONAL_TOKEN},
            ["query"],
        ),
    )


def get_tool_definitions() -> List[types.Tool]:
    return [
        # Tracks
        types.Tool(
            name="get_track",
            description="Get details about a specific track by its Spotify ID.",
            inputSchema=_schema({"track_id": _str("Spotify track ID"), "access_token": _OPTIONAL_TOKEN},
                                ["track_id"]),
        ),
        types.Tool(
            name="get_tracks",
            description="Get details about multiple tracks by their Spotify IDs (max 50).",
            inputSchema=_schema({"track_ids": _str("Comma-separated list of Spotify track IDs"),
                                 "access_token": _OPTIONAL_TOKEN}, ["track_ids"]),
        ),
        types.Tool(
            name="get_audio_features",
            description="Get audio features for a track (acousticness, danceability, energy, tempo, etc.).",
            inputSchema=_schema({"track_id": _str("Spotify track ID"), "access_token": _OPTIONAL_TOKEN},
                                ["track_id"]),
        ),
        types.Tool(
            name="get_multiple_audio_features",
            description="Get audio features for multiple tracks (max 100).",
            inputSchema=_schema({"track_ids": _str("Comma-separated list of Spotify track IDs"),
                                 "access_token": _OPTIONAL_TOKEN}, ["track_ids"]),
        ),
        # Artists
        types.Tool(
            name="get_artist",
            description="Get details about a specific artist: genres, popularity, followers and images.",
            inputSchema=_schema({"artist_id": _str("Spotify artist ID"), "access_token": _OPTIONAL_TOKEN},
                                ["artist_id"]),
        ),
        types.Tool(
            name="get_artist_albums",
            description="Get albums by a specific artist.",
            inputSchema=_schema({"artist_id": _str("Spotify artist ID"), "limit": _limit(),
                                 "offset": _OFFSET, "access_token": _OPTIONAL_TOKEN}, ["artist_id"]),
        ),
        types.Tool(
            name="get_artist_top_tracks",
            description="Get an artist's most popular tracks in a market.",
            inputSchema=_schema({"artist_id": _str("Spotify artist ID"), "market": _MARKET,
                                 "access_token": _OPTIONAL_TOKEN}, ["artist_id"]),
        ),
        # Albums
        types.Tool(
            name="get_album",
            description="Get details about a specific album by its Spotify ID.",
            inputSchema=_schema({"album_id": _str("Spotify album ID"), "access_token": _OPTIONAL_TOKEN},
                                ["album_id"]),
        ),
        types.Tool(
            name="get_album_tracks",
            description="Get the tracks of a specific album.",
            inputSchema=_schema({"album_id": _str("Spotify album ID"), "limit": _limit(default=50),
                                 "offset": _OFFSET, "access_token": _OPTIONAL_TOKEN}, ["album_id"]),
        ),
        # Search
        types.Tool(
            name="search",
            description="Search for tracks, albums, artists, playlists, or audiobooks on Spotify.",
            inputSchema=_schema(
                {
                    "query": _str("Search query string"),
                    "types": _str("Comma-separated item types: track, album, artist, playlist, audiobook",
                                  default="track,album,artist,playlist"),
                    "limit": _limit(),
                    "offset": _OFFSET,
                    "access_token": _OPTIONAL_TOKEN,
                },
                ["query"],
            ),
        ),
        _search_tool("track"),
        _search_tool("artist"),
        _search_tool("album"),
        _search_tool("playlist"),
        _search_tool("audiobook"),
        # Playlists and user
        types.Tool(
            name="get_playlist",
            description="Get details about a specific playlist by its Spotify ID.",
            inputSchema=_schema({"playlist_id": _str("Spotify playlist ID"), "access_token": _OPTIONAL_TOKEN},
                                ["playlist_id"]),
        ),
        types.Tool(
            name="get_user_playlists",
            description="Get the current user's playlists (requires user access token).",
            inputSchema=_schema({"access_token": _user_token("playlist-read-private"), "limit": _limit(),
                                 "offset": _OFFSET}, ["access_token"]),
        ),
        types.Tool(
            name="get_current_user",
            description="Get the current user's profile information (requires user access token).",
            inputSchema=_schema({"access_token": _user_token("user-read-private")}, ["access_token"]),
        ),
        # Player
        types.Tool(
            name="get_playback",
            description="Get the current playback state for the user.",
            inputSchema=_schema({"access_token": _user_token("user-read-playback-state")}, ["access_token"]),
        ),
        types.Tool(
            name="pause_playback",
            description="Pause the user's current playback.",
            inputSchema=_schema({"access_token": _user_token("user-modify-playback-state")}, ["access_token"]),
        ),
        types.Tool(
            name="start_playback",
            description="Start or resume the user's playback, optionally with a context or list of tracks.",
            inputSchema=_schema(
                {
                    "access_token": _user_token("user-modify-playback-state"),
                    "context_uri": _str("Optional context URI (album, artist, or playlist URI)"),
                    "uris": _str("Optional comma-separated list of track URIs to play"),
                },
                ["access_token"],
            ),
        ),
        types.Tool(
            name="skip_next",
            description="Skip to the next track in the user's queue.",
            inputSchema=_schema({"access_token": _user_token("user-modify-playback-state")}, ["access_token"]),
        ),
        types.Tool(
            name="skip_previous",
            description="Skip to the previous track in the user's queue.",
            inputSchema=_schema({"access_token": _user_token("user-modify-playback-state")}, ["access_token"]),
        ),
        # Audiobooks
        types.Tool(
            name="get_audiobook",
            description="Get details about a specific audiobook by its Spotify ID.",
            inputSchema=_schema({"audiobook_id": _str("Spotify audiobook ID"), "market": _MARKET,
                                 "access_token": _OPTIONAL_TOKEN}, ["audiobook_id"]),
        ),
        types.Tool(
            name="get_audiobooks",
            description="Get details about multiple audiobooks by their Spotify IDs (max 50).",
            inputSchema=_schema({"audiobook_ids": _str("Comma-separated list of Spotify audiobook IDs"),
                                 "market": _MARKET, "access_token": _OPTIONAL_TOKEN}, ["audiobook_ids"]),
        ),
        types.Tool(
            name="get_audiobook_chapters",
            description="Get the chapters of a specific audiobook.",
            inputSchema=_schema({"audiobook_id": _str("Spotify audiobook ID"), "market": _MARKET,
                                 "limit": _limit(), "offset": _OFFSET, "access_token": _OPTIONAL_TOKEN},
                                ["audiobook_id"]),
        ),
        types.Tool(
            name="get_saved_audiobooks",
            description="Get the audiobooks saved in the current user's library.",
            inputSchema=_schema({"access_token": _user_token("user-library-read"), "limit": _limit(),
                                 "offset": _OFFSET}, ["access_token"]),
        ),
        types.Tool(
            name="save_audiobooks",
            description="Save audiobooks to the current user's library (max 50).",
            inputSchema=_schema({"access_token": _user_token("user-library-modify"),
                                 "audiobook_ids": _str("Comma-separated list of Spotify audiobook IDs")},
                                ["access_token", "audiobook_ids"]),
        ),
        types.Tool(
            name="remove_saved_audiobooks",
            description="Remove audiobooks from the current user's library (max 50).",
            inputSchema=_schema({"access_token": _user_token("user-library-modify"),
                                 "audiobook_ids": _str("Comma-separated list of Spotify audiobook IDs")},
                                ["access_token", "audiobook_ids"]),
        ),
        types.Tool(
            name="check_saved_audiobooks",
            description="Check whether audiobooks are saved in the current user's library (max 50).",
            inputSchema=_schema({"access_token": _user_token("user-library-read"),
                                 "audiobook_ids": _str("Comma-separated list of Spotify audiobook IDs")},
                                ["access_token", "audiobook_ids"]),
        ),
        # Auth
        types.Tool(
            name="get_auth_url",
            description="Generate a Spotify authorization URL for the OAuth authorization-code flow.",
            inputSchema=_schema(
                {
                    "scopes": _str("Comma-separated scopes (e.g., 'user-read-private,playlist-read-private')"),
                    "client_id": _str("Spotify client ID (defaults to the configured one)"),
                    "redirect_uri": _str("Redirect URI registered in your Spotify app (defaults to the configured one)"),
                },
                ["scopes"],
            ),
        ),
        types.Tool(
            name="exchange_auth_code",
            description="Exchange an authorization code for access and refresh tokens.",
            inputSchema=_schema(
                {
                    "code": _str("Authorization code received on the redirect"),
                    "redirect_uri": _str("Redirect URI used in the authorization request"),
                    "client_id": _str("Spotify client ID (defaults to the configured one)"),
                    "client_secret": _str("Spotify client secret (defaults to the configured one)"),
                },
                ["code"],
            ),
        ),
        types.Tool(
            name="refresh_token",
            description="Get a fresh user access token from a refresh token.",
            inputSchema=_schema(
                {
                    "refresh_token": _str("Refresh token obtained during authorization"),
                    "client_id": _str("Spotify client ID (defaults to the configured one)"),
                    "client_secret": _str("Spotify client secret (defaults to the configured one)"),
                },
                ["refresh_token"],
            ),
        ),
        types.Tool(
            name="get_client_token",
            description="Get an app access token via the client-credentials flow (public data only).",
            inputSchema=_schema({}),
        ),
    ]


# -----------------------------------------------------------------------------
# Serialization
# -----------------------------------------------------------------------------

def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", exclude_none=True)
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def to_json(value: Any) -> str:
    return json.dumps(_jsonable(value), indent=2)


def _envelope(message: str, code: Optional[str] = None) -> str:
    return json.dumps(error_envelope(message, code))


def _success(message: str) -> str:
    return json.dumps({"success": True, "message": message})


# codes that do not follow the <TOOL_NAME>_ERROR pattern
_ERROR_CODES = {
    "get_auth_url": "AUTH_URL_ERROR",
    "exchange_auth_code": "EXCHANGE_AUTH_ERROR",
    "get_client_token": "CLIENT_TOKEN_ERROR",
    "remove_saved_audiobooks": "REMOVE_AUDIOBOOKS_ERROR",
}


class SpotifyTools:
    """Tool handlers: validate arguments, call the client, serialize the result."""

    def __init__(self, client: SpotifyClient, token_manager: TokenManager, settings: SpotifySettings):
        self.client = client
        self.tokens = token_manager
        self.settings = settings
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[str]]] = {
            tool.name: getattr(self, f"_tool_{tool.name}") for tool in get_tool_definitions()
        }

    @property
    def names(self) -> List[str]:
        return list(self._handlers)

    async def call(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> str:
        handler = self._handlers.get(name)
        if handler is None:
            return _envelope(f"Unknown tool: {name}", "UNKNOWN_TOOL")

        code = _ERROR_CODES.get(name, f"{name.upper()}_ERROR")
        try:
            return await handler(arguments or {})
        except ToolValidationError as e:
            logger.warning("Rejected %s call: %s", name, e.message)
            return json.dumps(envelope_from_exception(e, code))
        except SpotifyError as e:
            logger.error("Spotify error in %s: %s", name, e)
            return json.dumps(envelope_from_exception(e, code))
        except Exception as e:
            logger.exception("Unexpected error in %s: %s", name, e)
            return json.dumps(envelope_from_exception(e, code))

    # -------------------------------------------------------------------------
    # Tracks
    # -------------------------------------------------------------------------

    async def _tool_get_track(self, args: Dict[str, Any]) -> str:
        track_id = require_id(args.get("track_id"), "track")
        track = await self.client.get_track(track_id, args.get("access_token"))
        if track is None:
            return _envelope(f"Track with ID '{track_id}' not found.", "TRACK_NOT_FOUND")
        return to_json(track)

    async def _tool_get_tracks(self, args: Dict[str, Any]) -> str:
        ids = parse_id_list(args.get("track_ids"), "track")
        return to_json(await self.client.get_tracks(ids, args.get("access_token")))

    async def _tool_get_audio_features(self, args: Dict[str, Any]) -> str:
        track_id = require_id(args.get("track_id"), "track")
        features = await self.client.get_audio_features(track_id, args.get("access_token"))
        if features is None:
            return _envelope(f"Audio features for track '{track_id}' not found.", "AUDIO_FEATURES_NOT_FOUND")
        return to_json(features)

    async def _tool_get_multiple_audio_features(self, args: Dict[str, Any]) -> str:
        ids = parse_id_list(args.get("track_ids"), "track", cap=MAX_AUDIO_FEATURE_IDS)
        return to_json(await self.client.get_several_audio_features(ids, args.get("access_token")))

    # -------------------------------------------------------------------------
    # Artists and albums
    # -------------------------------------------------------------------------

    async def _tool_get_artist(self, args: Dict[str, Any]) -> str:
        artist_id = require_id(args.get("artist_id"), "artist")
        artist = await self.client.get_artist(artist_id, args.get("access_token"))
        if artist is None:
            return _envelope(f"Artist with ID '{artist_id}' not found.", "ARTIST_NOT_FOUND")
        return to_json(artist)

    async def _tool_get_artist_albums(self, args: Dict[str, Any]) -> str:
        artist_id = require_id(args.get("artist_id"), "artist")
        limit = check_limit(args.get("limit", 20))
        offset = check_offset(args.get("offset", 0))
        return to_json(await self.client.get_artist_albums(artist_id, limit, offset, args.get("access_token")))

    async def _tool_get_artist_top_tracks(self, args: Dict[str, Any]) -> str:
        artist_id = require_id(args.get("artist_id"), "artist")
        tracks = await self.client.get_artist_top_tracks(artist_id, args.get("market"), args.get("access_token"))
        return to_json(tracks)

    async def _tool_get_album(self, args: Dict[str, Any]) -> str:
        album_id = require_id(args.get("album_id"), "album")
        album = await self.client.get_album(album_id, args.get("access_token"))
        if album is None:
            return _envelope(f"Album with ID '{album_id}' not found.", "ALBUM_NOT_FOUND")
        return to_json(album)

    async def _tool_get_album_tracks(self, args: Dict[str, Any]) -> str:
        album_id = require_id(args.get("album_id"), "album")
        limit = check_limit(args.get("limit", 50))
        offset = check_offset(args.get("offset", 0))
        return to_json(await self.client.get_album_tracks(album_id, limit, offset, args.get("access_token")))

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------

    async def _tool_search(self, args: Dict[str, Any]) -> str:
        query = require_text(args.get("query"), "Search query cannot be empty.", "EMPTY_QUERY")
        limit = check_limit(args.get("limit", 20))
        offset = check_offset(args.get("offset", 0))
        search_types = parse_search_types(args.get("types", "track,album,artist,playlist"))
        result = await self.client.search(query, search_types, limit, offset, args.get("access_token"))
        return to_json(result)

    async def _search_items(self, args: Dict[str, Any], kind: str) -> str:
        query = require_text(args.get("query"), "Search query cannot be empty.", "EMPTY_QUERY")
        limit = check_limit(args.get("limit", 20))
        offset = check_offset(args.get("offset", 0))
        result = await self.client.search(query, [kind], limit, offset, args.get("access_token"))
        page = getattr(result, f"{kind}s")
        items = [item for item in page.items if item is not None] if page else []
        return to_json(items)

    async def _tool_search_tracks(self, args: Dict[str, Any]) -> str:
        return await self._search_items(args, "track")

    async def _tool_search_artists(self, args: Dict[str, Any]) -> str:
        return await self._search_items(args, "artist")

    async def _tool_search_albums(self, args: Dict[str, Any]) -> str:
        return await self._search_items(args, "album")

    async def _tool_search_playlists(self, args: Dict[str, Any]) -> str:
        return await self._search_items(args, "playlist")

    async def _tool_search_audiobooks(self, args: Dict[str, Any]) -> str:
        return await self._search_items(args, "audiobook")

    # -------------------------------------------------------------------------
    # Playlists and user
    # -------------------------------------------------------------------------

    async def _tool_get_playlist(self, args: Dict[str, Any]) -> str:
        playlist_id = require_id(args.get("playlist_id"), "playlist")
        playlist = await self.client.get_playlist(playlist_id, args.get("access_token"))
        if playlist is None:
            return _envelope(f"Playlist with ID '{playlist_id}' not found.", "PLAYLIST_NOT_FOUND")
        return to_json(playlist)

    async def _tool_get_user_playlists(self, args: Dict[str, Any]) -> str:
        token = require_token(args.get("access_token"))
        limit = check_limit(args.get("limit", 20))
        offset = check_offset(args.get("offset", 0))
        return to_json(await self.client.get_user_playlists(token, limit, offset))

    async def _tool_get_current_user(self, args: Dict[str, Any]) -> str:
        token = require_token(args.get("access_token"))
        user = await self.client.get_current_user(token)
        if user is None:
            return _envelope("Unable to retrieve user profile.", "USER_PROFILE_NOT_FOUND")
        return to_json(user)

    # -------------------------------------------------------------------------
    # Player
    # -------------------------------------------------------------------------

    async def _tool_get_playback(self, args: Dict[str, Any]) -> str:
        token = require_token(args.get("access_token"))
        state = await self.client.get_current_playback(token)
        if state is None:
            return _envelope("No active playback session found.", "NO_PLAYBACK_SESSION")
        return to_json(state)

    async def _tool_pause_playback(self, args: Dict[str, Any]) -> str:
        token = require_token(args.get("access_token"))
        await self.client.pause_playback(token)
        return _success("Playback paused successfully.")

    async def _tool_start_playback(self, args: Dict[str, Any]) -> str:
        token = require_token(args.get("access_token"))
        context_uri = args.get("context_uri") or None
        uris = split_csv(args.get("uris")) or None
        await self.client.start_playback(token, context_uri, uris)
        return _success("Playback started successfully.")

    async def _tool_skip_next(self, args: Dict[str, Any]) -> str:
        token = require_token(args.get("access_token"))
        await self.client.skip_to_next(token)
        return _success("Skipped to next track successfully.")

    async def _tool_skip_previous(self, args: Dict[str, Any]) -> str:
        token = require_token(args.get("access_token"))
        await self.client.skip_to_previous(token)
        return _success("Skipped to previous track successfully.")

    # -------------------------------------------------------------------------
    # Audiobooks
    # -------------------------------------------------------------------------

    async def _tool_get_audiobook(self, args: Dict[str, Any]) -> str:
        audiobook_id = require_id(args.get("audiobook_id"), "audiobook")
        market = args.get("market") or self.client.default_market
        audiobook = await self.client.get_audiobook(audiobook_id, market, args.get("access_token"))
        if audiobook is None:
            return _envelope(f"Audiobook with ID '{audiobook_id}' not found in market '{market}'.",
                             "AUDIOBOOK_NOT_FOUND")
        return to_json(audiobook)

    async def _tool_get_audiobooks(self, args: Dict[str, Any]) -> str:
        ids = parse_id_list(args.get("audiobook_ids"), "audiobook")
        return to_json(await self.client.get_audiobooks(ids, args.get("market"), args.get("access_token")))

    async def _tool_get_audiobook_chapters(self, args: Dict[str, Any]) -> str:
        audiobook_id = require_id(args.get("audiobook_id"), "audiobook")
        limit = check_limit(args.get("limit", 20))
        offset = check_offset(args.get("offset", 0))
        chapters = await self.client.get_audiobook_chapters(audiobook_id, args.get("market"), limit, offset,
                                                            args.get("access_token"))
        return to_json(chapters)

    async def _tool_get_saved_audiobooks(self, args: Dict[str, Any]) -> str:
        token = require_token(args.get("access_token"))
        limit = check_limit(args.get("limit", 20))
        offset = check_offset(args.get("offset", 0))
        return to_json(await self.client.get_saved_audiobooks(token, limit, offset))

    async def _tool_save_audiobooks(self, args: Dict[str, Any]) -> str:
        token = require_token(args.get("access_token"))
        ids = parse_id_list(args.get("audiobook_ids"), "audiobook")
        await self.client.save_audiobooks(token, ids)
        return _success(f"Successfully saved {len(ids)} audiobook(s) to user's library.")

    async def _tool_remove_saved_audiobooks(self, args: Dict[str, Any]) -> str:
        token = require_token(args.get("access_token"))
        ids = parse_id_list(args.get("audiobook_ids"), "audiobook")
        await self.client.remove_saved_audiobooks(token, ids)
        return _success(f"Successfully removed {len(ids)} audiobook(s) from user's library.")

    async def _tool_check_saved_audiobooks(self, args: Dict[str, Any]) -> str:
        token = require_token(args.get("access_token"))
        ids = parse_id_list(args.get("audiobook_ids"), "audiobook")
        saved = await self.client.check_saved_audiobooks(token, ids)
        return to_json([{"audiobook_id": i, "is_saved": s} for i, s in zip(ids, saved)])

    # -------------------------------------------------------------------------
    # Auth
    # -------------------------------------------------------------------------

    def _credentials(self, args: Dict[str, Any]) -> Dict[str, str]:
        return {
            "client_id": require_text(args.get("client_id") or self.settings.client_id, "Client ID is required."),
            "client_secret": require_text(args.get("client_secret") or self.settings.client_secret,
                                          "Client secret is required."),
        }

    async def _tool_get_auth_url(self, args: Dict[str, Any]) -> str:
        client_id = require_text(args.get("client_id") or self.settings.client_id, "Client ID is required.")
        redirect_uri = require_text(args.get("redirect_uri") or self.settings.redirect_uri,
                                    "Redirect URI is required.")
        scopes = split_csv(args.get("scopes"))
        if not scopes:
            raise ToolValidationError("At least one scope is required.")
        url = self.tokens.build_authorization_url(client_id, redirect_uri, scopes)
        return json.dumps({"auth_url": url})

    async def _tool_exchange_auth_code(self, args: Dict[str, Any]) -> str:
        code = require_text(args.get("code"), "Authorization code is required.")
        redirect_uri = require_text(args.get("redirect_uri") or self.settings.redirect_uri,
                                    "Redirect URI is required.")
        token = await self.tokens.exchange_authorization_code(code, redirect_uri, **self._credentials(args))
        return to_json(token)

    async def _tool_refresh_token(self, args: Dict[str, Any]) -> str:
        refresh_token = require_text(args.get("refresh_token"), "Refresh token is required.")
        token = await self.tokens.refresh_access_token(refresh_token, **self._credentials(args))
        return to_json(token)

    async def _tool_get_client_token(self, args: Dict[str, Any]) -> str:
        access_token = await self.tokens.get_client_credentials_token()
        return json.dumps({"access_token": access_token, "token_type": "Bearer"})
