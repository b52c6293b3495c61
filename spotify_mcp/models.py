"""
Typed records for Spotify Web API payloads.

Fields use Spotify's snake_case names. Incoming keys are matched
case-insensitively (``displayName``, ``DisplayName`` and ``display_name``
all land on ``display_name``) and unknown keys are ignored, so a record
survives upstream additions.
"""

import re
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, model_validator

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")


def _snake_key(key: str) -> str:
    return _CAMEL_BOUNDARY.sub(r"_\1", key).lower()


def _snake_keys(data: Dict[Any, Any]) -> Dict[Any, Any]:
    return {(_snake_key(k) if isinstance(k, str) else k): v for k, v in data.items()}


class SpotifyModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _normalize_keys(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return _snake_keys(data)
        return data


T = TypeVar("T")


class Image(SpotifyModel):
    url: str
    height: Optional[int] = None
    width: Optional[int] = None


class Followers(SpotifyModel):
    href: Optional[str] = None
    total: int = 0


class Artist(SpotifyModel):
    id: Optional[str] = None
    name: str
    uri: Optional[str] = None
    href: Optional[str] = None
    external_urls: Dict[str, str] = {}
    type: str = "artist"
    popularity: Optional[int] = None
    genres: Optional[List[str]] = None
    followers: Optional[Followers] = None
    images: Optional[List[Image]] = None


class Album(SpotifyModel):
    id: Optional[str] = None
    name: str
    uri: Optional[str] = None
    href: Optional[str] = None
    external_urls: Dict[str, str] = {}
    album_type: Optional[str] = None
    total_tracks: Optional[int] = None
    release_date: Optional[str] = None
    release_date_precision: Optional[str] = None
    type: str = "album"
    artists: List[Artist] = []
    images: List[Image] = []
    available_markets: Optional[List[str]] = None
    label: Optional[str] = None
    popularity: Optional[int] = None


class Track(SpotifyModel):
    id: Optional[str] = None
    name: str
    uri: Optional[str] = None
    href: Optional[str] = None
    external_urls: Dict[str, str] = {}
    preview_url: Optional[str] = None
    track_number: Optional[int] = None
    disc_number: Optional[int] = None
    type: str = "track"
    popularity: Optional[int] = None
    duration_ms: Optional[int] = None
    explicit: bool = False
    is_playable: Optional[bool] = None
    is_local: bool = False
    artists: List[Artist] = []
    # absent on the simplified tracks returned by /albums/{id}/tracks
    album: Optional[Album] = None
    available_markets: Optional[List[str]] = None


class AudioFeatures(SpotifyModel):
    id: str
    uri: Optional[str] = None
    track_href: Optional[str] = None
    analysis_url: Optional[str] = None
    type: str = "audio_features"
    acousticness: Optional[float] = None
    danceability: Optional[float] = None
    energy: Optional[float] = None
    instrumentalness: Optional[float] = None
    liveness: Optional[float] = None
    loudness: Optional[float] = None
    speechiness: Optional[float] = None
    valence: Optional[float] = None
    tempo: Optional[float] = None
    duration_ms: Optional[int] = None
    time_signature: Optional[int] = None
    key: Optional[int] = None
    mode: Optional[int] = None


class User(SpotifyModel):
    id: str
    display_name: Optional[str] = None
    uri: Optional[str] = None
    href: Optional[str] = None
    external_urls: Dict[str, str] = {}
    type: str = "user"
    email: Optional[str] = None
    country: Optional[str] = None
    product: Optional[str] = None
    followers: Optional[Followers] = None
    images: Optional[List[Image]] = None


class PlaylistTracks(SpotifyModel):
    href: Optional[str] = None
    total: int = 0


class Playlist(SpotifyModel):
    id: Optional[str] = None
    name: str
    description: Optional[str] = None
    uri: Optional[str] = None
    href: Optional[str] = None
    external_urls: Dict[str, str] = {}
    public: Optional[bool] = None
    collaborative: bool = False
    type: str = "playlist"
    owner: Optional[User] = None
    images: Optional[List[Image]] = None
    tracks: Optional[PlaylistTracks] = None
    snapshot_id: Optional[str] = None
    followers: Optional[Followers] = None


class Device(SpotifyModel):
    id: Optional[str] = None
    is_active: bool = False
    is_private_session: bool = False
    is_restricted: bool = False
    name: str
    type: str
    volume_percent: Optional[int] = None
    supports_volume: bool = False


class PlaybackContext(SpotifyModel):
    type: str
    href: Optional[str] = None
    external_urls: Dict[str, str] = {}
    uri: str


class PlaybackActions(SpotifyModel):
    interrupting_playback: Optional[bool] = None
    pausing: Optional[bool] = None
    resuming: Optional[bool] = None
    seeking: Optional[bool] = None
    skipping_next: Optional[bool] = None
    skipping_prev: Optional[bool] = None
    toggling_repeat_context: Optional[bool] = None
    toggling_shuffle: Optional[bool] = None
    toggling_repeat_track: Optional[bool] = None
    transferring_playback: Optional[bool] = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_disallows(cls, data: Any) -> Any:
        # the player endpoint nests these flags under "disallows"
        if not isinstance(data, dict):
            return data
        data = _snake_keys(data)
        disallows = data.pop("disallows", None)
        if isinstance(disallows, dict):
            return {**_snake_keys(disallows), **data}
        return data


class PlaybackState(SpotifyModel):
    device: Optional[Device] = None
    repeat_state: Optional[str] = None
    shuffle_state: bool = False
    context: Optional[PlaybackContext] = None
    timestamp: Optional[int] = None
    progress_ms: Optional[int] = None
    is_playing: bool = False
    item: Optional[Track] = None
    currently_playing_type: Optional[str] = None
    actions: Optional[PlaybackActions] = None


class ResumePoint(SpotifyModel):
    fully_played: bool = False
    resume_position_ms: int = 0


class Author(SpotifyModel):
    name: str


class Narrator(SpotifyModel):
    name: str


class Copyright(SpotifyModel):
    text: str
    type: Optional[str] = None


class Audiobook(SpotifyModel):
    id: Optional[str] = None
    name: str
    description: Optional[str] = None
    html_description: Optional[str] = None
    uri: Optional[str] = None
    href: Optional[str] = None
    external_urls: Dict[str, str] = {}
    images: List[Image] = []
    languages: List[str] = []
    media_type: Optional[str] = None
    narrators: List[Narrator] = []
    authors: List[Author] = []
    publisher: Optional[str] = None
    type: str = "audiobook"
    total_chapters: Optional[int] = None
    available_markets: Optional[List[str]] = None
    copyrights: List[Copyright] = []
    edition: Optional[str] = None
    explicit: bool = False


class Chapter(SpotifyModel):
    id: Optional[str] = None
    name: str
    description: Optional[str] = None
    html_description: Optional[str] = None
    uri: Optional[str] = None
    href: Optional[str] = None
    external_urls: Dict[str, str] = {}
    images: List[Image] = []
    chapter_number: Optional[int] = None
    duration_ms: Optional[int] = None
    audio_preview_url: Optional[str] = None
    explicit: bool = False
    is_playable: Optional[bool] = None
    languages: List[str] = []
    release_date: Optional[str] = None
    release_date_precision: Optional[str] = None
    resume_point: Optional[ResumePoint] = None
    type: str = "chapter"
    available_markets: Optional[List[str]] = None


class SavedAudiobook(SpotifyModel):
    added_at: Optional[str] = None
    audiobook: Audiobook


class Paging(SpotifyModel, Generic[T]):
    href: Optional[str] = None
    items: List[Optional[T]] = []
    limit: Optional[int] = None
    next: Optional[str] = None
    offset: Optional[int] = None
    previous: Optional[str] = None
    total: Optional[int] = None


class SearchResponse(SpotifyModel):
    tracks: Optional[Paging[Track]] = None
    albums: Optional[Paging[Album]] = None
    artists: Optional[Paging[Artist]] = None
    playlists: Optional[Paging[Playlist]] = None
    audiobooks: Optional[Paging[Audiobook]] = None


class TokenResponse(SpotifyModel):
    """Body returned by the accounts service token endpoint."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int = 3600
    refresh_token: Optional[str] = None
    scope: Optional[str] = None
