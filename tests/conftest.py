import asyncio
import contextlib
import json
import time

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from spotify_mcp.config import SpotifySettings
from spotify_mcp.services import SpotifyServices


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSpotify:
    """
    In-process stand-in for accounts.spotify.com and api.spotify.com.

    Token requests are answered with app-token-1, app-token-2, ...; API routes
    must be registered with ``add`` and anything else answers 404.
    """

    def __init__(self):
        self.token_requests = []
        self.api_requests = []
        self.routes = {}
        self.token_status = 200
        self.expires_in = 3600
        self.app = self.make_app()

    def make_app(self):
        # A web.Application binds to one event loop; each asyncio.run needs a fresh one.
        app = web.Application()
        app.router.add_post("/api/token", self._token)
        app.router.add_route("*", "/v1/{tail:.*}", self._api)
        return app

    def add(self, method, path, status=200, body=None, text=None):
        self.routes[(method.upper(), path.strip("/"))] = (status, body, text)

    async def _token(self, request):
        form = dict(await request.post())
        self.token_requests.append({"form": form, "authorization": request.headers.get("Authorization")})
        if self.token_status != 200:
            return web.json_response({"error": "invalid_client"}, status=self.token_status)

        payload = {
            "access_token": f"app-token-{len(self.token_requests)}",
            "token_type": "Bearer",
            "expires_in": self.expires_in,
        }
        if form.get("grant_type") in ("authorization_code", "refresh_token"):
            payload["access_token"] = f"user-token-{len(self.token_requests)}"
            payload["scope"] = "user-read-private"
        if form.get("grant_type") == "authorization_code":
            payload["refresh_token"] = "refresh-abc"
        return web.json_response(payload)

    async def _api(self, request):
        body = await request.text()
        self.api_requests.append({
            "method": request.method,
            "path": request.match_info["tail"],
            "query": dict(request.query),
            "authorization": request.headers.get("Authorization"),
            "json": json.loads(body) if body else None,
        })
        route = self.routes.get((request.method, request.match_info["tail"]))
        if route is None:
            return web.json_response({"error": {"status": 404, "message": "Non existing id"}}, status=404)

        status, payload, text = route
        if status == 204:
            return web.Response(status=204)
        if text is not None:
            return web.Response(status=status, text=text, content_type="application/json")
        return web.json_response(payload, status=status)


@contextlib.asynccontextmanager
async def spotify_services(fake, clock=None, **settings_overrides):
    server = TestServer(fake.make_app())
    await server.start_server()
    base = str(server.make_url("/")).rstrip("/")
    values = {
        "client_id": "test-client-id",
        "client_secret": "test-client-secret",
        "api_base_url": f"{base}/v1",
        "accounts_base_url": base,
        "redirect_uri": "http://localhost:5000/oauth/callback",
    }
    values.update(settings_overrides)
    try:
        async with aiohttp.ClientSession() as session:
            yield SpotifyServices(SpotifySettings(**values), session=session, clock=clock or time.time)
    finally:
        await server.close()


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def fake():
    return FakeSpotify()


@pytest.fixture
def clock():
    return FakeClock()


TRACK_JSON = {
    "id": "4iV5W9uYEdYUVa79Axb7Rh",
    "name": "Test Track",
    "uri": "spotify:track:4iV5W9uYEdYUVa79Axb7Rh",
    "href": "https://api.spotify.com/v1/tracks/4iV5W9uYEdYUVa79Axb7Rh",
    "external_urls": {"spotify": "https://open.spotify.com/track/4iV5W9uYEdYUVa79Axb7Rh"},
    "preview_url": None,
    "track_number": 1,
    "disc_number": 1,
    "type": "track",
    "popularity": 70,
    "duration_ms": 200000,
    "explicit": False,
    "is_local": False,
    "artists": [
        {
            "id": "artist_id",
            "name": "Artist Name",
            "uri": "spotify:artist:artist_id",
            "href": "https://api.spotify.com/v1/artists/artist_id",
            "external_urls": {},
            "type": "artist",
        }
    ],
    "album": {
        "id": "album_id",
        "name": "Album Name",
        "album_type": "album",
        "total_tracks": 10,
        "release_date": "2023-01-01",
        "release_date_precision": "day",
        "type": "album",
        "artists": [],
        "images": [{"url": "https://i.scdn.co/image/abc", "height": 640, "width": 640}],
    },
    "available_markets": ["US", "GB"],
    "some_future_field": {"ignored": True},
}

AUDIOBOOK_JSON = {
    "id": "7iHfbu1YPACw6oZPAFJtqe",
    "name": "Dune",
    "description": "Desert planet.",
    "authors": [{"name": "Frank Herbert"}],
    "narrators": [{"name": "Scott Brick"}],
    "publisher": "Macmillan",
    "type": "audiobook",
    "total_chapters": 50,
    "languages": ["English"],
    "copyrights": [{"text": "(c) Herbert", "type": "C"}],
    "explicit": False,
}

PLAYBACK_JSON = {
    "device": {
        "id": "device-1",
        "is_active": True,
        "is_private_session": False,
        "is_restricted": False,
        "name": "Kitchen speaker",
        "type": "Speaker",
        "volume_percent": 55,
        "supports_volume": True,
    },
    "repeat_state": "off",
    "shuffle_state": False,
    "context": {"type": "album", "href": None, "external_urls": {}, "uri": "spotify:album:album_id"},
    "timestamp": 1700000000000,
    "progress_ms": 42000,
    "is_playing": True,
    "item": TRACK_JSON,
    "currently_playing_type": "track",
    "actions": {"disallows": {"resuming": True, "skipping_prev": True}},
}
