import json
from urllib.parse import parse_qs, urlparse

import pytest

from conftest import AUDIOBOOK_JSON, TRACK_JSON, run, spotify_services
from spotify_mcp.tools import get_tool_definitions


def call(fake, name, arguments=None, **overrides):
    async def scenario():
        async with spotify_services(fake, **overrides) as services:
            return await services.tools.call(name, arguments)

    return json.loads(run(scenario()))


def test_every_definition_has_a_handler(fake):
    async def scenario():
        async with spotify_services(fake) as services:
            return services.tools.names

    names = run(scenario())
    definitions = [tool.name for tool in get_tool_definitions()]

    assert names == definitions
    assert len(set(definitions)) == len(definitions)


def test_get_track_returns_serialized_record(fake):
    fake.add("GET", "tracks/4iV5W9uYEdYUVa79Axb7Rh", body=TRACK_JSON)

    result = call(fake, "get_track", {"track_id": "4iV5W9uYEdYUVa79Axb7Rh"})

    assert result["id"] == "4iV5W9uYEdYUVa79Axb7Rh"
    assert result["album"]["name"] == "Album Name"
    assert "preview_url" not in result
    assert "some_future_field" not in result


def test_get_track_http_error_becomes_envelope(fake):
    fake.add("GET", "tracks/bad", status=400, body={"error": {"status": 400, "message": "invalid id"}})

    result = call(fake, "get_track", {"track_id": "bad"})

    assert result["error"] is True
    assert result["code"] == "GET_TRACK_ERROR"
    assert "Bad Request" in result["message"]
    assert "invalid id" in result["details"]


def test_get_track_not_found(fake):
    fake.add("GET", "tracks/gone", text="null")

    result = call(fake, "get_track", {"track_id": "gone"})

    assert result == {
        "error": True,
        "message": "Track with ID 'gone' not found.",
        "code": "TRACK_NOT_FOUND",
        "details": None,
    }


def test_missing_track_id(fake):
    result = call(fake, "get_track", {"track_id": "  "})

    assert result["code"] == "MISSING_TRACK_ID"
    assert result["message"] == "Track ID is required."
    assert fake.api_requests == []


def test_playback_without_session(fake):
    fake.add("GET", "me/player", status=204)

    result = call(fake, "get_playback", {"access_token": "user-abc"})

    assert result["code"] == "NO_PLAYBACK_SESSION"
    assert result["message"] == "No active playback session found."


@pytest.mark.parametrize("name, arguments", [
    ("get_playback", {}),
    ("pause_playback", {"access_token": ""}),
    ("start_playback", {"access_token": "   "}),
    ("skip_next", {"access_token": None}),
    ("skip_previous", {}),
    ("get_current_user", {}),
    ("get_user_playlists", {"limit": 5}),
    ("get_saved_audiobooks", {}),
    ("save_audiobooks", {"audiobook_ids": "b1"}),
    ("remove_saved_audiobooks", {"audiobook_ids": "b1"}),
    ("check_saved_audiobooks", {"audiobook_ids": "b1"}),
])
def test_user_scoped_tools_require_token(fake, name, arguments):
    result = call(fake, name, arguments)

    assert result["error"] is True
    assert result["code"] == "MISSING_ACCESS_TOKEN"
    assert result["message"] == "User access token is required for this operation."
    assert fake.api_requests == []
    assert fake.token_requests == []


def test_get_tracks_rejects_empty_list(fake):
    result = call(fake, "get_tracks", {"track_ids": " , ,"})

    assert result["code"] == "EMPTY_TRACK_IDS"
    assert result["message"] == "No track IDs provided."
    assert fake.api_requests == []


def test_get_tracks_rejects_more_than_fifty(fake):
    ids = ",".join(f"t{i}" for i in range(51))

    result = call(fake, "get_tracks", {"track_ids": ids})

    assert result["code"] == "TOO_MANY_TRACK_IDS"
    assert result["message"] == "Maximum of 50 track IDs allowed per request."
    assert fake.api_requests == []


def test_get_tracks_accepts_exactly_fifty_in_one_call(fake):
    fake.add("GET", "tracks", body={"tracks": [TRACK_JSON]})
    ids = ",".join(f"t{i}" for i in range(50))

    result = call(fake, "get_tracks", {"track_ids": ids})

    assert [t["id"] for t in result] == ["4iV5W9uYEdYUVa79Axb7Rh"]
    assert len(fake.api_requests) == 1
    assert fake.api_requests[0]["query"]["ids"] == ids


def test_multiple_audio_features_cap_is_one_hundred(fake):
    fake.add("GET", "audio-features", body={"audio_features": [{"id": "t0", "energy": 0.4}]})

    accepted = call(fake, "get_multiple_audio_features", {"track_ids": ",".join(f"t{i}" for i in range(100))})
    rejected = call(fake, "get_multiple_audio_features", {"track_ids": ",".join(f"t{i}" for i in range(101))})

    assert accepted == [{"id": "t0", "type": "audio_features", "energy": 0.4}]
    assert rejected["code"] == "TOO_MANY_TRACK_IDS"
    assert len(fake.api_requests) == 1


@pytest.mark.parametrize("limit", [0, 51, -3, "many", True])
def test_invalid_limit(fake, limit):
    result = call(fake, "get_artist_albums", {"artist_id": "a1", "limit": limit})

    assert result["code"] == "INVALID_LIMIT"
    assert fake.api_requests == []


def test_limit_out_of_range_message(fake):
    result = call(fake, "search", {"query": "x", "limit": 51})

    assert result["message"] == "Limit must be between 1 and 50."


def test_negative_offset(fake):
    result = call(fake, "get_album_tracks", {"album_id": "al1", "offset": -1})

    assert result["code"] == "INVALID_OFFSET"
    assert result["message"] == "Offset must be non-negative."


def test_search_rejects_unknown_types(fake):
    result = call(fake, "search", {"query": "x", "types": "track,podcast"})

    assert result["code"] == "INVALID_SEARCH_TYPES"
    assert "podcast" in result["message"]
    assert fake.api_requests == []


def test_search_rejects_blank_query(fake):
    result = call(fake, "search_tracks", {"query": ""})

    assert result["code"] == "EMPTY_QUERY"


def test_search_tracks_returns_items_without_nulls(fake):
    fake.add("GET", "search", body={"tracks": {"items": [None, TRACK_JSON], "total": 2}})

    result = call(fake, "search_tracks", {"query": "daft punk", "limit": 2})

    assert [t["id"] for t in result] == ["4iV5W9uYEdYUVa79Axb7Rh"]
    assert fake.api_requests[0]["query"]["type"] == "track"


def test_search_audiobooks_with_no_page_returns_empty_list(fake):
    fake.add("GET", "search", body={})

    assert call(fake, "search_audiobooks", {"query": "dune"}) == []


def test_unknown_tool(fake):
    result = call(fake, "delete_everything", {})

    assert result["code"] == "UNKNOWN_TOOL"
    assert result["message"] == "Unknown tool: delete_everything"


def test_missing_client_credentials_surface_as_envelope(fake):
    result = call(fake, "get_artist", {"artist_id": "a1"}, client_secret=None)

    assert result["error"] is True
    assert result["code"] == "GET_ARTIST_ERROR"
    assert "SPOTIFY_CLIENT_SECRET" in result["message"]
    assert fake.token_requests == []


def test_get_client_token(fake):
    result = call(fake, "get_client_token", {})

    assert result == {"access_token": "app-token-1", "token_type": "Bearer"}


def test_get_client_token_error_code(fake):
    fake.token_status = 401

    result = call(fake, "get_client_token", {})

    assert result["code"] == "CLIENT_TOKEN_ERROR"
    assert "invalid_client" in result["details"]


def test_get_auth_url_uses_configured_defaults(fake):
    result = call(fake, "get_auth_url", {"scopes": "user-read-private, user-read-email"})

    query = parse_qs(urlparse(result["auth_url"]).query)
    assert query["client_id"] == ["test-client-id"]
    assert query["redirect_uri"] == ["http://localhost:5000/oauth/callback"]
    assert query["scope"] == ["user-read-private user-read-email"]


def test_get_auth_url_requires_scopes(fake):
    result = call(fake, "get_auth_url", {"scopes": " "})

    assert result["code"] == "AUTH_URL_ERROR"
    assert result["message"] == "At least one scope is required."


def test_exchange_auth_code(fake):
    result = call(fake, "exchange_auth_code", {"code": "the-code"})

    assert result["access_token"] == "user-token-1"
    assert result["refresh_token"] == "refresh-abc"
    assert fake.token_requests[0]["form"]["redirect_uri"] == "http://localhost:5000/oauth/callback"


def test_refresh_token_failure_code(fake):
    fake.token_status = 400

    result = call(fake, "refresh_token", {"refresh_token": "stale"})

    assert result["code"] == "REFRESH_TOKEN_ERROR"


def test_audiobook_not_found_mentions_market(fake):
    fake.add("GET", "audiobooks/b1", text="null")

    result = call(fake, "get_audiobook", {"audiobook_id": "b1", "market": "GB"})

    assert result["code"] == "AUDIOBOOK_NOT_FOUND"
    assert result["message"] == "Audiobook with ID 'b1' not found in market 'GB'."


def test_check_saved_audiobooks_pairs_ids_with_flags(fake):
    fake.add("GET", "me/audiobooks/contains", body=[True, False])

    result = call(fake, "check_saved_audiobooks", {"access_token": "user-abc", "audiobook_ids": "b1,b2"})

    assert result == [{"audiobook_id": "b1", "is_saved": True}, {"audiobook_id": "b2", "is_saved": False}]


def test_save_audiobooks_reports_count(fake):
    fake.add("PUT", "me/audiobooks", status=200, text="")

    result = call(fake, "save_audiobooks", {"access_token": "user-abc", "audiobook_ids": "b1, b2"})

    assert result == {"success": True, "message": "Successfully saved 2 audiobook(s) to user's library."}


def test_remove_audiobooks_error_code(fake):
    fake.add("DELETE", "me/audiobooks", status=403, body={"error": {"status": 403, "message": "Insufficient scope"}})

    result = call(fake, "remove_saved_audiobooks", {"access_token": "user-abc", "audiobook_ids": "b1"})

    assert result["code"] == "REMOVE_AUDIOBOOKS_ERROR"
    assert "Forbidden" in result["message"]


def test_get_audiobooks_uses_default_market(fake):
    fake.add("GET", "audiobooks", body={"audiobooks": [AUDIOBOOK_JSON, None]})

    result = call(fake, "get_audiobooks", {"audiobook_ids": "7iHfbu1YPACw6oZPAFJtqe,missing"})

    assert [a["name"] for a in result] == ["Dune"]
    assert fake.api_requests[0]["query"]["market"] == "US"


def test_start_playback_splits_uris(fake):
    fake.add("PUT", "me/player/play", status=204)

    result = call(fake, "start_playback", {"access_token": "user-abc", "uris": "spotify:track:1, spotify:track:2"})

    assert result["success"] is True
    assert fake.api_requests[0]["json"] == {"uris": ["spotify:track:1", "spotify:track:2"]}


def test_non_string_user_token_is_rejected(fake):
    result = call(fake, "get_playback", {"access_token": 123})

    assert result["code"] == "MISSING_ACCESS_TOKEN"
    assert fake.api_requests == []


def test_non_string_optional_token_falls_back_to_app_token(fake):
    fake.add("GET", "artists/a1", body={"id": "a1", "name": "Someone"})

    result = call(fake, "get_artist", {"artist_id": "a1", "access_token": 123})

    assert result["name"] == "Someone"
    assert fake.api_requests[0]["authorization"] == "Bearer app-token-1"


def test_check_saved_audiobooks_short_answer_is_an_error(fake):
    fake.add("GET", "me/audiobooks/contains", body=[True])

    result = call(fake, "check_saved_audiobooks", {"access_token": "user-abc", "audiobook_ids": "b1,b2"})

    assert result["error"] is True
    assert result["code"] == "CHECK_SAVED_AUDIOBOOKS_ERROR"
    assert "Expected 2 flags" in result["message"]
