"""Parameter checks applied by the tool layer before anything goes on the wire."""

from typing import Any, List, Optional

from .errors import MissingAccessTokenError, ToolValidationError

MAX_BATCH_IDS = 50
MAX_AUDIO_FEATURE_IDS = 100
SEARCH_TYPES = ("track", "album", "artist", "playlist", "audiobook")


def is_blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def require_token(access_token: Any) -> str:
    if not isinstance(access_token, str) or is_blank(access_token):
        raise MissingAccessTokenError()
    return access_token.strip()


def require_text(value: Optional[str], message: str, code: Optional[str] = None) -> str:
    if is_blank(value):
        raise ToolValidationError(message, code)
    return str(value).strip()


def require_id(value: Optional[str], label: str) -> str:
    return require_text(value, f"{label.capitalize()} ID is required.", f"MISSING_{label.upper()}_ID")


def split_csv(raw: Optional[str]) -> List[str]:
    if raw is None:
        return []
    return [part.strip() for part in str(raw).split(",") if part.strip()]


def parse_id_list(raw: Optional[str], kind: str, cap: int = MAX_BATCH_IDS) -> List[str]:
    """
    Split a comma-separated ID list and enforce Spotify's per-request cap.

    >>> parse_id_list(" a, b,,c ", "track")
    ['a', 'b', 'c']
    """
    ids = split_csv(raw)
    if not ids:
        raise ToolValidationError(f"No {kind} IDs provided.", f"EMPTY_{kind.upper()}_IDS")
    if len(ids) > cap:
        raise ToolValidationError(f"Maximum of {cap} {kind} IDs allowed per request.",
                                  f"TOO_MANY_{kind.upper()}_IDS")
    return ids


def _as_int(value: Any, name: str, code: str) -> int:
    if isinstance(value, bool):
        raise ToolValidationError(f"{name} must be an integer.", code)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ToolValidationError(f"{name} must be an integer.", code)


def check_limit(limit: Any, low: int = 1, high: int = 50) -> int:
    value = _as_int(limit, "Limit", "INVALID_LIMIT")
    if value < low or value > high:
        raise ToolValidationError(f"Limit must be between {low} and {high}.", "INVALID_LIMIT")
    return value


def check_offset(offset: Any) -> int:
    value = _as_int(offset, "Offset", "INVALID_OFFSET")
    if value < 0:
        raise ToolValidationError("Offset must be non-negative.", "INVALID_OFFSET")
    return value


def parse_search_types(raw: Optional[str]) -> List[str]:
    types = [t.lower() for t in split_csv(raw)]
    if not types:
        raise ToolValidationError("At least one search type is required.", "INVALID_SEARCH_TYPES")
    invalid = [t for t in types if t not in SEARCH_TYPES]
    if invalid:
        raise ToolValidationError(
            f"Invalid search types: {', '.join(invalid)}. Valid types are: {', '.join(SEARCH_TYPES)}",
            "INVALID_SEARCH_TYPES",
        )
    return types
