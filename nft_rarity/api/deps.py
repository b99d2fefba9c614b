from typing import List, Optional
from fastapi import Request

from nft_rarity.core.errors import InvalidRequest
from nft_rarity.services.collection_cache import CacheStore


def get_cache_store(request: Request) -> CacheStore:
    """The process-wide CacheStore built in the app lifespan."""
    return request.app.state.cache_store


def require_param(value: Optional[str], name: str) -> str:
    if value is None or not value.strip():
        raise InvalidRequest(f"Missing required parameter: {name}")
    return value.strip()


def parse_positive_int(value: Optional[str], name: str, default: int) -> int:
    """
    Parses an optional query string value as a positive integer.

    Raises:
        InvalidRequest: value is present but not a positive integer
    """
    if value is None or value == "":
        return default
    try:
        parsed = int(value.strip())
    except ValueError:
        raise InvalidRequest(f"{name} must be a positive integer, got {value!r}")
    if parsed < 1:
        raise InvalidRequest(f"{name} must be a positive integer, got {value!r}")
    return parsed


def parse_serials(serials: str) -> List[int]:
    """
    Parses a comma-separated serial list, dropping non-numeric and non-positive entries.

    Order is kept and duplicates are removed.
    """
    parsed: List[int] = []
    seen = set()
    for part in serials.split(","):
        try:
            serial = int(part.strip())
        except ValueError:
            continue
        if serial > 0 and serial not in seen:
            seen.add(serial)
            parsed.append(serial)
    return parsed
