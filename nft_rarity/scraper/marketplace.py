"""
Marketplace API client for pulling NFT collections (SentX public API).

API Endpoint:
- GET /token/nfts?apikey=&token=&limit=&page=&sortBy=&sortDirection=
  Returns {"success": true, "nfts": [...]} where each NFT carries
  serialId, name, image, attributes and optionally rarity / rarityRank.

IMPORTANT: Pagination
The endpoint does not reliably report a total count, so a collection is
assembled by walking pages 1, 2, 3, ... in order until a short page comes
back. A hard record cap stops the walk if the upstream never returns one.

The api key travels as a query parameter. It must never appear in logs or
in error messages, so errors are built from status codes and exception
types rather than from httpx's own messages (which include the URL).
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from nft_rarity.core.config import settings
from nft_rarity.core.errors import InvalidResponse, UpstreamError
from nft_rarity.core.logging_config import get_logger

logger = get_logger(__name__)

# Keys lifted into NFTRecord fields; everything else is passed through in `extra`
_KNOWN_KEYS = frozenset({"serialId", "name", "image", "attributes", "rarity", "rarityRank"})

# (api_key, token_id, page, limit) -> records
PageFetcher = Callable[[str, str, int, int], List["NFTRecord"]]


@dataclass(frozen=True)
class Attribute:
    """One (trait_type, value) pair on an NFT."""

    trait_type: str
    value: str

    @property
    def key(self) -> str:
        """Frequency-table key, e.g. 'head:crown'."""
        return f"{self.trait_type}:{self.value}"

    def to_dict(self) -> Dict[str, str]:
        return {"trait_type": self.trait_type, "value": self.value}


@dataclass(frozen=True)
class NFTRecord:
    """An NFT as received from the marketplace."""

    serial_id: int
    name: str
    image: str
    attributes: Tuple[Attribute, ...] = ()
    rarity: Optional[float] = None  # Upstream-computed score
    rarity_rank: Optional[int] = None  # Upstream-computed rank
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        """Wire form using the marketplace's own key names."""
        return {
            **self.extra,
            "serialId": self.serial_id,
            "name": self.name,
            "image": self.image,
            "attributes": [attr.to_dict() for attr in self.attributes],
            "rarity": self.rarity,
            "rarityRank": self.rarity_rank,
        }


def parse_nft(data: Dict[str, Any]) -> NFTRecord:
    """
    Parses one marketplace NFT object into an NFTRecord.

    Raises:
        InvalidResponse: if the object is not a mapping or has no usable serialId
    """
    if not isinstance(data, dict):
        raise InvalidResponse("Invalid marketplace response: NFT entry is not an object")

    serial_raw = data.get("serialId")
    try:
        serial_id = int(serial_raw)
    except (TypeError, ValueError):
        raise InvalidResponse(f"Invalid marketplace response: bad serialId {serial_raw!r}")

    attributes = []
    for attr in data.get("attributes") or []:
        if not isinstance(attr, dict):
            continue
        attributes.append(
            Attribute(
                trait_type=str(attr.get("trait_type", "")),
                value=str(attr.get("value", "")),
            )
        )

    return NFTRecord(
        serial_id=serial_id,
        name=str(data.get("name") or ""),
        image=str(data.get("image") or ""),
        attributes=tuple(attributes),
        rarity=data.get("rarity"),
        rarity_rank=data.get("rarityRank"),
        extra={k: v for k, v in data.items() if k not in _KNOWN_KEYS},
    )


class MarketplaceClient:
    """
    Thin synchronous client over the marketplace NFT listing endpoint.

    One instance (and one pooled httpx.Client) is shared by every request
    handler in the process; httpx.Client is safe to use from multiple threads.
    """

    def __init__(
        self,
        base_url: str = settings.MARKETPLACE_API_BASE,
        timeout: float = settings.MARKETPLACE_TIMEOUT_SECONDS,
        sort_by: str = settings.MARKETPLACE_SORT_BY,
        sort_direction: str = settings.MARKETPLACE_SORT_DIRECTION,
        http_client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.sort_by = sort_by
        self.sort_direction = sort_direction
        self._client = http_client or httpx.Client(
            timeout=timeout,
            headers={"Accept": "application/json", "User-Agent": "nft-rarity/1.0"},
        )

    def close(self) -> None:
        self._client.close()

    def fetch_page(
        self,
        api_key: str,
        token_id: str,
        page: int,
        limit: int = settings.MARKETPLACE_PAGE_SIZE,
    ) -> List[NFTRecord]:
        """
        Fetches one page of NFTs, ordered by the marketplace's rarity ranking.

        Args:
            api_key: Marketplace api key (forwarded, never logged)
            token_id: Collection / token identifier (e.g. '0.0.1234')
            page: Page number (1-indexed)
            limit: Page size

        Raises:
            UpstreamError: non-2xx status, timeout or network failure
            InvalidResponse: payload without success flag or nfts list
        """
        url = f"{self.base_url}/token/nfts"
        params = {
            "apikey": api_key,
            "token": token_id,
            "limit": limit,
            "page": page,
            "sortBy": self.sort_by,
            "sortDirection": self.sort_direction,
        }

        try:
            response = self._client.get(url, params=params, timeout=self.timeout)
        except httpx.TimeoutException:
            raise UpstreamError(f"Marketplace API timed out after {self.timeout:g}s (page {page})")
        except httpx.HTTPError as e:
            raise UpstreamError(f"Marketplace API unreachable: {type(e).__name__} (page {page})")

        if not response.is_success:
            raise UpstreamError(
                f"Marketplace API error: {response.status_code} (page {page})",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError:
            raise InvalidResponse(f"Invalid marketplace response: body is not JSON (page {page})")

        if not isinstance(data, dict) or not data.get("success") or not isinstance(data.get("nfts"), list):
            raise InvalidResponse(f"Invalid marketplace response: missing success flag or nfts (page {page})")

        records = [parse_nft(item) for item in data["nfts"]]
        logger.debug("Marketplace page fetched", token_id=token_id, page=page, records=len(records))
        return records


def assemble_collection(
    fetch_page: PageFetcher,
    api_key: str,
    token_id: str,
    page_size: int = settings.MARKETPLACE_PAGE_SIZE,
    max_records: int = settings.MARKETPLACE_MAX_RECORDS,
) -> List[NFTRecord]:
    """
    Pulls an entire collection, one page at a time, in page order.

    Stops when a page returns fewer than `page_size` records (last page) or
    once `max_records` have been accumulated, whichever comes first. Any page
    failure aborts the whole assembly; no partial result is returned.
    """
    start = time.perf_counter()
    records: List[NFTRecord] = []
    page = 1

    while True:
        batch = fetch_page(api_key, token_id, page, page_size)
        records.extend(batch)
        if len(batch) < page_size or len(records) >= max_records:
            break
        page += 1

    logger.info(
        "Collection assembled",
        token_id=token_id,
        records=len(records),
        pages=page,
        capped=len(records) >= max_records,
        duration_ms=round((time.perf_counter() - start) * 1000, 1),
    )
    return records
