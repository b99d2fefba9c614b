"""
Process-wide TTL caches for ranked collections and serial lookups.

Two caches, both keyed by collection (token) id:

- CollectionCache: the fully normalized, scored and ranked collection,
  served in pages without recomputation while fresh.
- ImageLookupCache: serial -> {name, image, rank} for a collection,
  served as a filtered subset of the requested serials.

Freshness:
    An entry is fresh while `now - fetched_at < ttl`. Stale entries are never
    served: the request that finds one refreshes synchronously before it
    returns. There is no background refresh.

Concurrency:
    Refreshes are single-flight per key. The first miss on a key registers an
    in-flight Future; concurrent misses on that key wait on it and receive
    its entry or its exception, so one upstream outage costs one attempt.
    The Future is dropped once the attempt settles. Entries are immutable
    and swapped in under the cache lock, so readers see the old snapshot or
    the new one, never a mix.

Failures:
    A failed refresh raises and leaves the previous entry in place. The
    stale entry is still not served (the next request retries), but it stays
    visible in stats() for diagnostics.
"""

import math
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional, Tuple, TypeVar

from nft_rarity.core.config import settings
from nft_rarity.core.errors import InvalidRequest
from nft_rarity.core.logging_config import get_logger
from nft_rarity.scraper.marketplace import PageFetcher, assemble_collection
from nft_rarity.services.rarity import RankedNFTRecord, rank_collection

logger = get_logger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    data: T
    fetched_at: float

    def age(self, now: float) -> float:
        return now - self.fetched_at

    def is_fresh(self, now: float, ttl: float) -> bool:
        return now - self.fetched_at < ttl


class KeyedTTLCache(Generic[T]):
    """Mapping of key -> CacheEntry with lazy, single-flight refresh."""

    def __init__(self, name: str, ttl: float, clock: Clock = time.monotonic):
        self.name = name
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry[T]] = {}
        # key -> attempt in progress; removed as soon as the attempt settles
        self._inflight: Dict[str, "Future[CacheEntry[T]]"] = {}
        self._lock = threading.Lock()

    def peek(self, key: str) -> Optional[CacheEntry[T]]:
        """Current entry for key, fresh or stale, without refreshing."""
        with self._lock:
            return self._entries.get(key)

    def _fresh_entry(self, key: str) -> Optional[CacheEntry[T]]:
        entry = self.peek(key)
        if entry is not None and entry.is_fresh(self._clock(), self.ttl):
            return entry
        return None

    def get_or_refresh(self, key: str, refresh: Callable[[], T]) -> Tuple[CacheEntry[T], bool]:
        """
        Returns (entry, refreshed).

        Concurrent misses on one key share a single refresh attempt: they get
        its entry, or its exception, without refreshing again. Exceptions from
        `refresh` propagate and the existing entry is kept.
        """
        entry = self._fresh_entry(key)
        if entry is not None:
            logger.debug("Cache hit", cache=self.name, key=key, age_s=round(entry.age(self._clock()), 1))
            return entry, False

        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.is_fresh(self._clock(), self.ttl):
                return entry, False
            future = self._inflight.get(key)
            owner = future is None
            if owner:
                future = self._inflight[key] = Future()
                previous = entry

        if not owner:
            logger.debug("Waiting for in-flight refresh", cache=self.name, key=key)
            return future.result(), False

        logger.info("Cache miss, refreshing", cache=self.name, key=key, stale=previous is not None)

        fetched_at = self._clock()
        start = time.perf_counter()
        try:
            data = refresh()
        except BaseException as e:
            with self._lock:
                self._inflight.pop(key, None)
            future.set_exception(e)
            logger.warning(
                "Cache refresh failed",
                cache=self.name,
                key=key,
                error_type=type(e).__name__,
                kept_previous=previous is not None,
            )
            raise

        entry = CacheEntry(data=data, fetched_at=fetched_at)
        with self._lock:
            self._entries[key] = entry
            self._inflight.pop(key, None)
        future.set_result(entry)

        logger.info(
            "Cache refreshed",
            cache=self.name,
            key=key,
            duration_ms=round((time.perf_counter() - start) * 1000, 1),
        )
        return entry, True

    def inflight(self) -> int:
        """Number of keys with a refresh in progress."""
        with self._lock:
            return len(self._inflight)

    def stats(self) -> Dict[str, Dict[str, Any]]:
        now = self._clock()
        with self._lock:
            entries = dict(self._entries)
        return {
            key: {
                "size": len(entry.data),  # type: ignore[arg-type]
                "age_seconds": round(entry.age(now), 1),
                "fresh": entry.is_fresh(now, self.ttl),
            }
            for key, entry in entries.items()
        }

    def clear(self) -> None:
        """Drops stored entries. Refreshes already in progress still complete."""
        with self._lock:
            self._entries.clear()


@dataclass(frozen=True)
class CollectionPage:
    """One page of a ranked collection."""

    nfts: List[RankedNFTRecord]
    total: int
    page: int
    limit: int
    total_pages: int
    cached: bool


@dataclass(frozen=True)
class SerialInfo:
    name: str
    image: str
    rank: int

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "image": self.image, "rank": self.rank}


def _require_positive_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise InvalidRequest(f"{name} must be a positive integer")
    return value


class CollectionCache:
    """Ranked collection per token id, served in pages."""

    def __init__(
        self,
        fetch_page: PageFetcher,
        ttl: float = settings.RARITY_CACHE_TTL_SECONDS,
        page_size: int = settings.MARKETPLACE_PAGE_SIZE,
        max_records: int = settings.MARKETPLACE_MAX_RECORDS,
        clock: Clock = time.monotonic,
    ):
        self._fetch_page = fetch_page
        self._page_size = page_size
        self._max_records = max_records
        self._cache: KeyedTTLCache[Tuple[RankedNFTRecord, ...]] = KeyedTTLCache("collection_rarity", ttl, clock)

    def _build(self, api_key: str, token_id: str) -> Tuple[RankedNFTRecord, ...]:
        nfts = assemble_collection(self._fetch_page, api_key, token_id, self._page_size, self._max_records)
        ranked = tuple(rank_collection(nfts))
        logger.info("Rarity calculation complete", token_id=token_id, records=len(ranked))
        return ranked

    def query(self, api_key: str, token_id: str, page: int, limit: int) -> CollectionPage:
        """
        Returns one page of the ranked collection, refreshing it first if stale.

        Raises:
            InvalidRequest: page or limit is not a positive integer
            RarityComputationError: refresh failed (includes UpstreamError / InvalidResponse)
        """
        page = _require_positive_int(page, "page")
        limit = _require_positive_int(limit, "limit")

        entry, refreshed = self._cache.get_or_refresh(token_id, lambda: self._build(api_key, token_id))
        data = entry.data

        start = (page - 1) * limit
        total = len(data)
        return CollectionPage(
            nfts=list(data[start : start + limit]),
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit),
            cached=not refreshed,
        )

    def snapshot(self, token_id: str) -> Optional[CacheEntry[Tuple[RankedNFTRecord, ...]]]:
        return self._cache.peek(token_id)

    def stats(self) -> Dict[str, Dict[str, Any]]:
        return self._cache.stats()

    def clear(self) -> None:
        self._cache.clear()


class ImageLookupCache:
    """serial -> {name, image, rank} per token id."""

    def __init__(
        self,
        fetch_page: PageFetcher,
        ttl: float = settings.IMAGE_CACHE_TTL_SECONDS,
        page_size: int = settings.MARKETPLACE_PAGE_SIZE,
        max_records: int = settings.MARKETPLACE_MAX_RECORDS,
        clock: Clock = time.monotonic,
    ):
        self._fetch_page = fetch_page
        self._page_size = page_size
        self._max_records = max_records
        self._cache: KeyedTTLCache[Dict[int, SerialInfo]] = KeyedTTLCache("nft_images", ttl, clock)

    def _build(self, api_key: str, token_id: str) -> Dict[int, SerialInfo]:
        nfts = assemble_collection(self._fetch_page, api_key, token_id, self._page_size, self._max_records)
        return {
            ranked.serial_id: SerialInfo(name=ranked.nft.name, image=ranked.nft.image, rank=ranked.corrected_rank)
            for ranked in rank_collection(nfts)
        }

    def lookup(self, api_key: str, token_id: str, serial_ids: Iterable[int]) -> Dict[int, SerialInfo]:
        """Returns the requested serials that exist; unknown serials are omitted."""
        entry, _ = self._cache.get_or_refresh(token_id, lambda: self._build(api_key, token_id))
        serial_map = entry.data
        return {serial: serial_map[serial] for serial in serial_ids if serial in serial_map}

    def snapshot(self, token_id: str) -> Optional[CacheEntry[Dict[int, SerialInfo]]]:
        return self._cache.peek(token_id)

    def stats(self) -> Dict[str, Dict[str, Any]]:
        return self._cache.stats()

    def clear(self) -> None:
        self._cache.clear()


class CacheStore:
    """
    Owns both caches for the lifetime of the process.

    Built once in the application lifespan and handed to route handlers
    through the get_cache_store dependency.
    """

    def __init__(
        self,
        fetch_page: PageFetcher,
        rarity_ttl: float = settings.RARITY_CACHE_TTL_SECONDS,
        image_ttl: float = settings.IMAGE_CACHE_TTL_SECONDS,
        page_size: int = settings.MARKETPLACE_PAGE_SIZE,
        max_records: int = settings.MARKETPLACE_MAX_RECORDS,
        clock: Clock = time.monotonic,
    ):
        self.collections = CollectionCache(fetch_page, rarity_ttl, page_size, max_records, clock)
        self.images = ImageLookupCache(fetch_page, image_ttl, page_size, max_records, clock)

    def stats(self) -> Dict[str, Any]:
        return {
            "collection_rarity": self.collections.stats(),
            "nft_images": self.images.stats(),
        }

    def clear(self) -> None:
        self.collections.clear()
        self.images.clear()
