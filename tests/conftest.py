"""
Test fixtures for nft-rarity tests.

Provides a fake paged marketplace, a controllable clock, a CacheStore wired
to both, and a TestClient with the store injected.
"""

import threading
import pytest
from typing import Dict, List, Optional, Sequence, Tuple
from fastapi.testclient import TestClient

from nft_rarity.api.deps import get_cache_store
from nft_rarity.core.errors import UpstreamError
from nft_rarity.main import app
from nft_rarity.scraper.marketplace import Attribute, NFTRecord
from nft_rarity.services.collection_cache import CacheStore

TOKEN_ID = "0.0.1234"
API_KEY = "test-api-key-secret"
TTL = 1800.0


def make_nft(serial_id: int, traits: Sequence[Tuple[str, str]] = (), **kwargs) -> NFTRecord:
    """Build an NFTRecord from (trait_type, value) pairs."""
    return NFTRecord(
        serial_id=serial_id,
        name=kwargs.pop("name", f"Slime #{serial_id}"),
        image=kwargs.pop("image", f"ipfs://image/{serial_id}.png"),
        attributes=tuple(Attribute(trait_type=t, value=v) for t, v in traits),
        **kwargs,
    )


def make_collection(size: int) -> List[NFTRecord]:
    """A collection with a spread of trait frequencies."""
    return [
        make_nft(
            serial,
            [("background", f"bg{serial % 4}"), ("eyes", f"eyes{serial % 7}"), ("head", "Crown" if serial % 10 == 0 else "cap")],
        )
        for serial in range(1, size + 1)
    ]


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeMarketplace:
    """
    Serves collections in pages like the marketplace API.

    `calls` records every (token_id, page, limit) fetched. `fail_pages` maps
    a page number to the HTTP status the fake upstream answers with.
    """

    def __init__(self, collections: Optional[Dict[str, List[NFTRecord]]] = None):
        self.collections: Dict[str, List[NFTRecord]] = collections or {}
        self.calls: List[Tuple[str, int, int]] = []
        self.api_keys: List[str] = []
        self.fail_pages: Dict[int, int] = {}
        self.gate: Optional[threading.Event] = None
        self._lock = threading.Lock()

    def fetch_page(self, api_key: str, token_id: str, page: int, limit: int) -> List[NFTRecord]:
        with self._lock:
            self.calls.append((token_id, page, limit))
            self.api_keys.append(api_key)
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if page in self.fail_pages:
            status = self.fail_pages[page]
            raise UpstreamError(f"Marketplace API error: {status} (page {page})", status_code=status)
        records = self.collections.get(token_id, [])
        start = (page - 1) * limit
        return records[start : start + limit]

    def refreshes(self, token_id: str = TOKEN_ID) -> int:
        """Number of full assemblies started for a token (page 1 fetches)."""
        return sum(1 for token, page, _ in self.calls if token == token_id and page == 1)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def marketplace() -> FakeMarketplace:
    return FakeMarketplace({TOKEN_ID: make_collection(120)})


@pytest.fixture
def store(marketplace: FakeMarketplace, clock: FakeClock) -> CacheStore:
    return CacheStore(
        marketplace.fetch_page,
        rarity_ttl=TTL,
        image_ttl=TTL,
        page_size=100,
        max_records=5000,
        clock=clock,
    )


@pytest.fixture
def client(store: CacheStore):
    """TestClient with the fake-backed CacheStore injected."""
    app.dependency_overrides[get_cache_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()
