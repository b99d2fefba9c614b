from typing import Any
from fastapi import APIRouter, Depends

from nft_rarity.api.deps import get_cache_store
from nft_rarity.services.collection_cache import CacheStore

router = APIRouter()


@router.get("/health")
def health():
    """Basic health check endpoint."""
    return {"status": "healthy"}


@router.get("/health/cache")
def health_cache(store: CacheStore = Depends(get_cache_store)) -> Any:
    """
    Cache state per collection: entry size, age in seconds, and freshness.

    Stale entries left behind by a failed refresh show up here with
    fresh=false until the next successful refresh replaces them.
    """
    return store.stats()
