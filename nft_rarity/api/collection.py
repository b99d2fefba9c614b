"""
Read-only collection endpoints.

- GET /collection-rarity: ranked collection, paginated by corrected rank
- GET /nft-images: name / image / rank for a set of serial numbers
"""

from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel

from nft_rarity.api.deps import get_cache_store, parse_positive_int, parse_serials, require_param
from nft_rarity.core.config import settings
from nft_rarity.core.errors import InvalidRequest
from nft_rarity.core.logging_config import get_logger
from nft_rarity.services.collection_cache import CacheStore

logger = get_logger(__name__)

router = APIRouter()


class CollectionRarityOut(BaseModel):
    success: bool = True
    nfts: List[Dict[str, Any]]
    total: int
    page: int
    limit: int
    totalPages: int
    cached: bool


class SerialInfoOut(BaseModel):
    name: str
    image: str
    rank: int


class NFTImagesOut(BaseModel):
    success: bool = True
    nfts: Dict[str, SerialInfoOut]


@router.get("/collection-rarity", response_model=CollectionRarityOut)
def collection_rarity(
    response: Response,
    apikey: Optional[str] = Query(None, description="Marketplace api key"),
    token: Optional[str] = Query(None, description="Collection / token id"),
    page: Optional[str] = Query(None, description="Page number, 1-indexed (default 1)"),
    limit: Optional[str] = Query(None, description="Page size (default 50)"),
    store: CacheStore = Depends(get_cache_store),
) -> Any:
    """
    Get the collection ranked by recomputed rarity.

    The whole collection is fetched, normalized and ranked once per cache
    period; pages are sliced from the cached ranking.
    """
    api_key = require_param(apikey, "apikey")
    token_id = require_param(token, "token")
    page_num = parse_positive_int(page, "page", default=1)
    limit_num = parse_positive_int(limit, "limit", default=settings.DEFAULT_PAGE_LIMIT)

    result = store.collections.query(api_key, token_id, page_num, limit_num)

    response.headers["Cache-Control"] = settings.COLLECTION_CACHE_CONTROL
    return {
        "success": True,
        "nfts": [nft.to_dict() for nft in result.nfts],
        "total": result.total,
        "page": result.page,
        "limit": result.limit,
        "totalPages": result.total_pages,
        "cached": result.cached,
    }


@router.get("/nft-images", response_model=NFTImagesOut)
def nft_images(
    response: Response,
    apikey: Optional[str] = Query(None, description="Marketplace api key"),
    token: Optional[str] = Query(None, description="Collection / token id"),
    serials: Optional[str] = Query(None, description="Comma-separated serial numbers"),
    store: CacheStore = Depends(get_cache_store),
) -> Any:
    """
    Get name, image and corrected rank for specific serial numbers.

    Serials that are not in the collection are left out of the result.
    """
    api_key = require_param(apikey, "apikey")
    token_id = require_param(token, "token")
    serial_list = parse_serials(require_param(serials, "serials"))
    if not serial_list:
        raise InvalidRequest("No valid serial numbers provided")

    found = store.images.lookup(api_key, token_id, serial_list)
    logger.debug("Serial lookup", token_id=token_id, requested=len(serial_list), found=len(found))

    response.headers["Cache-Control"] = settings.IMAGES_CACHE_CONTROL
    return {
        "success": True,
        "nfts": {str(serial): info.to_dict() for serial, info in found.items()},
    }
