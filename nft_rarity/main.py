from typing import Any, cast
import anyio
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from nft_rarity.core.config import settings
from nft_rarity.core.errors import RarityEngineError, capture_exception, init_sentry
from nft_rarity.core.logging_config import get_logger
from nft_rarity.api import collection, health
from nft_rarity.middleware.context import RequestContextMiddleware
from nft_rarity.scraper.marketplace import MarketplaceClient
from nft_rarity.services.collection_cache import CacheStore

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Handlers are sync and block on the marketplace; bound the worker threads.
    thread_limiter = anyio.to_thread.current_default_thread_limiter()  # type: ignore[attr-defined]
    max_workers = max(1, settings.THREADPOOL_MAX_WORKERS)
    if thread_limiter.total_tokens != max_workers:
        logger.info("Configuring AnyIO thread limiter", workers=max_workers)
        thread_limiter.total_tokens = max_workers

    init_sentry(settings.SENTRY_DSN, environment=settings.ENVIRONMENT)

    client = MarketplaceClient()
    app.state.cache_store = CacheStore(client.fetch_page)
    logger.info(
        "NFT Rarity Engine starting",
        marketplace=settings.MARKETPLACE_API_BASE,
        rarity_ttl_s=settings.RARITY_CACHE_TTL_SECONDS,
        image_ttl_s=settings.IMAGE_CACHE_TTL_SECONDS,
    )
    try:
        yield
    finally:
        client.close()


app = FastAPI(title=settings.PROJECT_NAME, openapi_url=f"{settings.API_V1_STR}/openapi.json", lifespan=lifespan)


@app.exception_handler(RarityEngineError)
async def rarity_engine_error_handler(request: Request, exc: RarityEngineError) -> JSONResponse:
    if exc.status_code >= 500:
        capture_exception(exc, context={"path": request.url.path})
    else:
        logger.info("Rejected request", error=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.error, "message": exc.message},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    capture_exception(exc, context={"path": request.url.path})
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal error", "message": "An unexpected error occurred"},
    )


app.add_middleware(cast(Any, RequestContextMiddleware))

# GZip compression for responses > 1KB (full pages of NFTs are large)
app.add_middleware(cast(Any, GZipMiddleware), minimum_size=1000)

app.add_middleware(
    cast(Any, CORSMiddleware),
    allow_origins=settings.cors_origins_list,
    allow_methods=["GET"],
    allow_headers=["Content-Type"],
    expose_headers=["X-Request-ID"],
)

app.include_router(health.router, tags=["health"])
app.include_router(collection.router, tags=["collection"])


@app.get("/")
def root():
    return {"name": settings.PROJECT_NAME, "health": "/health"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
