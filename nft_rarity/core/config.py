from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    PROJECT_NAME: str = "NFT Rarity Engine"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Upstream marketplace (SentX public API)
    MARKETPLACE_API_BASE: str = "https://api.sentx.io/v1/public"
    MARKETPLACE_PAGE_SIZE: int = 100
    MARKETPLACE_MAX_RECORDS: int = 5000  # Safety cap when upstream never signals its last page
    MARKETPLACE_TIMEOUT_SECONDS: float = 30.0
    MARKETPLACE_SORT_BY: str = "rarity"
    MARKETPLACE_SORT_DIRECTION: str = "ASC"

    # Cache freshness (30 minutes)
    RARITY_CACHE_TTL_SECONDS: float = 1800.0
    IMAGE_CACHE_TTL_SECONDS: float = 1800.0

    # Query defaults and client-side caching
    DEFAULT_PAGE_LIMIT: int = 50
    COLLECTION_CACHE_CONTROL: str = "public, max-age=60"
    IMAGES_CACHE_CONTROL: str = "public, max-age=300"

    # Comma-separated; "*" allows any origin
    CORS_ORIGINS: str = "*"

    # Error tracking (optional)
    SENTRY_DSN: str = ""

    THREADPOOL_MAX_WORKERS: int = 40

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra="ignore")

    @property
    def cors_origins_list(self) -> list[str]:
        """Convert comma-separated CORS_ORIGINS to list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


settings = Settings()
