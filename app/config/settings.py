from pydantic_settings import BaseSettings
from dotenv import load_dotenv, find_dotenv
from os import getenv
from typing import List

_env_path = find_dotenv()  # locate a .env file in this folder or parent folders
if _env_path:
    load_dotenv(_env_path)


class Settings(BaseSettings):
    # Upstream open-data catalog (CKAN datastore_search)
    TREASURY_API_URL: str = getenv(
        'TREASURY_API_URL',
        'https://catalog.treasury.go.th/tl/api/3/action/datastore_search',
    )
    TREASURY_RESOURCE_ID: str = getenv('TREASURY_RESOURCE_ID', 'b115b105-58c6-4c3d-8ca8-687f7501e296')
    NAME_FIELD: str = getenv('NAME_FIELD', 'CONDO_NAME')

    # Outbound requests
    UPSTREAM_TIMEOUT: float = float(getenv('UPSTREAM_TIMEOUT', 8.0))
    UPSTREAM_MAX_RETRIES: int = int(getenv('UPSTREAM_MAX_RETRIES', 3))
    UPSTREAM_RETRY_DELAY: float = float(getenv('UPSTREAM_RETRY_DELAY', 1.0))
    UPSTREAM_PAGE_CEILING: int = int(getenv('UPSTREAM_PAGE_CEILING', 1000))

    # Full dataset cache
    FETCH_PAGE_SIZE: int = int(getenv('FETCH_PAGE_SIZE', 1000))
    FETCH_CONCURRENCY: int = int(getenv('FETCH_CONCURRENCY', 5))
    MAX_RECORDS: int = int(getenv('MAX_RECORDS', 50000))
    CACHE_TTL_SECONDS: float = float(getenv('CACHE_TTL_SECONDS', 3600))
    REFILL_RETRY_COOLDOWN: float = float(getenv('REFILL_RETRY_COOLDOWN', 30))

    # Query processing: "cache" or "passthrough", fixed per deployment
    QUERY_MODE: str = getenv('QUERY_MODE', 'cache')
    DEFAULT_LIMIT: int = int(getenv('DEFAULT_LIMIT', 20))
    MAX_LIMIT: int = int(getenv('MAX_LIMIT', 100))
    DISPLAY_TOTAL_CEILING: int = int(getenv('DISPLAY_TOTAL_CEILING', 1000))

    # HTTP surface
    HOST: str = getenv('HOST', '127.0.0.1')
    PORT: int = int(getenv('PORT', 8000))
    ENVIRONMENT: str = getenv('ENVIRONMENT', 'development')
    LOG_LEVEL: str = getenv('LOG_LEVEL', 'INFO')
    # comma separated list of allowed origins
    CORS_ORIGINS: str = getenv('CORS_ORIGINS', '*')
    LISTING_MAX_AGE: int = int(getenv('LISTING_MAX_AGE', 60))

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == 'production'

    @property
    def cors_origin_list(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(',') if o.strip()]


settings = Settings()
