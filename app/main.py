from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from app.api.treasury import router as treasury_router
from app.clients.treasury_client import TreasuryClient
from app.config.settings import settings
from app.services.appraisal_service import AppraisalService
from app.services.dataset_cache import DatasetCache
from app.services.query_service import QueryMode, TreasuryQueryService
from app.utils.log import app_logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup logic: one client and one dataset cache per process
    client = TreasuryClient()
    cache = DatasetCache(client)
    app.state.treasury_client = client
    app.state.dataset_cache = cache
    app.state.query_service = TreasuryQueryService(client, cache, mode=QueryMode(settings.QUERY_MODE))
    app.state.appraisal_service = AppraisalService(cache)
    app_logger.info("app.startup", mode=settings.QUERY_MODE, ttl=settings.CACHE_TTL_SECONDS,
                    environment=settings.ENVIRONMENT)
    yield
    # Shutdown logic
    client.close()
    app_logger.info("app.shutdown")


def create_app() -> FastAPI:
    app = FastAPI(title="Treasury Appraisal Proxy", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=False,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    # include routes
    app.include_router(treasury_router)
    return app


app = create_app()
