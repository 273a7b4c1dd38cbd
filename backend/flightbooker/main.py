import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from flightbooker.config import settings
from flightbooker.db.database import Base, dispose_engine, get_engine, get_session_maker
from flightbooker.db.redis import close_redis, ping_redis
from flightbooker.api.v1.router import api_router
from flightbooker.services.providers.factory import ProviderRegistry, build_registry, load_registry
from flightbooker.services.search_engine import build_aggregator
import flightbooker.models  # noqa: F401 (registra tutti i modelli con Base)

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def _registry_from_settings() -> ProviderRegistry:
    """Con DATABASE_URL la tabella api_providers sovrascrive i default."""
    if not settings.database_url:
        return build_registry(settings)

    ###############---############
    # REMEMBER TO SWITCH TO Alembic migrations IN PROD
    ###############---############
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with get_session_maker()() as session:
        return await load_registry(session, settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    registry = await _registry_from_settings()

    if settings.cache_backend == "redis":
        await ping_redis(settings.redis_url)

    app.state.aggregator = build_aggregator(settings, registry)
    logger.info(
        "Provider attivi: %s (cache=%s)",
        [config.name for config, _ in registry.enabled()], settings.cache_backend,
    )

    yield

    # Shutdown
    await close_redis()
    await dispose_engine()


app = FastAPI(
    title="FlightBooker API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


app.include_router(api_router)


@app.get("/api/v1/health")
async def health():
    return {"status": "ok", "env": settings.app_env}
