from contextlib import asynccontextmanager

from fastapi import FastAPI
from redis.asyncio import Redis

from leadroute.config import settings
from leadroute.configuration import ConfigurationProvider, RedisConfigurationStore
from leadroute.logging_config import configure_logging
from insights_api.insights_routes import analytics_router, configuration_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging("insights_api")
    redis = Redis.from_url(settings.REDIS_URL, decode_responses=True)
    app.state.config_provider = ConfigurationProvider(
        RedisConfigurationStore(redis, settings.CONFIG_REDIS_KEY),
        ttl_seconds=settings.CONFIG_CACHE_TTL,
        fetch_timeout=settings.CONFIG_FETCH_TIMEOUT,
    )
    yield
    await redis.close()


app = FastAPI(
    title="Insights API",
    summary="API for agreement analytics and routing configuration",
    lifespan=lifespan,
)


app.include_router(analytics_router)
app.include_router(configuration_router)
