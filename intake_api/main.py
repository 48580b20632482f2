from contextlib import asynccontextmanager

from fastapi import FastAPI
from redis.asyncio import Redis

from leadroute.config import settings
from leadroute.logging_config import configure_logging
from intake_api.lead_routes import leads_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging("intake_api")
    app.state.redis = Redis.from_url(settings.REDIS_URL, decode_responses=True)
    yield
    await app.state.redis.close()


app = FastAPI(
    title="Leads API",
    summary="API for submitting leads and applying human review decisions",
    lifespan=lifespan,
)

app.include_router(leads_router)
