from contextlib import asynccontextmanager

from fastapi import FastAPI
from pydantic import BaseModel
from redis import asyncio as aioredis
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from coursegen.api.realtime import router as realtime_router
from coursegen.core.config import settings
from coursegen.core.logging import configure_logging
from coursegen.db.session import SessionLocal
from coursegen.services.connection_registry import ConnectionRegistry

configure_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await app.state.redis.aclose()


app = FastAPI(title="Course Generation API", version="0.1.0", lifespan=lifespan)
app.include_router(realtime_router)

app.state.connections = ConnectionRegistry()
# one client (and connection pool) per process; each socket gets its own PubSub
app.state.redis = aioredis.Redis.from_url(settings.redis_url, decode_responses=True)
app.state.pubsub_factory = lambda: app.state.redis.pubsub()


class HealthResponse(BaseModel):
    ok: bool
    service: str
    version: str
    db_ok: bool
    connections: int


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    db_ok = False
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except SQLAlchemyError:
        db_ok = False
    finally:
        db.close()

    return HealthResponse(
        ok=True,
        service="api",
        version=app.version,
        db_ok=db_ok,
        connections=len(app.state.connections),
    )
