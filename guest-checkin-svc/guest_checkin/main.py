from __future__ import annotations
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from .db import init_db, close_db
from .deps import build_registry
from .routers import checkins
from .core.config import get_settings
from .core.log import setup_logging
from .core.redis import ping_redis, close_redis
from .core.nats import nats_connect, nats_close

settings = get_settings()
log = setup_logging(settings.log_level)

@asynccontextmanager
async def lifespan(app: FastAPI):
    uses_sql = settings.checkin_backend.strip().lower() == "sql"
    if uses_sql:
        await init_db()
    # best-effort connect to infra; service still runs if these fail
    if settings.nats_enabled:
        try:
            await nats_connect()
        except Exception as exc:
            log.warning("nats unavailable at startup: %s", exc)
    uses_redis = settings.checkin_backend.strip().lower() == "redis"
    if uses_redis and not await ping_redis():
        log.warning("redis unavailable at startup; scans will answer 503 until it is back")
    app.state.stores = build_registry(settings)
    yield
    await app.state.stores.aclose()
    if settings.nats_enabled:
        await nats_close()
    if uses_redis:
        await close_redis()
    await close_db()

app = FastAPI(title="guest-checkin-svc", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(checkins.router)

@app.get("/health")
async def health():
    return {"status": "ok", "service": "guest-checkin-svc", "backend": settings.checkin_backend}

Instrumentator().instrument(app).expose(app)
