import logging

from core.logging_setup import setup_logging

setup_logging()

from core.config import settings

logger = logging.getLogger(__name__)

logger.info(f"Configuration loaded. Log level set to: {settings.LOGGING_LEVEL}")

from api.calendar import create_calendar_router
from core import db
from core.http_client import close_http_client, init_http_client
from core.storage import SqlKeyValueStore
from fastapi import FastAPI
from services.cache import EventCache
from services.school_config import SchoolConfigService

app = FastAPI(
    title="School Calendar API",
    description="Aggregates a user's school calendar from the academic backend, personal events and Google Calendar.",
)


@app.on_event("startup")
async def startup_event():
    """
    On application startup, initialize the database and the shared HTTP client.
    """
    await db.init_db()
    await init_http_client()


@app.on_event("shutdown")
async def shutdown_event():
    await close_http_client()
    await db.close_db()


event_cache = EventCache()
kv_store = SqlKeyValueStore(db.AsyncSessionLocal)
school_configs = SchoolConfigService(kv_store)

app.state.event_cache = event_cache
app.state.kv_store = kv_store
app.state.school_configs = school_configs

calendar_router = create_calendar_router(
    cache=event_cache, store=kv_store, school_configs=school_configs
)
app.include_router(calendar_router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "cached_queries": len(event_cache)}
