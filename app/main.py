import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings
from app.database import engine
from app.services.sync.orchestrator import get_orchestrator
from app.services.sync.scheduler import SyncScheduler

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    scheduler: SyncScheduler | None = None
    if settings.sync_scheduler_backend == "inprocess":
        scheduler = SyncScheduler(get_orchestrator())
        scheduler.start()
        logger.info("In-process sync scheduler started")
    app.state.sync_scheduler = scheduler
    yield
    # Shutdown
    if scheduler is not None:
        await scheduler.stop()
    await get_orchestrator().state_store.close()
    await engine.dispose()


app = FastAPI(
    title="Matchsync",
    description="Local mirror of the TheSports football match catalog",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
_origins = (
    settings.allowed_origins.split(",")
    if settings.allowed_origins != "*"
    else ["*"]
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


@app.get("/health/scheduler")
async def scheduler_status():
    scheduler = getattr(app.state, "sync_scheduler", None)
    if scheduler is None:
        return {"backend": settings.sync_scheduler_backend, "tickers": {}}
    return {"backend": settings.sync_scheduler_backend, "tickers": scheduler.status()}


# Import and include routers after app is created
from app.api.router import api_router
app.include_router(api_router, prefix="/api/v1")
