"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy import text

from genealogia.core.config import settings
from genealogia.core.container import AppContainer
from genealogia.core.structured_logging import configure_logging
from genealogia.db.session import SessionLocal, engine

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.LOG_LEVEL)
    container = AppContainer.build(SessionLocal)
    app.state.container = container
    logger.info("Application started (env=%s, version=%s)", settings.ENV, settings.VERSION)
    try:
        yield
    finally:
        container.shutdown()


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Genealogia API",
    description="Territorial permissions and wiki moderation for the genealogy platform",
    version=settings.VERSION,
    docs_url="/docs" if settings.is_dev else None,
    redoc_url="/redoc" if settings.is_dev else None,
    lifespan=lifespan,
)

# ============================================================================
# Routers
# ============================================================================

from genealogia.routers import admin_jobs, me, moderation, policies, wiki

app.include_router(me.router)
app.include_router(policies.router)
app.include_router(admin_jobs.router)
app.include_router(wiki.router)
app.include_router(moderation.router)


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
