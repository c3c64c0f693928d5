"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app import __version__
from app.config import get_settings
from app.database import close_db, init_db
from app.routers import coverage_router, health_router, metrics_router, settings_router

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting CoverDash...")

    await init_db()
    logger.info("Database initialized")

    yield

    logger.info("Shutting down CoverDash...")
    await close_db()
    logger.info("Shutdown complete")


app = FastAPI(
    title="CoverDash",
    description="Network coverage sites, coverage checks and geographic imports",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(metrics_router)
app.include_router(coverage_router)
app.include_router(settings_router)


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "CoverDash",
        "version": __version__,
        "docs": "/docs",
        "health": "/api/health",
        "metrics": "/metrics",
    }
