"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api import lots, market_data
from database import init_db
from logging_config import setup_logging

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create missing tables on startup."""
    init_db()
    logger.info("Database initialized")
    yield


app = FastAPI(
    title="Asset Lot Ledger",
    description="Lot-level tracking of virtual-currency holdings",
    version="0.1.0",
    lifespan=lifespan,
)

# Include API routers
app.include_router(lots.router)
app.include_router(market_data.router)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}
