"""
FastAPI application for strata.

Mounts the storage administration API.

Usage:
    uvicorn app.main:app --reload --port 8081
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from app.storage import routes as storage_routes
from strata_core.config import settings
from strata_core.logging import setup_logging

setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    manager = storage_routes._storage_manager
    if manager is not None:
        logger.info("Closing storage providers")
        await manager.close()


app = FastAPI(
    title="Strata",
    description="Storage provider abstraction: filesystem, FTP, SFTP and S3-compatible backends",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS must be the last middleware added so it runs first
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(storage_routes.router, prefix="/storage", tags=["Storage"])


@app.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
        dict: Status and service information.
    """
    return {"status": "ok", "service": settings.SERVICE_NAME, "version": "1.0.0"}
