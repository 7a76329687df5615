"""
Admission Lifecycle Engine - FastAPI Backend
Main application entry point
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from app.core.config import settings
from app.api import routes_admin, routes_entrant, routes_public, ws
from app.services.engine import get_engine
from app.services.lifecycle_worker import LifecycleWorker
from app.services.repositories import use_firestore
from app.utils.responses import EXCEPTION_HANDLERS

# Configure logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management"""
    engine = get_engine()
    if not use_firestore():
        engine.store.create_schema()
        logger.info("Document table created")

    worker = None
    if settings.ENABLE_WORKER:
        worker = LifecycleWorker(engine)
        worker.start()
    yield
    if worker is not None:
        await worker.stop()
    await engine.store.close()
    logger.info("Application shutdown")

# Create FastAPI application
app = FastAPI(
    title="Admission Lifecycle Engine",
    description="Waitlist lottery, time-boxed invitations and automatic seat replacement",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for error_type, handler in EXCEPTION_HANDLERS.items():
    app.add_exception_handler(error_type, handler)

# Include routers
app.include_router(routes_public.router, tags=["public"])
app.include_router(routes_entrant.router, prefix="/entrant", tags=["entrant"])
app.include_router(routes_admin.router, prefix="/admin", tags=["admin"])
app.include_router(ws.router, prefix="/ws", tags=["websocket"])

# Note: Run this ASGI app directly with Uvicorn or Hypercorn. For Gunicorn,
# use `uvicorn.workers.UvicornWorker` instead of wrapping the app.

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="127.0.0.1",
        port=8000,
        reload=True
    )
