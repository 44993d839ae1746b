"""Progress Tracker — FastAPI Application Entry Point.

Metric targets along progression curves, RAG variance, audited edits
and point-in-time history.
"""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tracker.database import init_db, test_connection
from tracker.scheduler.jobs import start_scheduler, stop_scheduler
from tracker.api.project_routes import router as project_router
from tracker.api.metric_routes import router as metric_router
from tracker.api.annotation_routes import router as annotation_router
from tracker.api.audit_routes import router as audit_router
from tracker.api.io_routes import router as io_router
from tracker.core.logging import get_logger
from tracker.core.middleware import RequestLoggingMiddleware

logger = get_logger("main")

VERSION = "1.0.0"

IS_SERVERLESS = bool(
    os.environ.get("VERCEL") or os.environ.get("AWS_LAMBDA_FUNCTION_NAME")
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    logger.info("🚀 Progress Tracker starting up...")
    logger.info(f"🌍 Environment: {'SERVERLESS' if IS_SERVERLESS else 'LOCAL'}")
    if test_connection():
        try:
            init_db()
        except Exception as e:
            logger.error(f"❌ Table creation failed: {e}")
    else:
        logger.error("❌ Database NOT connected — endpoints will fail")
    if not IS_SERVERLESS:
        start_scheduler()
    yield
    if not IS_SERVERLESS:
        stop_scheduler()
    logger.info("Progress Tracker shut down")


app = FastAPI(
    title="Progress Tracker",
    description="Track project metrics against planned progression curves with RAG status and full audit history.",
    version=VERSION,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)

# Routers
app.include_router(project_router)
app.include_router(metric_router)
app.include_router(annotation_router)
app.include_router(audit_router)
app.include_router(io_router)


@app.get("/health", tags=["System"])
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "progress-tracker",
        "version": VERSION,
    }


@app.get("/debug/db", tags=["System"])
async def debug_db():
    """Check database connectivity."""
    from tracker.database import _mask_url, db_url

    error = None
    connected = False
    try:
        connected = test_connection()
    except Exception as e:
        error = str(e)

    backend = "postgresql" if db_url.startswith("postgresql") else "sqlite"
    return {
        "connected": connected,
        "backend": backend,
        "url": _mask_url(db_url),
        "environment": "serverless" if IS_SERVERLESS else "local",
        "error": error,
    }
