"""Trafficlens — FastAPI Application Entry Point.

Serves stored Google Analytics traffic, ingestion triggers and the insight
feed; the scheduler refreshes connected properties once a day.
"""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from trafficlens.config import settings
from trafficlens.database import check_connection, describe_database, init_db
from trafficlens.scheduler.jobs import start_scheduler, stop_scheduler
from trafficlens.api.ingest_routes import router as ingest_router
from trafficlens.api.insight_routes import router as insight_router
from trafficlens.core.logging import get_logger

logger = get_logger("main")

VERSION = "1.0.0"

# No long-lived process to host the scheduler
IS_SERVERLESS = bool(
    os.environ.get("VERCEL") or os.environ.get("AWS_LAMBDA_FUNCTION_NAME")
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"🚀 Trafficlens {VERSION} starting ({'serverless' if IS_SERVERLESS else 'local'})")
    if check_connection():
        try:
            init_db()
        except Exception as e:
            logger.error(f"❌ Table creation failed: {e}")
    else:
        logger.error("❌ Starting without a database; data endpoints will fail")

    if not IS_SERVERLESS:
        start_scheduler()
    yield
    if not IS_SERVERLESS:
        stop_scheduler()
    logger.info("Trafficlens stopped")


app = FastAPI(
    title="Trafficlens",
    description=(
        "Pull daily Google Analytics traffic, store it idempotently, and turn it "
        "into spike, milestone, streak and weekly trend insights."
    ),
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(ingest_router)
app.include_router(insight_router)


@app.get("/health", tags=["System"])
async def health_check():
    return {"status": "healthy", "service": "trafficlens", "version": VERSION}


@app.get("/debug/db", tags=["System"])
async def debug_db():
    """Database connectivity, backend and masked URL."""
    return {
        **describe_database(),
        "environment": "serverless" if IS_SERVERLESS else "local",
    }
