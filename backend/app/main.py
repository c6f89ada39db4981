"""FastAPI application entry point"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from app.core.config import settings
from app.core.logging import setup_logging
from app.core.otel import (
    initialize_otel, instrument_fastapi, instrument_httpx, instrument_sqlalchemy, setup_otel_logging
)
from app.db.redis import get_redis_client
from app.db.session import engine, init_db

# Import routers
from app.api import connections, data_deletion, oauth

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Startup
    if initialize_otel():
        if setup_otel_logging():
            logger.info(f"OpenTelemetry fully initialized, exporting to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
        else:
            logger.warning("OpenTelemetry metrics/traces initialized but logging setup failed")
        instrument_sqlalchemy(engine)
    else:
        logger.info("OpenTelemetry not configured - running without distributed tracing")

    logger.info("Initializing database...")
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    logger.info("Testing Redis connection...")
    try:
        get_redis_client().ping()
        logger.info("Redis connection successful")
    except Exception as e:
        # Sessions need Redis; leases fall back to single-instance mode
        logger.warning(f"Redis connection failed: {e}")

    scheduler_tasks = []
    if settings.RUN_SCHEDULER:
        logger.info("Starting scheduler tasks...")
        from app.tasks.scheduler import start_scheduler
        scheduler_tasks = start_scheduler()
        logger.info("Scheduler tasks started")
    else:
        logger.info("RUN_SCHEDULER disabled - jobs must be invoked externally")

    yield

    # Shutdown
    logger.info("Shutting down...")
    if scheduler_tasks:
        from app.tasks.scheduler import stop_scheduler
        await stop_scheduler(scheduler_tasks)


# Create FastAPI app
app = FastAPI(
    title="Postbridge Backend",
    description="Social channel connections and scheduled publishing",
    version="1.0.0",
    lifespan=lifespan
)

if settings.OTEL_EXPORTER_OTLP_ENDPOINT:
    instrument_fastapi(app)
    instrument_httpx()

# CORS middleware
allowed_origins = [settings.FRONTEND_URL]
if settings.ENVIRONMENT == "development":
    allowed_origins.extend([
        "http://localhost:3000",
        "http://localhost:8000",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:8000"
    ])

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(oauth.router)
app.include_router(data_deletion.router)
app.include_router(connections.router)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )


# Prometheus metrics endpoint
@app.get("/metrics")
def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Health check endpoint
@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}
