"""
FastAPI application factory with New Relic APM, CORS, lifespan, and all routers.
"""
import logging
import os

# New Relic must be initialized BEFORE any other imports that it instruments.
if os.getenv("NEW_RELIC_LICENSE_KEY"):
    import newrelic.agent
    newrelic.agent.initialize("newrelic.ini")

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ridematch.config import get_settings
from ridematch.database import STORAGE_ERRORS, dispose_engine, get_sessionmaker
from ridematch.errors import RideEngineError, StorageUnavailable
from ridematch.redis_client import get_redis, close_redis
from ridematch.routers import drivers, rides
from ridematch.services.expiry import OfferExpiryMonitor

settings = get_settings()
logger = logging.getLogger(__name__)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)

RETRY_AFTER_SECONDS = "2"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting %s [%s]", settings.app_name, settings.env)
    await get_redis()          # warm up connection pool
    monitor = OfferExpiryMonitor(get_sessionmaker(), settings.offer_sweep_interval_seconds)
    monitor.start()
    yield
    await monitor.stop()
    await close_redis()
    await dispose_engine()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.app_name,
    version="1.0.0",
    description="Ride matching and lifecycle engine",
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


def _error_response(exc: RideEngineError) -> JSONResponse:
    headers = {"Retry-After": RETRY_AFTER_SECONDS} if isinstance(exc, StorageUnavailable) else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "code": exc.code},
        headers=headers,
    )


# Domain errors: not found / forbidden / invalid transition / expired / unavailable
@app.exception_handler(RideEngineError)
async def ride_engine_error_handler(request: Request, exc: RideEngineError):
    if isinstance(exc, StorageUnavailable):
        logger.error("Storage fault on %s: %s", request.url, exc.__cause__ or exc)
    return _error_response(exc)


# Storage faults that escaped a service boundary (reads, pool exhaustion)
async def storage_error_handler(request: Request, exc: Exception):
    logger.error("Database error on %s: %s", request.url, exc)
    return _error_response(StorageUnavailable("Storage unavailable"))


for storage_error in STORAGE_ERRORS:
    app.add_exception_handler(storage_error, storage_error_handler)


# Global error handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s: %s", request.url, exc, exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# Health check (no auth)
@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok"}


# Register routers
app.include_router(rides.router)
app.include_router(drivers.router)
