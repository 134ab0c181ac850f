"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

from timetracking.config import settings
from timetracking.database import database
from timetracking.routers import time_tracking
from timetracking.services.time_entry_store import TimeEntryStore

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    """Configure root logging from settings."""
    level = logging.DEBUG if settings.debug else settings.log_level.upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown events."""
    # Startup
    setup_logging()
    await database.connect()
    await TimeEntryStore(database.db).ensure_indexes()
    yield
    # Shutdown
    await database.disconnect()


app = FastAPI(
    title="Time Tracking Service API",
    description="Timers, manual time entries and timesheet reports",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PyMongoError)
async def store_unavailable_handler(request: Request, exc: PyMongoError):
    """Report datastore failures as retryable, unlike business-rule errors."""
    logger.error("Time entry store failure on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Time entry store unavailable, please try again"},
        headers={"Retry-After": "5"},
    )


# Include routers
app.include_router(time_tracking.router)


@app.get("/")
async def root():
    """Root endpoint - health check."""
    return {"status": "ok", "message": "Time Tracking Service API"}


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}
