from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.limits import limiter, rate_limit_handler
from app.core.init_db import init_database
from app.core.error_handlers import setup_exception_handlers
from app.core.database import db_manager, get_session
from app.core.exceptions import DatabaseConnectionError
from app.core.middleware import setup_middleware
from app.core.logging_utils import (
    setup_logging,
    get_logger,
    log_business_event,
    error_tracker,
)
from app.core.config import (
    validate_config,
    APP_NAME,
    APP_VERSION,
    DEBUG,
    ENVIRONMENT,
    LOG_LEVEL,
    LOG_FORMAT,
    CORS_ORIGINS,
)

from app.staff.routers import classes as staff_classes
from app.staff.routers import attendance as staff_attendance
from app.students.routers import bookings as student_bookings
from app.students.routers import schedule as student_schedule

setup_logging(LOG_LEVEL, LOG_FORMAT)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown"""

    # Startup
    logger.info(f"Starting {APP_NAME} v{APP_VERSION}")

    try:
        validate_config()
        logger.info("Configuration validated")

        await db_manager.check_connection()
        logger.info("Database connection established")

        await init_database()
        logger.info("Database initialized")

        log_business_event(
            "application_started",
            "system",
            0,
            {"version": APP_VERSION, "environment": ENVIRONMENT},
        )

        logger.info("Application startup completed")

    except Exception as e:
        logger.error(f"Application startup failed: {str(e)}")
        error_tracker.track_error(
            "STARTUP_ERROR",
            str(e),
            {"component": "application_startup", "version": APP_VERSION},
        )
        raise

    yield

    # Shutdown
    logger.info("Shutting down application...")

    try:
        await db_manager.close_connections()
        logger.info("Database connections closed")

    except Exception as e:
        logger.error(f"Error during shutdown: {str(e)}")

    logger.info("Application shutdown completed")


app = FastAPI(
    title=APP_NAME,
    description="Gym class schedule and booking service",
    version=APP_VERSION,
    lifespan=lifespan,
    debug=DEBUG,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_exception_handlers(app)

setup_middleware(
    app,
    {
        "slow_request_threshold": 5.0,
        "exclude_paths": [
            "/health",
            "/docs",
            "/openapi.json",
            "/redoc",
            "/favicon.ico",
        ],
    },
)

# Add rate limiter to app state
app.state.limiter = limiter

# Add rate limit exception handler
app.add_exception_handler(RateLimitExceeded, rate_limit_handler)

# Include routers with API version prefix
app.include_router(staff_classes.router, prefix="/api/v1")
app.include_router(staff_attendance.router, prefix="/api/v1")
app.include_router(student_bookings.router, prefix="/api/v1")
app.include_router(student_schedule.router, prefix="/api/v1")


@app.get("/health", tags=["System"])
async def health_check(db: AsyncSession = Depends(get_session)):
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Health check failed: {str(e)}")
        raise DatabaseConnectionError("Database is not reachable")

    return {
        "status": "ok",
        "version": APP_VERSION,
        "environment": ENVIRONMENT,
        "database": "ok",
    }
