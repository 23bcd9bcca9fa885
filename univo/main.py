from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

from univo.core import config
from univo.core.limits import limiter, rate_limit_handler
from univo.core.init_db import init_database
from univo.core.error_handlers import setup_exception_handlers
from univo.core.database import db_manager
from univo.core.exceptions import DatabaseConnectionError
from univo.core.middleware import setup_middleware
from univo.core.logging_utils import (
    setup_logging,
    get_logger,
    log_business_event,
    error_tracker,
)

from univo.accounts.routers import auth, users
from univo.clubs.routers import clubs, members, applications, announcements, notifications
from univo.activities.routers import events, campaigns, dues, payments

setup_logging(config.LOG_LEVEL, config.LOG_FORMAT)
logger = get_logger(__name__)

API_PREFIX = "/api"

ROUTERS = (
    auth.router,
    users.router,
    clubs.router,
    members.router,
    applications.router,
    announcements.router,
    notifications.router,
    events.router,
    campaigns.router,
    dues.router,
    payments.router,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {config.APP_NAME} v{config.APP_VERSION}")

    try:
        config.validate_config()
        await init_database()
    except Exception as e:
        logger.error(f"❌ Startup failed: {str(e)}")
        error_tracker.track_error(
            "STARTUP_ERROR", str(e), {"version": config.APP_VERSION}
        )
        raise

    log_business_event(
        "application_started",
        "system",
        0,
        {
            "version": config.APP_VERSION,
            "environment": config.ENVIRONMENT,
            "payments_enabled": bool(config.STRIPE_SECRET_KEY),
        },
    )

    yield

    await db_manager.close_connections()
    logger.info("👋 Application shutdown completed")


app = FastAPI(
    title=config.APP_NAME,
    description="Campus clubs: membership, events, fundraising and dues",
    version=config.APP_VERSION,
    lifespan=lifespan,
    debug=config.DEBUG,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    # Сессия живёт в cookie
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)
setup_exception_handlers(app)
setup_middleware(app, slow_request_threshold=5.0)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_handler)

for router in ROUTERS:
    app.include_router(router, prefix=API_PREFIX)


@app.get(f"{API_PREFIX}/health", tags=["System"])
async def health_check():
    """Состояние сервиса, базы и статистика ошибок"""
    try:
        await db_manager.check_connection()
        database = "ok"
    except DatabaseConnectionError:
        database = "unavailable"

    return {
        "status": "ok" if database == "ok" else "degraded",
        "version": config.APP_VERSION,
        "database": database,
        "errors": error_tracker.get_stats(),
    }
